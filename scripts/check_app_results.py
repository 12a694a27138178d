#!/usr/bin/env python
"""
Script to check the status of a project's app results once, without waiting.

Exit status is 0 when the batch is complete, 2 when it is not yet complete
and 1 on errors.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

# Add parent directory to path to import the project modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from basespace_client import BaseSpaceClient
from config import DEFAULT_CONFIG_FILE, DEFAULT_RUN_CONFIG_FILE, Settings, load_settings
from exceptions import BaseSpaceError, ConfigError
from schema import AppResult, OutcomeState
from utils import check_app_results_complete, summarize_statuses

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


async def fetch_app_results(settings: Settings) -> List[AppResult]:
    async with BaseSpaceClient.from_settings(settings) as client:
        return await client.list_app_results(settings.project_id)


def report_status(app_results: List[AppResult], settings: Settings) -> bool:
    """
    Log the status of every app result and whether the batch is complete.

    Args:
        app_results: App results of the project
        settings: Loaded settings (expected count is numPairs)

    Returns:
        True if the batch would be considered complete
    """
    for app_result in app_results:
        label = f" ({app_result.name})" if app_result.name else ""
        logger.info(f"App result {app_result.id}{label}: {app_result.status.value}")

    for status, count in summarize_statuses(app_results).items():
        logger.info(f"  {status}: {count}")

    # Timeout does not apply to a single check
    outcome = check_app_results_complete(
        app_results, settings.num_pairs, elapsed=0.0, timeout=float("inf")
    )
    if outcome.state is OutcomeState.DONE:
        logger.info(f"All {settings.num_pairs} app results are complete")
        return True

    logger.info(
        f"Batch not complete: {len(app_results)} app results found, "
        f"{settings.num_pairs} expected"
    )
    return False


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Check the status of a BaseSpace project's app results"
    )
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_FILE)
    parser.add_argument("--run-config", type=Path, default=DEFAULT_RUN_CONFIG_FILE)
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config, args.run_config)
        app_results = asyncio.run(fetch_app_results(settings))
    except (ConfigError, BaseSpaceError) as e:
        logger.error(str(e))
        return 1

    return 0 if report_status(app_results, settings) else 2


if __name__ == "__main__":
    sys.exit(main())
