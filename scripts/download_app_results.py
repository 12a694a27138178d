#!/usr/bin/env python
"""
Script to download the files of specific app results (or single files)
straight away, without polling for completion first.
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
from fetcher import BatchIterator, ensure_output_dir, resolve_destination
from schema import FetchSummary

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


async def download_app_results(
    settings: Settings, app_result_ids: List[str], dry_run: bool = False
) -> FetchSummary:
    """
    Download the qualifying files of the given app results, in order.

    Args:
        settings: Loaded settings (output dir, template, negative control)
        app_result_ids: App result ids to fetch
        dry_run: Only list what would be downloaded

    Returns:
        Summary of the fetch run
    """
    async with BaseSpaceClient.from_settings(settings) as client:
        batch = BatchIterator(
            client,
            app_result_ids,
            settings.output_dir,
            settings.template,
            settings.negative_control,
            dry_run=dry_run,
        )
        return await batch.run()


async def download_files(
    settings: Settings, files: List[List[str]], dry_run: bool = False
) -> List[Path]:
    """
    Download individual files by id, no filtering applied.

    Args:
        settings: Loaded settings (output dir)
        files: Pairs of [file id, local file name]
        dry_run: Only log the files that would be downloaded

    Returns:
        Paths written, or that would be written on a dry run
    """
    destinations = [
        (file_id, resolve_destination(settings.output_dir, file_id, file_name))
        for file_id, file_name in files
    ]
    if dry_run:
        for file_id, destination in destinations:
            logger.info(f"Would download {file_id} to {destination}")
        return [destination for _, destination in destinations]

    ensure_output_dir(settings.output_dir)
    written = []
    async with BaseSpaceClient.from_settings(settings) as client:
        for file_id, destination in destinations:
            path = await client.download_file(file_id, destination)
            logger.info(f"Download Success {path}")
            written.append(path)
    return written


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Download BaseSpace app result files without polling"
    )
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_FILE)
    parser.add_argument("--run-config", type=Path, default=DEFAULT_RUN_CONFIG_FILE)
    parser.add_argument("--output-dir", type=Path, help="Directory to save files")
    parser.add_argument(
        "--app-result",
        action="append",
        default=[],
        dest="app_results",
        help="App result id to download (repeatable, processed in order)",
    )
    parser.add_argument(
        "--file",
        nargs=2,
        action="append",
        default=[],
        dest="files",
        metavar=("FILE_ID", "NAME"),
        help="Download a single file by id to NAME (repeatable)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the files that would be downloaded without writing them",
    )
    args = parser.parse_args(argv)

    if not args.app_results and not args.files:
        parser.error("Provide at least one --app-result or --file")

    try:
        settings = load_settings(
            args.config, args.run_config, overrides={"output_dir": args.output_dir}
        )
        if args.files:
            asyncio.run(download_files(settings, args.files, dry_run=args.dry_run))
        if args.app_results:
            summary = asyncio.run(
                download_app_results(settings, args.app_results, dry_run=args.dry_run)
            )
            logger.info(
                f"Processed {summary.app_results_processed} app results: "
                f"{len(summary.downloaded)} downloaded, "
                f"{len(summary.planned)} planned, {len(summary.skipped)} skipped"
            )
    except (ConfigError, BaseSpaceError) as e:
        logger.error(str(e))
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
