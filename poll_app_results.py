#!/usr/bin/env python
"""
Poll a BaseSpace project until every app result of the run is complete,
then download the result files of each app result to a local directory.

The template spreadsheet and the negative control BAM are not downloaded.
"""

import argparse
import asyncio
import logging
import sys
import time
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from basespace_client import BaseSpaceClient
from config import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_RUN_CONFIG_FILE,
    Settings,
    load_settings,
)
from exceptions import (
    BaseSpaceError,
    ConfigError,
    DecodeError,
    PollingTimeoutError,
    ServerError,
    TransportError,
)
from fetcher import BatchIterator
from schema import FetchSummary, OutcomeState, PollOutcome
from utils import check_app_results_complete

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


class PollScheduler:
    """
    Fixed-interval status poller that triggers a single fetch run.

    Each tick waits ``polling_interval`` seconds, lists the project's app
    results and checks them for completion. A failed status call only
    skips that tick. Once the batch is done the tick loop is left before
    the files are fetched, so ticks never overlap with the fetch run and
    the project is not polled again.
    """

    def __init__(
        self,
        client: BaseSpaceClient,
        settings: Settings,
        dry_run: bool = False,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.settings = settings
        self.dry_run = dry_run
        self._clock = clock
        self._sleep = sleep

        self.state = SchedulerState.IDLE
        self.start_time: Optional[float] = None
        self.ticks = 0
        self.failed_polls = 0

    @property
    def elapsed(self) -> float:
        if self.start_time is None:
            return 0.0
        return self._clock() - self.start_time

    async def tick(self) -> PollOutcome:
        """Run one status check and return the decision for it."""
        self.ticks += 1
        try:
            app_results = await self.client.list_app_results(self.settings.project_id)
        except (TransportError, ServerError, DecodeError) as e:
            self.failed_polls += 1
            logger.warning(
                f"Status poll {self.ticks} failed, skipping tick "
                f"({self.failed_polls} failed so far): {e}"
            )
            if self.elapsed >= self.settings.timeout:
                return PollOutcome.timed_out()
            return PollOutcome.pending()

        return check_app_results_complete(
            app_results,
            self.settings.num_pairs,
            self.elapsed,
            self.settings.timeout,
        )

    async def _poll_until_done(self) -> List[str]:
        while True:
            await self._sleep(self.settings.polling_interval)
            outcome = await self.tick()

            if outcome.state is OutcomeState.DONE:
                return outcome.app_result_ids
            if outcome.state is OutcomeState.TIMED_OUT:
                raise PollingTimeoutError(
                    f"Polling timed out after {self.elapsed:.0f} seconds "
                    f"({self.ticks} polls, {self.failed_polls} failed)"
                )

            logger.info(
                f"Waiting for {self.settings.num_pairs} app results to complete... "
                f"({int(self.elapsed / 60)} minutes elapsed)"
            )

    async def run(self) -> FetchSummary:
        """
        Poll until the batch is done, then fetch its files once.

        Returns:
            Summary of the fetch run

        Raises:
            PollingTimeoutError: The batch did not complete within the timeout
            BaseSpaceError: Listing or downloading files failed after completion
        """
        if self.state is not SchedulerState.IDLE:
            raise RuntimeError(f"Poll scheduler already started ({self.state.value})")

        self.state = SchedulerState.POLLING
        self.start_time = self._clock()
        logger.info(
            f"Polling project {self.settings.project_id} every "
            f"{self.settings.polling_interval:g}s for {self.settings.num_pairs} "
            f"app results (timeout {self.settings.timeout:g}s)"
        )

        try:
            app_result_ids = await self._poll_until_done()
        except PollingTimeoutError:
            self.state = SchedulerState.TIMED_OUT
            raise

        batch = BatchIterator(
            self.client,
            app_result_ids,
            self.settings.output_dir,
            self.settings.template,
            self.settings.negative_control,
            dry_run=self.dry_run,
        )
        try:
            summary = await batch.run()
        except Exception:
            self.state = SchedulerState.FAILED
            raise

        self.state = SchedulerState.SUCCEEDED
        return summary


async def fetch_when_complete(settings: Settings, dry_run: bool = False) -> FetchSummary:
    """Open a client, poll the project and fetch its files."""
    async with BaseSpaceClient.from_settings(settings) as client:
        scheduler = PollScheduler(client, settings, dry_run=dry_run)
        return await scheduler.run()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Wait for BaseSpace app results to complete and download their files"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_FILE,
        help="Generic config file with API server, version and token",
    )
    parser.add_argument(
        "--run-config",
        type=Path,
        default=DEFAULT_RUN_CONFIG_FILE,
        help="Run config file with numPairs, projectID and negativeControl",
    )
    parser.add_argument("--output-dir", type=Path, help="Directory to save files")
    parser.add_argument(
        "--polling-interval", type=float, help="Seconds between status checks"
    )
    parser.add_argument(
        "--timeout", type=float, help="Seconds to wait for the app results"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the files that would be downloaded without writing them",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if not args.debug:
        # httpx logs every request URL, access token included
        logging.getLogger("httpx").setLevel(logging.WARNING)

    try:
        settings = load_settings(
            args.config,
            args.run_config,
            overrides={
                "output_dir": args.output_dir,
                "polling_interval": args.polling_interval,
                "timeout": args.timeout,
            },
        )
    except ConfigError as e:
        logger.error(str(e))
        return 1

    try:
        summary = asyncio.run(fetch_when_complete(settings, dry_run=args.dry_run))
    except PollingTimeoutError as e:
        logger.error(str(e))
        return 1
    except BaseSpaceError as e:
        logger.error(f"Run aborted: {e}")
        return 1

    if args.dry_run:
        logger.info(
            f"Dry run: {len(summary.planned)} files from "
            f"{summary.app_results_processed} app results would be downloaded"
        )
    else:
        logger.info(
            f"Downloaded {len(summary.downloaded)} files from "
            f"{summary.app_results_processed} app results to {settings.output_dir}"
        )
    logger.info(f"Skipped {len(summary.skipped)} files")
    return 0


if __name__ == "__main__":
    sys.exit(main())
