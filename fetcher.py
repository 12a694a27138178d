"""
Sequential retrieval of app result files.

BatchIterator walks the completed app result ids in order and, for each
one, lists its files and hands them to a FileFetchIterator. Each iterator
owns its own position; nothing advances until the work at the current
position has settled, so at most one download is in flight at a time.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from basespace_client import BaseSpaceClient
from exceptions import DownloadError, OutputDirectoryError
from schema import AppResultFile, FetchSummary
from utils import should_download

logger = logging.getLogger(__name__)


def resolve_destination(output_dir: Path, file_id: str, name: str) -> Path:
    """Local path for a file, refusing names that are not a bare filename."""
    if Path(name).name != name or name in (".", ".."):
        raise DownloadError(file_id, Path(output_dir) / name, "unsafe file name")
    return Path(output_dir) / name


def ensure_output_dir(output_dir: Path) -> None:
    try:
        Path(output_dir).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputDirectoryError(
            f"Could not create output directory {output_dir}: {e}"
        ) from e


class FileFetchIterator:
    """Download the qualifying files of one app result, one at a time."""

    def __init__(
        self,
        client: BaseSpaceClient,
        app_result_id: str,
        files: Sequence[AppResultFile],
        output_dir: Path,
        template_name: str,
        negative_control: str,
        on_complete: Optional[Callable[[FetchSummary], None]] = None,
        dry_run: bool = False,
    ):
        self.client = client
        self.app_result_id = app_result_id
        self.files: List[AppResultFile] = list(files)
        self.output_dir = Path(output_dir)
        self.template_name = template_name
        self.negative_control = negative_control
        self.on_complete = on_complete
        self.dry_run = dry_run

        self.index = 0
        self.summary = FetchSummary()
        self._completed = False

    @property
    def done(self) -> bool:
        return self.index >= len(self.files)

    async def advance(self) -> int:
        """
        Handle the file at the current position and move to the next one.

        Returns:
            The new position

        Raises:
            DownloadError: The download failed; the position is not advanced
        """
        if self.done:
            raise RuntimeError(f"No files left for app result {self.app_result_id}")

        app_result_file = self.files[self.index]

        if not should_download(
            app_result_file.name, self.template_name, self.negative_control
        ):
            logger.info(f"Skipping {app_result_file.name}")
            self.summary.skipped.append(app_result_file.name)
            # Let other tasks run between skips
            await asyncio.sleep(0)
        else:
            destination = resolve_destination(
                self.output_dir, app_result_file.id, app_result_file.name
            )
            if self.dry_run:
                logger.info(f"Would download {app_result_file.id} to {destination}")
                self.summary.planned.append(destination)
            else:
                try:
                    path = await self.client.download_file(app_result_file.id, destination)
                except DownloadError:
                    logger.error(
                        f"File download failed for {app_result_file.name} "
                        f"(app result {self.app_result_id})"
                    )
                    raise
                size = ""
                if app_result_file.size is not None:
                    size = f" ({app_result_file.size} bytes)"
                logger.info(f"Download Success {path}{size}")
                self.summary.downloaded.append(path)

        self.index += 1
        return self.index

    async def run(self) -> FetchSummary:
        """Process every remaining file, then signal completion once."""
        while not self.done:
            await self.advance()

        if not self._completed:
            self._completed = True
            logger.debug(f"Finished files for app result {self.app_result_id}")
            if self.on_complete:
                self.on_complete(self.summary)
        return self.summary


class BatchIterator:
    """Fetch the files of each completed app result, strictly in order."""

    def __init__(
        self,
        client: BaseSpaceClient,
        app_result_ids: Sequence[str],
        output_dir: Path,
        template_name: str,
        negative_control: str,
        dry_run: bool = False,
    ):
        self.client = client
        self.app_result_ids: List[str] = list(app_result_ids)
        self.output_dir = Path(output_dir)
        self.template_name = template_name
        self.negative_control = negative_control
        self.dry_run = dry_run

        self.index = 0
        self.summary = FetchSummary()

    @property
    def done(self) -> bool:
        return self.index >= len(self.app_result_ids)

    async def advance(self) -> int:
        """
        List and fetch the files of the app result at the current position.

        Returns:
            The new position

        Raises:
            BaseSpaceError: Listing or downloading failed; the run is over
        """
        if self.done:
            raise RuntimeError("No app results left to fetch")

        app_result_id = self.app_result_ids[self.index]
        files = await self.client.list_files(app_result_id)
        logger.info(f"Found {len(files)} files for app result {app_result_id}")

        file_iterator = FileFetchIterator(
            self.client,
            app_result_id,
            files,
            self.output_dir,
            self.template_name,
            self.negative_control,
            on_complete=self._app_result_finished,
            dry_run=self.dry_run,
        )
        await file_iterator.run()

        self.index += 1
        return self.index

    def _app_result_finished(self, summary: FetchSummary) -> None:
        self.summary.merge(summary)
        self.summary.app_results_processed += 1

    async def run(self) -> FetchSummary:
        """
        Fetch all app results and return what was written.

        Raises:
            OutputDirectoryError: The output directory could not be created
            BaseSpaceError: Listing or downloading failed
        """
        if not self.dry_run:
            ensure_output_dir(self.output_dir)

        while not self.done:
            await self.advance()

        logger.info("Files retrieved")
        return self.summary
