from pathlib import Path
from typing import Optional


class BaseSpaceError(Exception):
    """Base class for failures talking to BaseSpace or handling its results."""


class TransportError(BaseSpaceError):
    """The service could not be reached."""


class ServerError(BaseSpaceError):
    """The service answered with a non-200 status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Response status is {status_code} {body}")


class DecodeError(BaseSpaceError):
    """A response body did not match the expected shape."""


class DownloadError(BaseSpaceError):
    """A file could not be streamed to disk."""

    def __init__(self, file_id: str, destination: Path, reason: Optional[str] = None):
        self.file_id = file_id
        self.destination = destination
        message = f"File download failed for {file_id} -> {destination}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class PollingTimeoutError(BaseSpaceError):
    """The batch did not complete within the polling budget."""


class ConfigError(ValueError):
    """Configuration is missing or invalid."""


class OutputDirectoryError(BaseSpaceError):
    """The output directory could not be created."""
