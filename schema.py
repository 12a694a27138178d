from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AppResultStatus(str, Enum):
    """Status of an app result as reported by BaseSpace."""

    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETE = "Complete"
    FAILED = "Failed"
    OTHER = "Other"


def _coerce_id(value: Any) -> Any:
    # BaseSpace ids are strings, but older payloads carry them as numbers
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


class AppResult(BaseModel):
    """One analysis job (app result) belonging to a project."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., alias="Id", min_length=1, description="App result id")
    status: AppResultStatus = Field(
        ..., alias="Status", description="Current status of the app result"
    )
    name: Optional[str] = Field(default=None, alias="Name")

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("status", mode="before")
    @classmethod
    def _unknown_status_is_other(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        try:
            return AppResultStatus(value)
        except ValueError:
            return AppResultStatus.OTHER

    @property
    def is_complete(self) -> bool:
        return self.status is AppResultStatus.COMPLETE


class AppResultFile(BaseModel):
    """Metadata for one output file of an app result."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., alias="Id", min_length=1, description="File id")
    name: str = Field(
        ...,
        alias="Name",
        min_length=1,
        description="File name, also used as the local output filename",
    )
    size: Optional[int] = Field(default=None, alias="Size", ge=0)

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, value: Any) -> Any:
        return _coerce_id(value)


class ItemsPage(BaseModel):
    """The ``Response`` object of a BaseSpace list call."""

    model_config = ConfigDict(populate_by_name=True)

    items: List[Dict[str, Any]] = Field(..., alias="Items")
    total_count: Optional[int] = Field(default=None, alias="TotalCount", ge=0)


class ItemsResponse(BaseModel):
    """Envelope shared by the app result and file listings."""

    model_config = ConfigDict(populate_by_name=True)

    response: ItemsPage = Field(..., alias="Response")


class OutcomeState(str, Enum):
    PENDING = "pending"
    DONE = "done"
    TIMED_OUT = "timed_out"


class PollOutcome(BaseModel):
    """Decision reached for one poll tick."""

    state: OutcomeState
    app_result_ids: List[str] = Field(default_factory=list)

    @classmethod
    def pending(cls) -> "PollOutcome":
        return cls(state=OutcomeState.PENDING)

    @classmethod
    def timed_out(cls) -> "PollOutcome":
        return cls(state=OutcomeState.TIMED_OUT)

    @classmethod
    def done(cls, app_result_ids: List[str]) -> "PollOutcome":
        return cls(state=OutcomeState.DONE, app_result_ids=list(app_result_ids))


class FetchSummary(BaseModel):
    """What a completed fetch run wrote to disk."""

    app_results_processed: int = 0
    downloaded: List[Path] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    planned: List[Path] = Field(
        default_factory=list, description="Files a dry run would have downloaded"
    )

    def merge(self, other: "FetchSummary") -> None:
        self.app_results_processed += other.app_results_processed
        self.downloaded.extend(other.downloaded)
        self.skipped.extend(other.skipped)
        self.planned.extend(other.planned)
