"""Upload job status data model."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    NOT_FOUND = "not-found"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def in_progress(self) -> bool:
        return self in (JobStatus.QUEUED, JobStatus.RUNNING)

    @property
    def terminal(self) -> bool:
        return not self.in_progress


@dataclass(frozen=True)
class FileInfo:
    """A locally resolved content file."""
    path: str
    size: int


class UploadStatus(BaseModel):
    """Snapshot of an upload job, in the shape reported to clients.

    Timestamps are milliseconds since the epoch.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    status: JobStatus
    size: Optional[int] = None
    bytes_uploaded: Optional[int] = Field(default=None, alias="bytesUploaded")
    timestamp_requested: Optional[int] = Field(default=None, alias="timestampRequested")
    timestamp_started: Optional[int] = Field(default=None, alias="timestampStarted")
    timestamp_completed: Optional[int] = Field(default=None, alias="timestampCompleted")
    error: Optional[str] = None

    def updated(self, **changes: Any) -> "UploadStatus":
        """Return a copy with the given fields replaced, keeping the rest."""
        return self.model_copy(update=changes)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
