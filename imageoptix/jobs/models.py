"""Job state data model for async batch processing."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    STARTING = "starting"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ResultType(str, Enum):
    URLS = "urls"
    ZIP = "zip"
    FILE = "file"


class JobResult(BaseModel):
    """Delivered output of a completed job.

    ``urls`` holds one hosted link per item. ``zip`` and ``file`` carry a
    payload with a suggested filename; ``url`` is set when the payload has
    also been hosted.
    """

    model_config = {"frozen": True}

    type: ResultType
    urls: List[str] = Field(default_factory=list)
    filename: Optional[str] = None
    content_type: Optional[str] = None
    url: Optional[str] = None
    data: Optional[bytes] = Field(default=None, exclude=True, repr=False)

    @property
    def size(self) -> int:
        return len(self.data) if self.data is not None else 0

    @model_validator(mode="after")
    def check_shape(self):
        if self.type == ResultType.URLS:
            if not self.urls:
                raise ValueError("urls result requires at least one url")
        elif self.data is None or not self.filename:
            raise ValueError(f"{self.type.value} result requires data and filename")
        return self


class JobState(BaseModel):
    """Immutable snapshot of one job. Updates replace the whole snapshot."""

    model_config = {"frozen": True}

    id: str
    status: JobStatus = JobStatus.STARTING
    progress: int = Field(0, ge=0)
    total: int = Field(..., ge=0)
    info: Optional[str] = None
    result: Optional[JobResult] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def check_invariants(self):
        if self.progress > self.total:
            raise ValueError("progress cannot exceed total")
        if self.status == JobStatus.COMPLETED:
            if self.result is None or self.error is not None:
                raise ValueError("completed job must carry a result and no error")
            if self.progress != self.total:
                raise ValueError("completed job must have progress == total")
        elif self.status == JobStatus.FAILED:
            if not self.error or self.result is not None:
                raise ValueError("failed job must carry an error and no result")
        elif self.result is not None or self.error is not None:
            raise ValueError("result/error are only set on terminal jobs")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def evolve(self, **changes) -> "JobState":
        """Return a validated copy with ``changes`` applied and a fresh timestamp."""
        values = dict(self)
        values.update(changes)
        values["updated_at"] = _utcnow()
        return JobState(**values)


@dataclass(frozen=True)
class BatchItem:
    """One submitted image."""
    name: str
    data: bytes
