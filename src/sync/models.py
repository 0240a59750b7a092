"""Data models for synchronization operations."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class CrudAction(str, Enum):
    """Kind of change the Registry reports for a stop place version."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    REMOVE = "REMOVE"


class UpdateType(str, Enum):
    """Classification of an UPDATE, from least to most specific."""

    MINOR = "MINOR"
    MAJOR = "MAJOR"
    NAME = "NAME"
    TYPE = "TYPE"
    COORDINATES = "COORDINATES"
    NEW_QUAY = "NEW_QUAY"
    REMOVED_QUAY = "REMOVED_QUAY"


class SyncMode(str, Enum):
    FULL = "FULL"
    DELTA = "DELTA"


class TaskKind(str, Enum):
    DELETE_UNUSED = "DELETE_UNUSED"
    PUSH_BATCH = "PUSH_BATCH"


class CycleStatus(str, Enum):
    COMPLETED = "COMPLETED"
    DEFERRED = "DEFERRED"


class TriggerMessage(BaseModel):
    """Message published by a cron trigger onto the sync queue."""

    full_sync: bool = Field(default=False, description="Request a full resynchronization")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ChangedStopPlace(BaseModel):
    """Reference to a stop place version changed inside a sync window."""

    id: str = Field(default=..., min_length=1, description="Stop place identifier")
    version: int = Field(default=..., ge=1, description="Changed version")
    crud_action: CrudAction = Field(default=..., alias="action", description="Reported change kind")

    model_config = {"populate_by_name": True}


class SyncWindow(BaseModel):
    """Time range queried from the Registry during one cycle."""

    from_time: datetime | None = Field(
        default=None, description="Previous watermark, None means unbounded"
    )
    to_time: datetime = Field(default=..., description="Cycle start, the next watermark")

    @model_validator(mode="after")
    def validate_order(self) -> "SyncWindow":
        if self.from_time is not None and self.from_time > self.to_time:
            raise ValueError("from_time must not be after to_time")
        return self


class SyncBatch(BaseModel):
    """Outbound batch of classified stop place changes."""

    mode: SyncMode = Field(default=...)
    window: SyncWindow = Field(default=...)
    changes: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.changes)


class RetryableTask(BaseModel):
    """Step of a cycle to redeliver after the Repository reported busy."""

    kind: TaskKind = Field(default=...)
    payload: SyncBatch | None = Field(default=None, description="Batch for PUSH_BATCH tasks")
    full_sync: bool = Field(default=False)

    @model_validator(mode="after")
    def validate_payload(self) -> "RetryableTask":
        if self.kind == TaskKind.PUSH_BATCH and self.payload is None:
            raise ValueError("PUSH_BATCH task requires a batch payload")
        return self


class SyncReport(BaseModel):
    """Report of one synchronization attempt."""

    mode: SyncMode = Field(default=...)
    status: CycleStatus = Field(default=...)
    changes_pushed: int = Field(default=0, ge=0, description="Number of changes accepted")
    window: SyncWindow | None = Field(default=None)
    start_time: datetime = Field(default=..., description="Attempt start timestamp")
    end_time: datetime = Field(default=..., description="Attempt end timestamp")
    duration_seconds: float = Field(default=0.0, ge=0.0)
    deferred_task: RetryableTask | None = Field(default=None)

    @property
    def completed(self) -> bool:
        return self.status == CycleStatus.COMPLETED
