import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
"""Value of `locked_at` for a task that is not held by any worker."""

GROUP_WITH_REPEAT_ERROR = "Can not specify group for repeatable task"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to an aware UTC value.
    Naive datetimes are taken to be UTC already: SQLite drops tzinfo on the way
    in, so every value read back from it is naive.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Task(BaseModel):
    """
    The persisted unit of schedulable work.
    """
    task_id: str = Field(default_factory=lambda: f"tsk_{uuid.uuid4().hex}", description="Unique task identifier")
    name: str = Field(..., min_length=1, description="Task type, selects the handler")
    data: Any = Field(None, description="Opaque payload handed to the handler")
    group: Optional[str] = Field(None, description="Tasks sharing a group never run concurrently")
    repeat_every: int = Field(0, ge=0, description="Recurrence interval in seconds, 0 for one-shot tasks")
    start_at: datetime = Field(default_factory=utcnow, description="Earliest time the task may be claimed")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    locked_at: datetime = Field(EPOCH, description="Time of the current or last claim, EPOCH when unlocked")
    processed_at: Optional[datetime] = Field(None, description="Time of successful completion")
    failed_at: Optional[datetime] = Field(None, description="Time of the last failure")
    error_msg: Optional[str] = Field(None, description="Message of the last failure")
    retries: int = Field(0, ge=0, description="Number of failed attempts")

    @field_validator("start_at", "created_at", "locked_at", "processed_at", "failed_at")
    @classmethod
    def check_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is None:
            return v
        return to_utc(v)

    @model_validator(mode="after")
    def check_group_and_repeat(self) -> "Task":
        if self.group is not None and self.repeat_every > 0:
            raise ValueError(GROUP_WITH_REPEAT_ERROR)
        return self

    @property
    def is_recurring(self) -> bool:
        return self.repeat_every > 0

    @property
    def is_locked(self) -> bool:
        return self.locked_at != EPOCH

    @property
    def is_processed(self) -> bool:
        return self.processed_at is not None

    @property
    def readable_string(self) -> str:
        summary = f"Task '{self.name}' ({self.task_id})"
        if self.group:
            summary += f" in group '{self.group}'"
        if self.is_recurring:
            summary += f", every {self.repeat_every}s"
        summary += f", starting at {self.start_at.strftime('%Y-%m-%d %H:%M:%S %Z')}"
        if self.retries:
            summary += f", {self.retries} failed attempt(s)"
        return summary
