import os
import socket
import uuid
from typing import Mapping, Optional

from pydantic import BaseModel, Field


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class WorkerSettings(BaseModel):
    """
    Tuning knobs for a worker poll loop. Durations are in seconds.
    """
    worker_id: str = Field(default_factory=default_worker_id, description="Identifies the worker in logs")
    poll_interval: float = Field(1.0, gt=0, description="Sleep between polls when no task is claimable")
    stale_lock_threshold: float = Field(600.0, gt=0, description="Age after which a lock is considered abandoned")
    concurrency: int = Field(1, ge=1, description="Maximum number of tasks run at once by one worker")
    max_backoff: float = Field(30.0, gt=0, description="Upper bound of the retry delay while the store is unavailable")
    stale_sweep_interval: Optional[float] = Field(None, gt=0, description="How often to release stale locks, None to disable")

    @classmethod
    def from_env(cls, prefix: str = "TASK_RUNNER_", environ: Optional[Mapping[str, str]] = None) -> "WorkerSettings":
        """
        Build settings from environment variables named `<prefix><FIELD>`,
        e.g. TASK_RUNNER_POLL_INTERVAL=0.5. Unset or empty variables keep their default.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(f"{prefix}{name.upper()}")
            if raw is not None and raw.strip() != "":
                values[name] = raw.strip()
        return cls.model_validate(values)
