from datetime import datetime
from typing import Iterable, List, Optional, Protocol

from task_runner.domain.task import Task


class Storage(Protocol):
    """
    Durable store shared by schedulers and workers.

    Every mutating method is a single atomic statement against the store. Methods
    that finish a claim are keyed by the task id and the `locked_at` value the
    claim set, and return None when the claim is no longer held.
    """

    async def create_tables(self) -> None:
        """Create the schema if it does not exist."""
        ...

    async def close(self) -> None:
        """Release all connections."""
        ...

    async def now(self) -> datetime:
        """Current time according to the store, as aware UTC."""
        ...

    async def insert_task(self, task: Task) -> Task:
        """Insert a new task. Raise DuplicateTaskError if the task id is taken."""
        ...

    async def get_task(self, task_id: str) -> Optional[Task]:
        """Retrieve a task by its ID."""
        ...

    async def list_tasks(self, limit: int = 100, offset: int = 0) -> List[Task]:
        """List tasks ordered by start time."""
        ...

    async def claim_next(
        self,
        now: datetime,
        stale_before: datetime,
        names: Optional[Iterable[str]] = None,
    ) -> Optional[Task]:
        """Atomically lock the best claimable task and return it, or None."""
        ...

    async def complete_task(self, task: Task, processed_at: datetime) -> Optional[Task]:
        """Mark a claimed one-shot task as processed."""
        ...

    async def fail_task(self, task: Task, failed_at: datetime, error_msg: str) -> Optional[Task]:
        """Record a failure, bump retries and unlock the task."""
        ...

    async def reschedule_task(self, task: Task, start_at: datetime) -> Optional[Task]:
        """Move a claimed recurring task to its next start time and unlock it."""
        ...

    async def release_task(self, task: Task) -> Optional[Task]:
        """Unlock a claimed task without recording an attempt."""
        ...

    async def release_stale_locks(self, stale_before: datetime) -> int:
        """Unlock every unprocessed task locked before `stale_before`."""
        ...

    async def remove_tasks(
        self,
        task_id: Optional[str] = None,
        name: Optional[str] = None,
        group: Optional[str] = None,
        processed: Optional[bool] = None,
    ) -> int:
        """Delete tasks matching all given filters and return how many were removed."""
        ...
