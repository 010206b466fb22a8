import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional, Union

from task_runner.domain.task import Task
from task_runner.storages.protocol import Storage

logger = logging.getLogger(__name__)

Threshold = Union[int, float, timedelta]


def as_timedelta(value: Threshold) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=value)


class Locker:
    """
    Claims due tasks for workers.

    A claim sets `locked_at` to the current store time. Locks older than
    `stale_lock_threshold` are considered abandoned by a crashed worker and the
    task becomes claimable again.
    """

    def __init__(self, storage: Storage, stale_lock_threshold: Threshold = 600):
        self.storage = storage
        self.stale_lock_threshold = as_timedelta(stale_lock_threshold)
        if self.stale_lock_threshold <= timedelta(0):
            raise ValueError("stale_lock_threshold must be positive")

    def stale_before(self, now: datetime) -> datetime:
        return now - self.stale_lock_threshold

    async def claim_next(self, worker_id: str, names: Optional[Iterable[str]] = None) -> Optional[Task]:
        """
        Lock the next due task and return it, or None when nothing is claimable.
        Losing a race against another worker also yields None.
        """
        now = await self.storage.now()
        task = await self.storage.claim_next(now, self.stale_before(now), names)
        if task is None:
            return None
        logger.debug("Worker %s claimed %s", worker_id, task.readable_string)
        return task

    async def release_stale_locks(self) -> int:
        now = await self.storage.now()
        released = await self.storage.release_stale_locks(self.stale_before(now))
        if released:
            logger.warning("Released %d stale lock(s) older than %s", released, self.stale_lock_threshold)
        return released
