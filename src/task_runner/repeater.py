import logging
from datetime import datetime, timedelta
from typing import Optional

from task_runner.domain.task import Task
from task_runner.storages.protocol import Storage

logger = logging.getLogger(__name__)


class Repeater:
    """
    Puts a recurring task back in the queue after a successful run. The task
    keeps its id forever; only its start time moves.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    def next_start_at(self, task: Task, now: datetime) -> datetime:
        return now + timedelta(seconds=task.repeat_every)

    async def reschedule(self, task: Task, now: datetime) -> Optional[Task]:
        if not task.is_recurring:
            raise ValueError(f"Task {task.task_id} is not recurring")
        updated = await self.storage.reschedule_task(task, self.next_start_at(task, now))
        if updated is not None:
            logger.debug("Rescheduled %s", updated.readable_string)
        return updated
