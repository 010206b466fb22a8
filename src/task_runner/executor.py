import asyncio
import logging
from typing import Optional

from task_runner.domain.outcome import TaskOutcome
from task_runner.domain.task import Task
from task_runner.errors import HandlerExecutionError, HandlerNotFoundError
from task_runner.handler_registry import HandlerRegistry
from task_runner.repeater import Repeater
from task_runner.storages.protocol import Storage

logger = logging.getLogger(__name__)


class Executor:
    """
    Runs claimed tasks and writes their outcome back to the store.
    """

    def __init__(self, storage: Storage, registry: HandlerRegistry, repeater: Optional[Repeater] = None):
        self.storage = storage
        self.registry = registry
        self.repeater = repeater or Repeater(storage)

    async def run(self, task: Task) -> TaskOutcome:
        """
        Run the handler for a task previously returned by a claim.

        Handler failures are recorded on the task and reported as
        TaskOutcome.FAILED, they are never raised.

        Raises:
            HandlerNotFoundError: If no handler is registered for the task name.
                The claim is released first so the task stays claimable.
        """
        try:
            handler = self.registry.get_handler(task.name)
        except HandlerNotFoundError:
            await self.storage.release_task(task)
            raise

        try:
            data = self.registry.validate_data(task.name, task.data)
            await handler.async_execute(data)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = HandlerExecutionError(task.task_id, str(e) or type(e).__name__, cause=e)
            return await self._record_failure(task, error)

        now = await self.storage.now()
        if task.is_recurring:
            updated = await self.repeater.reschedule(task, now)
            outcome = TaskOutcome.RESCHEDULED
        else:
            updated = await self.storage.complete_task(task, now)
            outcome = TaskOutcome.COMPLETED

        if updated is None:
            return self._lost(task)
        logger.info("Task %s (%s) %s", task.task_id, task.name, outcome.value)
        return outcome

    async def _record_failure(self, task: Task, error: HandlerExecutionError) -> TaskOutcome:
        logger.warning(
            "Task %s (%s) failed on attempt %d: %s",
            task.task_id, task.name, task.retries + 1, error,
            exc_info=error.__cause__,
        )
        now = await self.storage.now()
        updated = await self.storage.fail_task(task, now, str(error))
        if updated is None:
            return self._lost(task)
        return TaskOutcome.FAILED

    def _lost(self, task: Task) -> TaskOutcome:
        logger.warning(
            "Lock on task %s (%s) was lost before its outcome could be recorded",
            task.task_id, task.name,
        )
        return TaskOutcome.LOST
