import json
import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from task_runner.domain.task import EPOCH, GROUP_WITH_REPEAT_ERROR, Task
from task_runner.errors import ValidationError
from task_runner.storages.protocol import Storage

logger = logging.getLogger(__name__)

ONE_SECOND = timedelta(seconds=1)


def repeat_seconds(repeat_every: Union[int, timedelta]) -> int:
    """
    Normalize a recurrence interval to whole seconds.

    Raises:
        ValidationError: If the interval is not a whole number of seconds.
    """
    if isinstance(repeat_every, timedelta):
        if repeat_every % ONE_SECOND:
            raise ValidationError("repeat_every must be a whole number of seconds")
        return repeat_every // ONE_SECOND
    if isinstance(repeat_every, bool) or not isinstance(repeat_every, int):
        raise ValidationError("repeat_every must be a whole number of seconds")
    return repeat_every


def check_data(data: Any) -> None:
    """
    Reject data that would not come back from the store as it was given, such
    as tuples or mappings with non-string keys.

    Raises:
        ValidationError: If the data does not survive a JSON round trip unchanged.
    """
    try:
        restored = json.loads(json.dumps(data, allow_nan=False))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Task data must be JSON serializable: {e}") from e
    if restored != data:
        raise ValidationError("Task data must use JSON types only (str keys, lists instead of tuples)")


class Scheduler:
    """
    Validates and inserts new tasks.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    def check_options(
        self,
        name: str,
        data: Any,
        group: Optional[str] = None,
        repeat_every: Union[int, timedelta] = 0,
    ) -> int:
        """
        Validate the options that do not depend on the current time.
        Returns the recurrence interval in seconds.

        Raises:
            ValidationError: If the options do not describe a valid task.
        """
        if not isinstance(name, str) or not name:
            raise ValidationError("Task name must be a non-empty string")
        repeat_every = repeat_seconds(repeat_every)
        if repeat_every < 0:
            raise ValidationError("repeat_every must not be negative")
        if group is not None and repeat_every > 0:
            raise ValidationError(GROUP_WITH_REPEAT_ERROR)
        check_data(data)
        return repeat_every

    def build_task(
        self,
        name: str,
        data: Any,
        now: datetime,
        task_id: Optional[str] = None,
        group: Optional[str] = None,
        repeat_every: int = 0,
        start_at: Optional[datetime] = None,
    ) -> Task:
        """
        Build a pending task record without touching the store.

        Raises:
            ValidationError: If the options do not describe a valid task.
        """
        check_data(data)

        fields = dict(
            name=name,
            data=data,
            group=group,
            repeat_every=repeat_every,
            start_at=start_at if start_at is not None else now,
            created_at=now,
            locked_at=EPOCH,
        )
        if task_id is not None:
            fields["task_id"] = task_id

        try:
            return Task(**fields)
        except PydanticValidationError as e:
            # pydantic prefixes model validator messages with "Value error, "
            messages = [err["msg"].removeprefix("Value error, ") for err in e.errors()]
            raise ValidationError("; ".join(messages)) from e

    async def schedule(
        self,
        name: str,
        data: Any = None,
        *,
        task_id: Optional[str] = None,
        group: Optional[str] = None,
        repeat_every: Union[int, timedelta] = 0,
        start_at: Optional[datetime] = None,
    ) -> Task:
        """
        Create a task and persist it.

        Args:
            name (str): Task type, selects the handler that will process it.
            data (Any): JSON payload handed to the handler exactly as given.
            task_id (Optional[str]): Explicit id. Generated when omitted.
            group (Optional[str]): Tasks of one group never run concurrently.
            repeat_every (Union[int, timedelta]): Seconds between runs of a recurring task, 0 for one-shot.
            start_at (Optional[datetime]): Earliest run time, defaults to now.

        Returns:
            Task: The persisted record, including generated id and timestamps.

        Raises:
            ValidationError: If the options are invalid. Raised before the store is contacted.
            DuplicateTaskError: If a task with the same id exists.
            StoreUnavailableError: If the store cannot be reached.
        """
        repeat_every = self.check_options(name, data, group=group, repeat_every=repeat_every)

        now = await self.storage.now()
        task = self.build_task(
            name,
            data,
            now,
            task_id=task_id,
            group=group,
            repeat_every=repeat_every,
            start_at=start_at,
        )
        task = await self.storage.insert_task(task)
        logger.info("Scheduled %s", task.readable_string)
        return task
