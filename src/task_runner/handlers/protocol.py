from typing import Any, Protocol


class TaskHandler(Protocol):
    """
    Protocol class for task handlers.

    A handler receives the task's data and signals failure by raising. Whatever
    it returns is ignored.
    """

    async def async_execute(self, data: Any) -> None:
        """
        Asynchronously process the data of a task.

        Args:
            data (Any): The task data, exactly as it was scheduled.
        """
        ...

    @staticmethod
    def task_name() -> str:
        """
        Return the name of the tasks this handler processes.
        """
        ...
