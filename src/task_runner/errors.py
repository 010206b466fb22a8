from typing import Optional


class TaskRunnerError(Exception):
    """
    Base class for all errors raised by the task runner.
    """


class ValidationError(TaskRunnerError, ValueError):
    """
    Raised by the scheduler when a task cannot be created from the given options.
    Nothing is written to the store when this is raised.
    """


class DuplicateTaskError(TaskRunnerError):
    def __init__(self, task_id: str):
        super().__init__(f"Task with id '{task_id}' already exists")
        self.task_id = task_id


class StoreUnavailableError(TaskRunnerError):
    """
    The store could not be reached or refused the operation for a transient reason.
    """


class HandlerNotFoundError(TaskRunnerError, KeyError):
    def __init__(self, name: str):
        super().__init__(f"No handler registered for task '{name}'")
        self.name = name

    def __str__(self) -> str:
        # KeyError quotes its argument otherwise
        return self.args[0]


class HandlerExecutionError(TaskRunnerError):
    """
    A handler raised while processing a task. Recorded on the task record and
    never surfaced to the code that scheduled the task.
    """

    def __init__(self, task_id: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.task_id = task_id
        self.__cause__ = cause
