"""
Task Runner

A persistent task scheduler: tasks are stored in a shared SQL database and
claimed by any number of workers, in one or many processes.

Core Concepts:

Task:
    A named unit of work carrying opaque data. It may be deferred with a start
    time, repeat every N seconds, or belong to a group.

Claim:
    A worker takes a due task by atomically setting its lock timestamp. A lock
    older than the stale lock threshold is treated as abandoned, which is how
    work held by a crashed worker is recovered.

Group:
    Tasks sharing a group are never locked at the same time, so they run one
    after another in start time order. Recurring tasks cannot have a group.

Outcome:
    A successful one-shot task is marked processed and kept for audit. A
    successful recurring task moves its start time forward. A failure is
    recorded on the task, which becomes claimable again right away.
"""

from .domain import EPOCH, Task, TaskOutcome
from .errors import (
    DuplicateTaskError,
    HandlerExecutionError,
    HandlerNotFoundError,
    StoreUnavailableError,
    TaskRunnerError,
    ValidationError,
)
from .handler_registry import HandlerRegistry
from .runner import TaskRunner
from .scheduler import Scheduler
from .settings import WorkerSettings
from .worker import Worker

__all__ = [
    "EPOCH",
    "Task",
    "TaskOutcome",
    "TaskRunnerError",
    "ValidationError",
    "DuplicateTaskError",
    "StoreUnavailableError",
    "HandlerNotFoundError",
    "HandlerExecutionError",
    "HandlerRegistry",
    "Scheduler",
    "TaskRunner",
    "Worker",
    "WorkerSettings",
]
