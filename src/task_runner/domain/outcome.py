from enum import Enum


class TaskOutcome(str, Enum):
    """
    Result of running a claimed task.
    """
    COMPLETED = "completed"
    RESCHEDULED = "rescheduled"
    FAILED = "failed"
    LOST = "lost"
