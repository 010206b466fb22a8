from .task import Task, EPOCH, to_utc, utcnow
from .outcome import TaskOutcome

__all__ = ["Task", "EPOCH", "to_utc", "utcnow", "TaskOutcome"]
