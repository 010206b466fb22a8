from .protocol import TaskHandler
from .http import HttpCallHandler, HttpCallPayload

__all__ = ["TaskHandler", "HttpCallHandler", "HttpCallPayload"]
