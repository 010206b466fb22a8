import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel

from task_runner.errors import HandlerNotFoundError
from task_runner.handlers.protocol import TaskHandler


class FunctionHandler(TaskHandler):
    """
    Adapts a plain function taking the task data to the TaskHandler protocol.
    Synchronous functions run in a worker thread so they do not block the loop.
    """

    def __init__(self, name: str, func: Callable[[Any], Any]):
        self._name = name
        self.func = func

    def task_name(self) -> str:
        return self._name

    async def async_execute(self, data: Any) -> None:
        if inspect.iscoroutinefunction(self.func):
            await self.func(data)
        else:
            await asyncio.to_thread(self.func, data)


class HandlerRegistry:
    """
    Maps task names to the handlers that process them.
    """
    def __init__(self, schemas: Optional[Dict[str, Type[BaseModel]]] = None):
        self._schemas: Dict[str, Type[BaseModel]] = dict(schemas or {})
        self._handlers: Dict[str, Union[Type[TaskHandler], FunctionHandler]] = {}

    @property
    def schemas(self) -> Dict[str, Type[BaseModel]]:
        return self._schemas

    @property
    def names(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def register(self, handler_class: Type[TaskHandler]) -> None:
        """
        Register a handler class for the task name it declares.

        Args:
            handler_class (Type[TaskHandler]): The handler class to register.
        """
        self._add(handler_class.task_name(), handler_class)

    def register_function(self, name: str, func: Callable[[Any], Any]) -> None:
        """
        Register a plain function, sync or async, called with the task data.
        """
        self._add(name, FunctionHandler(name, func))

    def _add(self, name: str, handler: Union[Type[TaskHandler], FunctionHandler]) -> None:
        if not name:
            raise ValueError("Task name must not be empty")
        if name in self._handlers:
            raise ValueError(f"A handler for task '{name}' is already registered")
        self._handlers[name] = handler

    def get_handler(self, name: str) -> TaskHandler:
        """
        Get a handler instance for a task name.

        Raises:
            HandlerNotFoundError: If no handler is registered for the name.
        """
        if name not in self._handlers:
            raise HandlerNotFoundError(name)
        handler = self._handlers[name]
        if isinstance(handler, FunctionHandler):
            return handler
        return handler()

    def validate_data(self, name: str, data: Any) -> Any:
        """
        Validate task data against the schema registered for the task name, if any.
        The data itself is returned unchanged.

        Raises:
            ValueError: If the data does not match the schema.
        """
        schema = self._schemas.get(name)
        if schema is None:
            return data
        try:
            schema.model_validate(data)
        except ValueError as e:
            raise ValueError(f"Invalid data for task '{name}': {str(e)}")
        return data
