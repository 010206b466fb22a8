import threading
from typing import Any, Dict, Type

import pytest
from pydantic import BaseModel

from task_runner.errors import HandlerNotFoundError
from task_runner.handler_registry import FunctionHandler, HandlerRegistry
from task_runner.handlers.protocol import TaskHandler


class DummyPayload(BaseModel):
    message: str


class DummyHandler(TaskHandler):
    @staticmethod
    def task_name() -> str:
        return "dummy"

    async def async_execute(self, data: Any) -> None:
        pass


@pytest.fixture
def schemas() -> Dict[str, Type[BaseModel]]:
    return {"dummy": DummyPayload}


@pytest.fixture
def handlers(schemas: Dict[str, Type[BaseModel]]) -> HandlerRegistry:
    return HandlerRegistry(schemas)


def test_register_handler(handlers: HandlerRegistry) -> None:
    handlers.register(DummyHandler)
    assert "dummy" in handlers
    assert handlers.names == ["dummy"]


def test_register_handler_duplicate(handlers: HandlerRegistry) -> None:
    handlers.register(DummyHandler)
    with pytest.raises(ValueError, match="A handler for task 'dummy' is already registered"):
        handlers.register_function("dummy", print)


def test_register_function_empty_name(handlers: HandlerRegistry) -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        handlers.register_function("", print)


def test_get_handler(handlers: HandlerRegistry) -> None:
    handlers.register(DummyHandler)
    assert isinstance(handlers.get_handler("dummy"), DummyHandler)


def test_get_function_handler(handlers: HandlerRegistry) -> None:
    handlers.register_function("fn", print)
    handler = handlers.get_handler("fn")
    assert isinstance(handler, FunctionHandler)
    assert handler.task_name() == "fn"


def test_get_handler_unregistered(handlers: HandlerRegistry) -> None:
    with pytest.raises(HandlerNotFoundError, match="No handler registered for task 'missing'"):
        handlers.get_handler("missing")
    with pytest.raises(KeyError):
        handlers.get_handler("missing")


def test_validate_data(handlers: HandlerRegistry) -> None:
    data = {"message": "test"}
    assert handlers.validate_data("dummy", data) is data
    assert handlers.validate_data("no-schema", "anything") == "anything"


def test_validate_data_invalid(handlers: HandlerRegistry) -> None:
    with pytest.raises(ValueError, match="Invalid data for task 'dummy'"):
        handlers.validate_data("dummy", {"invalid_field": "test"})


@pytest.mark.asyncio
async def test_function_handler_sync_and_async() -> None:
    seen = []

    async def async_func(data):
        seen.append(("async", data))

    def sync_func(data):
        seen.append(("sync", data))

    await FunctionHandler("a", async_func).async_execute(1)
    await FunctionHandler("s", sync_func).async_execute(2)

    assert seen == [("async", 1), ("sync", 2)]


@pytest.mark.asyncio
async def test_function_handler_runs_sync_function_off_loop_thread() -> None:
    threads = []

    await FunctionHandler("s", lambda data: threads.append(threading.get_ident())).async_execute(None)

    assert threads and threads[0] != threading.get_ident()
