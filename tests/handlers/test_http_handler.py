import aiohttp
import pytest
from aioresponses import aioresponses
from pydantic import ValidationError

from task_runner.domain.outcome import TaskOutcome
from task_runner.executor import Executor
from task_runner.handler_registry import HandlerRegistry
from task_runner.handlers.http import HttpCallHandler, HttpCallPayload
from task_runner.locker import Locker
from task_runner.scheduler import Scheduler


@pytest.fixture(scope="function")
def http_handler() -> HttpCallHandler:
    return HttpCallHandler()


@pytest.fixture(scope="function")
def sample_data() -> dict:
    return HttpCallPayload(
        method="GET",
        url="https://example.com",
        headers={"Content-Type": "application/json"},
        params={"key": "value"}
    ).model_dump()


@pytest.mark.asyncio
async def test_async_execute_success(http_handler, sample_data):
    with aioresponses() as m:
        m.get(
            'https://example.com?key=value',
            status=200,
            headers={"Content-Type": "application/json"},
            body='{"result": "success"}'
        )

        await http_handler.async_execute(sample_data)


@pytest.mark.asyncio
async def test_async_execute_post_body(http_handler):
    with aioresponses() as m:
        m.post('https://example.com/hook', status=201)

        await http_handler.async_execute({"url": "https://example.com/hook", "body": {"event": "ping"}})

        (request,) = next(iter(m.requests.values()))
        assert request.kwargs["json"] == {"event": "ping"}


@pytest.mark.asyncio
async def test_async_execute_error_status(http_handler, sample_data):
    with aioresponses() as m:
        m.get('https://example.com?key=value', status=503)

        with pytest.raises(aiohttp.ClientResponseError):
            await http_handler.async_execute(sample_data)


@pytest.mark.asyncio
async def test_async_execute_connection_error(http_handler, sample_data):
    sample_data["url"] = "https://non-existent-url.com"

    with aioresponses() as m:
        m.get(
            'https://non-existent-url.com?key=value',
            exception=aiohttp.ClientConnectionError("Connection error")
        )

        with pytest.raises(aiohttp.ClientConnectionError, match="Connection error"):
            await http_handler.async_execute(sample_data)


@pytest.mark.asyncio
async def test_async_execute_invalid_payload(http_handler):
    with pytest.raises(ValidationError):
        await http_handler.async_execute({"invalid": "payload"})


@pytest.mark.asyncio
async def test_failed_call_recorded_on_task(storage, sample_data):
    registry = HandlerRegistry()
    registry.register(HttpCallHandler)
    task = await Scheduler(storage).schedule("http_call", sample_data)
    claimed = await Locker(storage).claim_next("w")

    with aioresponses() as m:
        m.get('https://example.com?key=value', status=500)
        outcome = await Executor(storage, registry).run(claimed)

    assert outcome == TaskOutcome.FAILED
    stored = await storage.get_task(task.task_id)
    assert stored.retries == 1
    assert "500" in stored.error_msg
