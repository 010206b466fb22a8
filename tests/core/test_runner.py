import asyncio

import pytest

from task_runner import EPOCH, TaskRunner, WorkerSettings
from task_runner.errors import DuplicateTaskError, ValidationError
from task_runner.handlers.http import HttpCallHandler


@pytest.fixture(scope="function")
def settings() -> WorkerSettings:
    return WorkerSettings(worker_id="runner", poll_interval=0.01)


@pytest.mark.asyncio
async def test_connect_and_schedule(db_url: str, settings: WorkerSettings) -> None:
    runner = await TaskRunner.connect(db_url, settings=settings)
    try:
        result = await runner.schedule("test", "d")

        assert result.model_dump(exclude={"task_id", "created_at", "start_at"}) == {
            "name": "test",
            "data": "d",
            "group": None,
            "repeat_every": 0,
            "locked_at": EPOCH,
            "processed_at": None,
            "failed_at": None,
            "error_msg": None,
            "retries": 0,
        }
        assert await runner.get_task(result.task_id) == result
        assert await runner.list_tasks() == [result]

        with pytest.raises(DuplicateTaskError):
            await runner.schedule("test", "d", task_id=result.task_id)
        with pytest.raises(ValidationError):
            await runner.schedule("test", "d", group="g", repeat_every=1)
    finally:
        await runner.close()


@pytest.mark.asyncio
async def test_tasks_survive_reconnect(db_url: str) -> None:
    async with await TaskRunner.connect(db_url) as runner:
        task = await runner.schedule("test", {"n": 1}, task_id="persistent")

    async with await TaskRunner.connect(db_url) as runner:
        assert await runner.get_task("persistent") == task


@pytest.mark.asyncio
async def test_workers_process_tasks(db_url: str, settings: WorkerSettings) -> None:
    seen = []

    async with await TaskRunner.connect(db_url, settings=settings) as runner:
        runner.register_function("collect", seen.append)
        runner.register(HttpCallHandler)
        for i in range(6):
            await runner.schedule("collect", i)

        await runner.start(workers=3)
        assert [w.worker_id for w in runner.workers] == ["runner/0", "runner/1", "runner/2"]

        async def drained():
            while len(seen) < 6:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(drained(), 5)
        await runner.stop()
        assert runner.workers == []

        assert sorted(seen) == list(range(6))
        assert all(t.is_processed for t in await runner.list_tasks())


@pytest.mark.asyncio
async def test_remove(db_url: str) -> None:
    async with await TaskRunner.connect(db_url) as runner:
        await runner.schedule("a", 1, group="g")
        await runner.schedule("a", 2)
        await runner.schedule("b", 3, group="g")

        assert await runner.remove(group="g", name="b") == 1
        assert await runner.remove(name="a") == 2
        assert await runner.list_tasks() == []
