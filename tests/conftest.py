from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from task_runner.handler_registry import HandlerRegistry
from task_runner.storages.sqlalchemy import SqlAlchemyStorage


class FakeClock:
    """
    Store clock that only moves when told to, so lock ages are exact.
    """

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture(scope="function")
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, 0, 250000, tzinfo=timezone.utc))


@pytest.fixture(scope="function")
def db_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'tasks.db'}"


@pytest_asyncio.fixture(scope="function")
async def storage(db_url: str, clock: FakeClock):
    storage = SqlAlchemyStorage(db_url, clock=clock)
    await storage.create_tables()
    yield storage
    await storage.close()


@pytest.fixture(scope="function")
def calls() -> list:
    return []


@pytest.fixture(scope="function")
def registry(calls: list) -> HandlerRegistry:
    async def record(data):
        calls.append(data)

    def explode(data):
        raise RuntimeError(f"cannot process {data}")

    registry = HandlerRegistry()
    registry.register_function("record", record)
    registry.register_function("explode", explode)
    return registry
