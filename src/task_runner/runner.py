import logging
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Type, Union

from task_runner.domain.task import Task
from task_runner.handler_registry import HandlerRegistry
from task_runner.handlers.protocol import TaskHandler
from task_runner.scheduler import Scheduler
from task_runner.settings import WorkerSettings
from task_runner.storages.protocol import Storage
from task_runner.storages.sqlalchemy import SqlAlchemyStorage
from task_runner.worker import Worker

logger = logging.getLogger(__name__)


class TaskRunner:
    """
    Entry point tying a store, a handler registry and workers together.

        runner = await TaskRunner.connect("sqlite+aiosqlite:///./tasks.db")
        runner.register_function("send_email", send_email)
        await runner.schedule("send_email", {"to": "someone@example.com"})
        await runner.start()
    """

    def __init__(
        self,
        storage: Storage,
        registry: Optional[HandlerRegistry] = None,
        settings: Optional[WorkerSettings] = None,
    ):
        self.storage: Storage = storage
        self.registry: HandlerRegistry = registry or HandlerRegistry()
        self.settings: WorkerSettings = settings or WorkerSettings()
        self.scheduler = Scheduler(storage)
        self.workers: List[Worker] = []

    @classmethod
    async def connect(
        cls,
        db_url: str,
        registry: Optional[HandlerRegistry] = None,
        settings: Optional[WorkerSettings] = None,
        **storage_kwargs: Any,
    ) -> "TaskRunner":
        storage = SqlAlchemyStorage(db_url, **storage_kwargs)
        await storage.create_tables()
        logger.info("Connected to %s", storage.engine.url.render_as_string(hide_password=True))
        return cls(storage, registry, settings)

    async def close(self):
        await self.stop()
        await self.storage.close()

    async def __aenter__(self) -> "TaskRunner":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def register(self, handler_class: Type[TaskHandler]) -> None:
        self.registry.register(handler_class)

    def register_function(self, name: str, func: Callable[[Any], Any]) -> None:
        self.registry.register_function(name, func)

    async def schedule(
        self,
        name: str,
        data: Any = None,
        *,
        task_id: Optional[str] = None,
        group: Optional[str] = None,
        repeat_every: Union[int, timedelta] = 0,
        start_at: Optional[datetime] = None,
    ) -> Task:
        return await self.scheduler.schedule(
            name,
            data,
            task_id=task_id,
            group=group,
            repeat_every=repeat_every,
            start_at=start_at,
        )

    async def get_task(self, task_id: str) -> Optional[Task]:
        return await self.storage.get_task(task_id)

    async def list_tasks(self, limit: int = 100, offset: int = 0) -> List[Task]:
        return await self.storage.list_tasks(limit, offset)

    async def remove(
        self,
        task_id: Optional[str] = None,
        name: Optional[str] = None,
        group: Optional[str] = None,
        processed: Optional[bool] = None,
    ) -> int:
        """
        Delete tasks matching every given filter. With no filter, all tasks are deleted.
        """
        return await self.storage.remove_tasks(task_id=task_id, name=name, group=group, processed=processed)

    def worker(self, settings: Optional[WorkerSettings] = None) -> Worker:
        return Worker(self.storage, self.registry, settings or self.settings)

    async def start(self, workers: int = 1):
        """
        Start `workers` poll loops in this process.
        """
        for i in range(workers):
            settings = self.settings
            if workers > 1:
                settings = self.settings.model_copy(update={"worker_id": f"{self.settings.worker_id}/{i}"})
            worker = self.worker(settings)
            await worker.start()
            self.workers.append(worker)

    async def stop(self):
        for worker in self.workers:
            await worker.stop()
        self.workers.clear()
