import asyncio
import logging
from typing import Optional, Set

from task_runner.domain.outcome import TaskOutcome
from task_runner.domain.task import Task
from task_runner.errors import HandlerNotFoundError, StoreUnavailableError
from task_runner.executor import Executor
from task_runner.handler_registry import HandlerRegistry
from task_runner.locker import Locker
from task_runner.settings import WorkerSettings
from task_runner.storages.protocol import Storage

logger = logging.getLogger(__name__)


class Worker:
    """
    Cooperative poll loop: claim a due task, run it, record the outcome, repeat.

    Workers share nothing but the store, so any number of them may run in one
    or many processes. A worker only claims tasks it has a handler for.
    """

    def __init__(self, storage: Storage, registry: HandlerRegistry, settings: Optional[WorkerSettings] = None):
        self.storage = storage
        self.registry = registry
        self.settings = settings or WorkerSettings()
        self.locker = Locker(storage, self.settings.stale_lock_threshold)
        self.executor = Executor(storage, registry)
        self.poll_task: Optional[asyncio.Task] = None
        self.is_running: bool = False
        self.running: Set[asyncio.Task] = set()
        self._slots: Optional[asyncio.Semaphore] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def worker_id(self) -> str:
        return self.settings.worker_id

    async def start(self):
        """
        Start polling in the background.
        """
        if not self.is_running:
            self.is_running = True
            self._slots = asyncio.Semaphore(self.settings.concurrency)
            self._stop_event = asyncio.Event()
            self.poll_task = asyncio.create_task(self._poll_loop())
            logger.info("Worker %s started, handling %s", self.worker_id, ", ".join(self.registry.names) or "nothing")

    async def stop(self):
        """
        Stop claiming new tasks and wait for the running ones to finish.
        Running handlers are never cancelled.
        """
        if self.is_running:
            self.is_running = False
            self._stop_event.set()
            if self.poll_task:
                await self.poll_task
                self.poll_task = None
            if self.running:
                await asyncio.gather(*self.running, return_exceptions=True)
            logger.info("Worker %s stopped", self.worker_id)

    async def run_once(self) -> Optional[TaskOutcome]:
        """
        Claim and run a single task. Returns None when nothing was claimable.
        """
        task = await self.locker.claim_next(self.worker_id, self.registry.names)
        if task is None:
            return None
        return await self.executor.run(task)

    async def _poll_loop(self):
        loop = asyncio.get_running_loop()
        delay = self.settings.poll_interval
        last_sweep = loop.time()
        while self.is_running:
            await self._slots.acquire()
            if not self.is_running:
                self._slots.release()
                break

            try:
                if self._sweep_due(loop.time() - last_sweep):
                    last_sweep = loop.time()
                    await self.locker.release_stale_locks()
                task = await self.locker.claim_next(self.worker_id, self.registry.names)
            except StoreUnavailableError as e:
                self._slots.release()
                logger.error("Worker %s cannot reach the store, retrying in %.1fs: %s", self.worker_id, delay, e)
                await self._sleep(delay)
                delay = min(delay * 2, self.settings.max_backoff)
                continue
            except BaseException:
                self._slots.release()
                raise

            delay = self.settings.poll_interval
            if task is None:
                self._slots.release()
                await self._sleep(self.settings.poll_interval)
                continue

            future = asyncio.create_task(self._run_claimed(task))
            self.running.add(future)
            future.add_done_callback(self._handle_run_completion)

    def _sweep_due(self, elapsed: float) -> bool:
        interval = self.settings.stale_sweep_interval
        return interval is not None and elapsed >= interval

    async def _run_claimed(self, task: Task) -> Optional[TaskOutcome]:
        try:
            return await self.executor.run(task)
        except HandlerNotFoundError as e:
            logger.error("Worker %s: %s", self.worker_id, e)
        except StoreUnavailableError as e:
            logger.error(
                "Worker %s could not record the outcome of task %s, its lock will expire: %s",
                self.worker_id, task.task_id, e,
            )
        except Exception:
            logger.exception("Worker %s: unexpected error running task %s", self.worker_id, task.task_id)
        return None

    def _handle_run_completion(self, future: asyncio.Task):
        self.running.discard(future)
        self._slots.release()

    async def _sleep(self, delay: float):
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
