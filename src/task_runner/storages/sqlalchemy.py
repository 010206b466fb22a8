import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, delete, func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from task_runner.domain.task import EPOCH, Task, to_utc, utcnow
from task_runner.errors import DuplicateTaskError, StoreUnavailableError
from task_runner.storages.eligibility import claimable
from task_runner.storages.protocol import Storage

logger = logging.getLogger(__name__)

Base = declarative_base()


class TaskModel(Base):
    __tablename__ = 'tasks'

    task_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    data = Column(JSON)
    group = Column(String)
    repeat_every = Column(Integer, nullable=False, default=0)
    start_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    locked_at = Column(DateTime(timezone=True), nullable=False, default=EPOCH)
    processed_at = Column(DateTime(timezone=True))
    failed_at = Column(DateTime(timezone=True))
    error_msg = Column(String)
    retries = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_tasks_claim", "processed_at", "start_at"),
        Index("ix_tasks_group", "group"),
    )


tasks_table = TaskModel.__table__

SERIALIZATION_FAILURES = ("40001", "40P01")


def default_claim_isolation_level(dialect_name: str) -> Optional[str]:
    """
    Isolation level the claim transaction runs at.

    SQLite serializes writers on its own. Server databases at READ COMMITTED
    would let two workers each see an idle group and claim different members
    of it, so the claim runs SERIALIZABLE there.
    """
    if dialect_name == "sqlite":
        return None
    return "SERIALIZABLE"


def is_serialization_failure(error: DBAPIError) -> bool:
    sqlstate = getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)
    return sqlstate in SERIALIZATION_FAILURES


class SqlAlchemyStorage(Storage):
    """
    Task store on any SQLAlchemy async database.

    Claiming is one UPDATE ... RETURNING statement whose WHERE clause picks the
    best candidate and re-checks its eligibility, so concurrent workers race on
    the row itself and the loser simply matches nothing. On server databases
    the statement runs in a SERIALIZABLE transaction; a worker that loses a
    serialization conflict gets no task and polls again.
    """

    def __init__(
        self,
        db_url: str,
        clock: Optional[Callable[[], datetime]] = None,
        use_server_time: Optional[bool] = None,
        claim_isolation_level: Optional[str] = None,
        **engine_kwargs: Any,
    ):
        self.engine = create_async_engine(db_url, **engine_kwargs)
        self.async_session = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )
        self.clock = clock
        if use_server_time is None:
            use_server_time = self.engine.dialect.name != "sqlite"
        self.use_server_time = use_server_time
        if claim_isolation_level is None:
            claim_isolation_level = default_claim_isolation_level(self.engine.dialect.name)
        self.claim_isolation_level = claim_isolation_level

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.async_session() as session:
                yield session
        except (OperationalError, InterfaceError, OSError) as e:
            logger.error("Store operation failed: %s", e)
            raise StoreUnavailableError(str(e)) from e

    async def create_tables(self) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (OperationalError, InterfaceError, OSError) as e:
            raise StoreUnavailableError(str(e)) from e

    async def close(self) -> None:
        await self.engine.dispose()

    async def now(self) -> datetime:
        if self.clock is not None:
            return to_utc(self.clock())
        if not self.use_server_time:
            return utcnow()
        async with self._session() as session:
            result = await session.execute(select(func.current_timestamp()))
            return to_utc(result.scalar_one())

    async def insert_task(self, task: Task) -> Task:
        try:
            async with self._session() as session:
                session.add(TaskModel(**task.model_dump()))
                await session.commit()
        except IntegrityError as e:
            raise DuplicateTaskError(task.task_id) from e
        logger.debug("Inserted %s", task.readable_string)
        return task

    async def get_task(self, task_id: str) -> Optional[Task]:
        async with self._session() as session:
            result = await session.execute(select(TaskModel).filter_by(task_id=task_id))
            db_task = result.scalar_one_or_none()
            if db_task:
                return self._db_to_task(db_task)
            return None

    async def list_tasks(self, limit: int = 100, offset: int = 0) -> List[Task]:
        async with self._session() as session:
            result = await session.execute(
                select(TaskModel)
                .order_by(TaskModel.start_at, TaskModel.created_at, TaskModel.task_id)
                .offset(offset)
                .limit(limit)
            )
            return [self._db_to_task(db_task) for db_task in result.scalars()]

    async def claim_next(
        self,
        now: datetime,
        stale_before: datetime,
        names: Optional[Iterable[str]] = None,
    ) -> Optional[Task]:
        if names is not None:
            names = list(names)
            if not names:
                return None

        candidate = tasks_table.alias("candidate")
        best = (
            select(candidate.c.task_id)
            .where(claimable(candidate, now, stale_before, names))
            .order_by(candidate.c.start_at, candidate.c.created_at, candidate.c.task_id)
            .limit(1)
            .scalar_subquery()
        )
        stmt = (
            update(tasks_table)
            .where(
                tasks_table.c.task_id == best,
                claimable(tasks_table, now, stale_before, names),
            )
            .values(locked_at=now)
            .returning(*tasks_table.c)
        )
        async with self._session() as session:
            try:
                if self.claim_isolation_level is not None:
                    await session.connection(
                        execution_options={"isolation_level": self.claim_isolation_level}
                    )
                result = await session.execute(stmt)
                row = result.mappings().one_or_none()
                await session.commit()
            except DBAPIError as e:
                if not is_serialization_failure(e):
                    raise
                # Another worker claimed from the same group or row concurrently.
                logger.debug("Claim lost to a concurrent transaction: %s", e.orig)
                return None
        if row is None:
            return None
        return self._row_to_task(row)

    async def complete_task(self, task: Task, processed_at: datetime) -> Optional[Task]:
        return await self._update_one(
            self._held(task).values(processed_at=processed_at, error_msg=None)
        )

    async def fail_task(self, task: Task, failed_at: datetime, error_msg: str) -> Optional[Task]:
        return await self._update_one(
            self._held(task).values(
                failed_at=failed_at,
                error_msg=error_msg,
                retries=tasks_table.c.retries + 1,
                locked_at=EPOCH,
            )
        )

    async def reschedule_task(self, task: Task, start_at: datetime) -> Optional[Task]:
        return await self._update_one(
            self._held(task).values(
                start_at=start_at,
                locked_at=EPOCH,
                processed_at=None,
                error_msg=None,
                retries=0,
            )
        )

    async def release_task(self, task: Task) -> Optional[Task]:
        return await self._update_one(self._held(task).values(locked_at=EPOCH))

    async def release_stale_locks(self, stale_before: datetime) -> int:
        stmt = (
            update(tasks_table)
            .where(
                tasks_table.c.processed_at.is_(None),
                tasks_table.c.locked_at != EPOCH,
                tasks_table.c.locked_at < stale_before,
            )
            .values(locked_at=EPOCH)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount

    async def remove_tasks(
        self,
        task_id: Optional[str] = None,
        name: Optional[str] = None,
        group: Optional[str] = None,
        processed: Optional[bool] = None,
    ) -> int:
        stmt = delete(tasks_table)
        if task_id is not None:
            stmt = stmt.where(tasks_table.c.task_id == task_id)
        if name is not None:
            stmt = stmt.where(tasks_table.c.name == name)
        if group is not None:
            stmt = stmt.where(tasks_table.c.group == group)
        if processed is True:
            stmt = stmt.where(tasks_table.c.processed_at.is_not(None))
        elif processed is False:
            stmt = stmt.where(tasks_table.c.processed_at.is_(None))
        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount

    def _held(self, task: Task):
        # Keyed by the claim's lock timestamp so a worker whose lock went stale
        # and was taken over cannot overwrite the new owner's state.
        return (
            update(tasks_table)
            .where(
                tasks_table.c.task_id == task.task_id,
                tasks_table.c.locked_at == task.locked_at,
            )
            .returning(*tasks_table.c)
        )

    async def _update_one(self, stmt) -> Optional[Task]:
        async with self._session() as session:
            result = await session.execute(stmt)
            row = result.mappings().one_or_none()
            await session.commit()
        if row is None:
            return None
        return self._row_to_task(row)

    def _row_to_task(self, row: Dict[str, Any]) -> Task:
        return Task(**{key: row[key] for key in Task.model_fields})

    def _db_to_task(self, db_task: TaskModel) -> Task:
        return Task(
            task_id=db_task.task_id,
            name=db_task.name,
            data=db_task.data,
            group=db_task.group,
            repeat_every=db_task.repeat_every,
            start_at=db_task.start_at,
            created_at=db_task.created_at,
            locked_at=db_task.locked_at,
            processed_at=db_task.processed_at,
            failed_at=db_task.failed_at,
            error_msg=db_task.error_msg,
            retries=db_task.retries,
        )
