"""
Claim eligibility as SQL expressions.

Group serialization lives here rather than in a separate pass over the
backlog: the group check is part of the same statement that takes the lock.
SQLite serializes writers and server databases run the claim SERIALIZABLE,
so two workers can never both see an idle group and claim from it.
"""
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import ColumnElement, and_, exists, or_, select
from sqlalchemy.sql.expression import Alias, FromClause

from task_runner.domain.task import EPOCH


def is_due(t: FromClause, now: datetime) -> ColumnElement[bool]:
    return and_(t.c.start_at <= now, t.c.processed_at.is_(None))


def is_unlocked(t: FromClause, stale_before: datetime) -> ColumnElement[bool]:
    # A lock older than stale_before belongs to a worker presumed dead.
    return or_(t.c.locked_at == EPOCH, t.c.locked_at < stale_before)


def group_is_idle(t: FromClause, stale_before: datetime) -> ColumnElement[bool]:
    """
    True when `t` has no group, or no other unprocessed task of its group holds
    a fresh lock. Finished one-shot tasks keep their lock timestamp, hence the
    processed_at check.
    """
    base = t.element if isinstance(t, Alias) else t
    other = base.alias()
    active = (
        select(other.c.task_id)
        .where(
            other.c.group == t.c.group,
            other.c.task_id != t.c.task_id,
            other.c.processed_at.is_(None),
            other.c.locked_at >= stale_before,
        )
        .correlate(t)
    )
    return or_(t.c.group.is_(None), ~exists(active))


def claimable(
    t: FromClause,
    now: datetime,
    stale_before: datetime,
    names: Optional[Iterable[str]] = None,
) -> ColumnElement[bool]:
    clauses = [is_due(t, now), is_unlocked(t, stale_before), group_is_idle(t, stale_before)]
    if names is not None:
        clauses.append(t.c.name.in_(list(names)))
    return and_(*clauses)
