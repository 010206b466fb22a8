from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from task_runner.domain.task import EPOCH, Task, to_utc


def test_defaults() -> None:
    task = Task(name="test", data="test data")

    assert task.task_id.startswith("tsk_")
    assert task.group is None
    assert task.repeat_every == 0
    assert task.locked_at == EPOCH
    assert task.processed_at is None
    assert task.failed_at is None
    assert task.error_msg is None
    assert task.retries == 0
    assert not task.is_locked
    assert not task.is_recurring
    assert not task.is_processed


def test_generated_ids_are_unique() -> None:
    ids = {Task(name="test").task_id for _ in range(100)}
    assert len(ids) == 100


def test_empty_name_rejected() -> None:
    with pytest.raises(ValidationError):
        Task(name="")


def test_negative_repeat_rejected() -> None:
    with pytest.raises(ValidationError):
        Task(name="test", repeat_every=-1)


def test_group_with_repeat_rejected() -> None:
    with pytest.raises(ValidationError, match="Can not specify group for repeatable task"):
        Task(name="test", group="g", repeat_every=60)


def test_naive_datetimes_are_utc() -> None:
    task = Task(name="test", start_at=datetime(2016, 11, 10))
    assert task.start_at == datetime(2016, 11, 10, tzinfo=timezone.utc)
    assert task.start_at.tzinfo is not None


def test_aware_datetimes_converted_to_utc() -> None:
    plus_two = timezone(timedelta(hours=2))
    task = Task(name="test", start_at=datetime(2016, 11, 10, 2, 0, tzinfo=plus_two))
    assert task.start_at == datetime(2016, 11, 10, 0, 0, tzinfo=timezone.utc)
    assert task.start_at.utcoffset() == timedelta(0)


def test_to_utc_keeps_epoch() -> None:
    assert to_utc(datetime(1970, 1, 1)) == EPOCH


def test_readable_string() -> None:
    task = Task(
        task_id="tsk_1",
        name="report",
        repeat_every=60,
        start_at=datetime(2026, 1, 1, 8, 30, tzinfo=timezone.utc),
        retries=2,
    )
    text = task.readable_string
    assert "Task 'report' (tsk_1)" in text
    assert "every 60s" in text
    assert "2026-01-01 08:30:00 UTC" in text
    assert "2 failed attempt(s)" in text
