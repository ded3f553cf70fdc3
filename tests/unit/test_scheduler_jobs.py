"""Tests for the auto-award scan."""

from datetime import timedelta

import pytest

from src.core import db_client
from src.core.errors import ConcurrentModificationError
from src.domain.task import TaskScope, TaskStatus
from src.modules.tasks import scheduler_jobs, service


async def open_task(members, *, title: str = "Replace hallway bulb", bid: float | None = 12):
    task = await service.create_task(
        proposer_id=members["alice"].id, title=title, scope=TaskScope.SHARED, starting_price=15
    )
    await service.approve_task(task_id=task.id, approver_id=members["council_a"].id)
    task = await service.approve_task(task_id=task.id, approver_id=members["council_b"].id)
    if bid is not None:
        task = await service.place_bid(task_id=task.id, bidder_id=members["bob"].id, amount=bid)
    return task


@pytest.mark.unit
async def test_awards_only_expired_tasks(members, sent_notifications) -> None:
    expired = await open_task(members, title="Old")
    no_bids = await open_task(members, title="Quiet", bid=None)

    summary = await scheduler_jobs.auto_award_expired_tasks(now=expired.bidding_started_at + timedelta(hours=24))

    assert summary.awarded == [expired.id]
    assert summary.failed == 0
    assert (await service.get_task(expired.id)).status == TaskStatus.AWARDED
    assert (await service.get_task(no_bids.id)).status == TaskStatus.OPEN


@pytest.mark.unit
async def test_window_not_elapsed_leaves_task_open(members, sent_notifications) -> None:
    task = await open_task(members)

    summary = await scheduler_jobs.auto_award_expired_tasks(now=task.bidding_started_at + timedelta(hours=23))

    assert summary.scanned == 0
    assert summary.awarded == []
    assert (await service.get_task(task.id)).status == TaskStatus.OPEN


@pytest.mark.unit
async def test_second_scan_is_noop(members, sent_notifications) -> None:
    task = await open_task(members)
    later = task.bidding_started_at + timedelta(days=2)

    first = await scheduler_jobs.auto_award_expired_tasks(now=later)
    second = await scheduler_jobs.auto_award_expired_tasks(now=later)

    assert first.awarded == [task.id]
    assert second.scanned == 0
    assert sum(1 for n in sent_notifications if n["subject"].startswith("You won")) == 1


@pytest.mark.unit
async def test_conflicting_task_is_deferred(members, sent_notifications, monkeypatch: pytest.MonkeyPatch) -> None:
    task = await open_task(members)

    async def lost_race(**_kwargs):
        msg = "tasks record changed"
        raise ConcurrentModificationError(msg)

    monkeypatch.setattr(service, "auto_award", lost_race)

    summary = await scheduler_jobs.auto_award_expired_tasks(now=task.bidding_started_at + timedelta(days=2))

    assert summary.failed == 1
    assert summary.awarded == []


@pytest.mark.unit
async def test_listing_failure_propagates(members, monkeypatch: pytest.MonkeyPatch) -> None:
    async def broken_fetch(*_args, **_kwargs):
        msg = "database is locked"
        raise db_client.DatabaseError(msg)

    monkeypatch.setattr(db_client, "_fetch", broken_fetch)

    with pytest.raises(db_client.DatabaseError):
        await scheduler_jobs.auto_award_expired_tasks()
