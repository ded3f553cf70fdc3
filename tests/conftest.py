"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncIterator
from typing import Any

import logfire
import pytest

from src.core import db_client
from src.core.admin_notifier import notification_rate_limiter
from src.core.config import settings
from src.core.scheduler_tracker import job_tracker
from src.domain.create_models import MemberCreate
from src.domain.user import Member, MemberRole
from src.services import notification_service, user_service


# Keep spans local during tests
logfire.configure(send_to_logfire=False, console=False)


MEMBER_SPECS: dict[str, MemberRole] = {
    "admin": MemberRole.ADMIN,
    "council_a": MemberRole.COUNCIL,
    "council_b": MemberRole.COUNCIL,
    "council_c": MemberRole.COUNCIL,
    "alice": MemberRole.OWNER,
    "bob": MemberRole.OWNER,
    "carol": MemberRole.OWNER,
}


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Workflow defaults, no outbound email, fresh in-memory trackers."""
    monkeypatch.setattr(settings, "council_min_approvals", 2)
    monkeypatch.setattr(settings, "max_task_price", 100)
    monkeypatch.setattr(settings, "bidding_window_hours", 24)
    monkeypatch.setattr(settings, "write_retry_attempts", 3)
    monkeypatch.setattr(settings, "scheduler_enabled", False)
    monkeypatch.setattr(settings, "email_api_key", None)
    job_tracker.reset()
    notification_rate_limiter.reset()


@pytest.fixture
async def db(tmp_path, monkeypatch: pytest.MonkeyPatch) -> AsyncIterator[None]:
    """A fresh SQLite database per test."""
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path / "test.db"))
    await db_client.init_db()
    yield
    await notification_service.drain_background_deliveries()
    await db_client.close_connection()


@pytest.fixture
async def members(db: None) -> dict[str, Member]:
    """One admin, three council members and three owners, keyed by nickname."""
    created: dict[str, Member] = {}
    for name, role in MEMBER_SPECS.items():
        created[name] = await user_service.create_member(
            MemberCreate(email=f"{name}@example.com", first_name=name.title(), role=role)
        )
    return created


@pytest.fixture
def sent_notifications(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Capture notifications instead of emailing them."""
    sent: list[dict[str, Any]] = []

    async def fake_notify(*, recipients, subject: str, body: str) -> list:
        sent.append({"recipients": frozenset(recipients), "subject": subject, "body": body})
        return []

    def record_in_place(intents) -> None:
        for intent in intents:
            if intent.recipients:
                sent.append({"recipients": intent.recipients, "subject": intent.subject, "body": intent.body})

    monkeypatch.setattr(notification_service, "notify", fake_notify)
    monkeypatch.setattr(notification_service, "dispatch_in_background", record_in_place)
    return sent
