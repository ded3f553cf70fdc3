"""Notification service for emailing building members about task events.

Delivery is best effort: every failure is logged and swallowed here, so a broken
relay can never undo a committed state change. Workflow notifications are sent on
background tasks, so a slow relay does not hold up requests or scheduler scans.
"""

import asyncio
import logging
from collections.abc import Iterable

from src.core.config import settings
from src.core.errors import NotFoundError, StorageError
from src.core.logging import span
from src.domain.user import Capability, Member, MemberRole, has_capability
from src.interface import email_sender
from src.models.service_models import NotificationIntent, NotificationResult
from src.services import user_service


logger = logging.getLogger(__name__)


async def council_recipients(*, exclude: Iterable[str] = ()) -> frozenset[str]:
    """Active members who may vote or verify, minus the excluded identities. Empty if the store fails."""
    try:
        members = await user_service.list_members(roles=[MemberRole.COUNCIL, MemberRole.ADMIN])
    except StorageError as e:
        logger.error("Could not resolve council recipients: %s", e)
        return frozenset()
    excluded = set(exclude)
    return frozenset(m.id for m in members if has_capability(m, Capability.VERIFY) and m.id not in excluded)


async def member_recipients(*, exclude: Iterable[str] = ()) -> frozenset[str]:
    """All active members, minus the excluded identities. Empty if the store fails."""
    try:
        members = await user_service.list_members()
    except StorageError as e:
        logger.error("Could not resolve member recipients: %s", e)
        return frozenset()
    excluded = set(exclude)
    return frozenset(m.id for m in members if m.id not in excluded)


async def _resolve(member_id: str) -> Member | None:
    try:
        return await user_service.get_member(member_id)
    except NotFoundError:
        logger.warning("Notification recipient not found: %s", member_id)
        return None


async def notify(*, recipients: Iterable[str], subject: str, body: str) -> list[NotificationResult]:
    """Email each recipient. Never raises.

    Args:
        recipients: Member identities
        subject: Email subject
        body: Plain-text body

    Returns:
        List of NotificationResult objects with send status
    """
    with span("notification_service.notify"):
        if not settings.enable_notifications:
            logger.debug("Notifications disabled, skipping '%s'", subject)
            return []

        results: list[NotificationResult] = []
        try:
            for member_id in sorted(set(recipients)):
                member = await _resolve(member_id)
                if member is None:
                    continue

                send_result = await email_sender.send_email(to_address=member.email, subject=subject, body=body)
                results.append(
                    NotificationResult(
                        member_id=member.id,
                        email=member.email,
                        success=send_result.success,
                        error=send_result.error,
                    )
                )
                if not send_result.success:
                    logger.warning(
                        "Failed to notify member=%s error=%s",
                        member.id,
                        send_result.error,
                    )
        except StorageError as e:
            logger.error("Notification aborted, member directory unavailable: %s", e)
        except Exception:
            logger.exception("Unexpected error while sending '%s'", subject)

        logger.info(
            "Sent '%s' to %d members (%d successful)",
            subject,
            len(results),
            sum(1 for r in results if r.success),
        )
        return results


async def dispatch(intents: Iterable[NotificationIntent]) -> None:
    """Deliver post-commit notification intents one after another. Never raises."""
    for intent in intents:
        if not intent.recipients:
            continue
        await notify(recipients=intent.recipients, subject=intent.subject, body=intent.body)


# In-flight background deliveries; referenced here so they are not garbage collected
_background_deliveries: set[asyncio.Task[None]] = set()


def _finish_delivery(delivery: asyncio.Task[None]) -> None:
    _background_deliveries.discard(delivery)
    if delivery.cancelled():
        logger.warning("Background notification delivery was cancelled")
    elif (error := delivery.exception()) is not None:
        logger.error("Background notification delivery failed", exc_info=error)


def dispatch_in_background(intents: Iterable[NotificationIntent]) -> None:
    """Start delivering intents without waiting for the relay."""
    pending = [intent for intent in intents if intent.recipients]
    if not pending:
        return
    delivery = asyncio.create_task(dispatch(pending))
    _background_deliveries.add(delivery)
    delivery.add_done_callback(_finish_delivery)


async def drain_background_deliveries() -> None:
    """Wait until every background delivery has finished. Called on shutdown."""
    while _background_deliveries:
        await asyncio.gather(*_background_deliveries, return_exceptions=True)
