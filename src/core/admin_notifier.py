"""Admin notification system for failing background work."""

import logging
from datetime import datetime, timedelta

from src.core.config import settings
from src.core.errors import ErrorCategory
from src.domain.user import MemberRole
from src.services import notification_service, user_service


logger = logging.getLogger(__name__)


class NotificationRateLimiter:
    """Rate limiter for admin notifications to prevent spam.

    Allows one alert per error category per cooldown period.
    """

    def __init__(self) -> None:
        self._notifications: dict[str, datetime] = {}

    def can_notify(self, error_category: ErrorCategory) -> bool:
        """Check if a notification can be sent for the given error category."""
        last_notification = self._notifications.get(error_category.value)
        if last_notification is None:
            return True
        cooldown = timedelta(minutes=settings.admin_notification_cooldown_minutes)
        return datetime.now() - last_notification >= cooldown

    def record_notification(self, error_category: ErrorCategory) -> None:
        self._notifications[error_category.value] = datetime.now()

    def reset(self) -> None:
        self._notifications.clear()


# Global rate limiter instance
notification_rate_limiter = NotificationRateLimiter()


async def notify_admins(
    message: str,
    severity: str = "warning",
    category: ErrorCategory = ErrorCategory.UNKNOWN,
) -> None:
    """Email all active administrators. Never raises.

    Args:
        message: The notification message to send
        severity: Severity level (e.g., "warning", "critical", "info")
        category: Error category used for rate limiting
    """
    if not settings.enable_admin_notifications:
        logger.debug(
            "Admin notifications disabled, skipping notification",
            extra={"notification": message, "severity": severity},
        )
        return

    if not notification_rate_limiter.can_notify(category):
        logger.info("Admin notification rate limited", extra={"category": category.value})
        return

    logger.info("admin_notifier.notify_admins", extra={"severity": severity, "category": category.value})
    try:
        admins = await user_service.list_members(roles=[MemberRole.ADMIN])
        if not admins:
            logger.warning("No active admin members found to notify")
            return

        results = await notification_service.notify(
            recipients=[admin.id for admin in admins],
            subject=f"[{severity.upper()}] copro-tasks alert",
            body=message,
        )
        notification_rate_limiter.record_notification(category)

        logger.info(
            "Admin notification batch complete",
            extra={
                "total_admins": len(admins),
                "success_count": sum(1 for r in results if r.success),
            },
        )
    except Exception as e:
        logger.error("Failed to notify admins", extra={"error": str(e)})
