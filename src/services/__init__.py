from src.services import (
    notification_service,
    user_service,
)


__all__ = [
    "notification_service",
    "user_service",
]
