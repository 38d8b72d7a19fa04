"""
Notification Service Factory

Returns the Mock or Real notification service based on ENV_MODE.

Version: 1.0.0
"""

import logging
from functools import lru_cache

from stallfront.core.config import get_settings
from stallfront.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    OrderMessage,
)
from stallfront.services.notifications.mock import MockNotificationService
from stallfront.services.notifications.real import RealNotificationService

logger = logging.getLogger(__name__)


@lru_cache()
def get_notification_service() -> BaseNotificationService:
    """Get the configured notification service."""
    settings = get_settings()

    if settings.use_real_services:
        logger.info(f"Notification Service: Using RealNotificationService ({settings.env_mode.value} mode)")
        return RealNotificationService()

    logger.info("Notification Service: Using MockNotificationService (development mode)")
    return MockNotificationService(latency_seconds=settings.mock_latency_seconds)


def reset_notification_service() -> None:
    """Clear the cached service instance."""
    get_notification_service.cache_clear()


__all__ = [
    "get_notification_service",
    "reset_notification_service",
    "BaseNotificationService",
    "MockNotificationService",
    "NotificationResult",
    "OrderMessage",
]
