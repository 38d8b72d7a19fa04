"""
Payment Service Factory

Single entry point for obtaining a payment service instance. Callers never
need to know which provider is active.

Usage:
    from stallfront.services.payment import get_payment_service

    payment_service = get_payment_service()
    result = await payment_service.process_payment(2999, "KES")

Environment Switching:
    - ENV_MODE=development → MockPaymentService (no API calls)
    - ENV_MODE=staging → StripePaymentService (test keys)
    - ENV_MODE=production → StripePaymentService (live keys)

Version: 1.0.0
"""

import logging
from functools import lru_cache

from stallfront.core.config import get_settings
from stallfront.services.payment.base import BasePaymentService, PaymentResult, RefundResult
from stallfront.services.payment.mock import MockPaymentService
from stallfront.services.payment.stripe import StripePaymentService

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_service() -> BasePaymentService:
    """
    Get the configured payment service instance (cached).

    Raises:
        ValueError: If running with real services but no Stripe key is set
    """
    settings = get_settings()

    if settings.use_real_services:
        logger.info(f"Payment Service: Using StripePaymentService ({settings.env_mode.value} mode)")
        return StripePaymentService()

    logger.info("Payment Service: Using MockPaymentService (development mode)")
    return MockPaymentService(
        failure_rate=settings.mock_failure_rate,
        latency_seconds=settings.mock_latency_seconds,
    )


def reset_payment_service() -> None:
    """Clear the cached payment service instance."""
    get_payment_service.cache_clear()
    logger.debug("Payment service cache cleared")


__all__ = [
    "get_payment_service",
    "reset_payment_service",
    "BasePaymentService",
    "PaymentResult",
    "RefundResult",
    "MockPaymentService",
    "StripePaymentService",
]
