"""
Stripe Payment Service Implementation

Production implementation using the official Stripe Python SDK.
Used when ENV_MODE=production or ENV_MODE=staging.

Requirements:
    - STRIPE_SECRET_KEY must be set in environment

Security Notes:
    - Never log card details
    - Order ids go into metadata, never into descriptions shown to others

Version: 1.0.0
"""

import asyncio
import logging
import time
from typing import Optional

import stripe

from stallfront.core.config import get_settings
from stallfront.services.payment.base import BasePaymentService, PaymentResult, RefundResult

logger = logging.getLogger(__name__)


class StripePaymentService(BasePaymentService):
    """
    Stripe payment service.

    Creates and confirms a PaymentIntent per order. The SDK is blocking, so
    every call runs in a worker thread.
    """

    def __init__(self):
        settings = get_settings()

        if not settings.stripe_secret_key:
            raise ValueError(
                "STRIPE_SECRET_KEY is required outside development. "
                "Set it in your .env file or environment variables."
            )

        stripe.api_key = settings.stripe_secret_key
        self._default_currency = settings.default_currency.lower()
        logger.info("StripePaymentService initialized")

    @property
    def provider_name(self) -> str:
        return "stripe"

    async def process_payment(
        self,
        amount_cents: int,
        currency: str,
        customer_email: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """Create and confirm a PaymentIntent for the order total."""
        start = time.perf_counter()

        if amount_cents <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
            )

        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=amount_cents,
                currency=(currency or self._default_currency).lower(),
                description=description or "StallFront order",
                receipt_email=customer_email,
                metadata={key: str(value) for key, value in (metadata or {}).items()},
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
            )
        except stripe.CardError as e:
            logger.warning(f"Stripe: Card declined - {e.code}: {e.user_message}")
            return PaymentResult(
                success=False,
                error_message=e.user_message,
                error_code=e.code,
                response_time_ms=(time.perf_counter() - start) * 1000,
            )
        except stripe.AuthenticationError as e:
            logger.critical(f"Stripe: Authentication failed - {e}")
            return PaymentResult(
                success=False,
                error_message="Payment service configuration error",
                error_code="authentication_error",
            )
        except stripe.APIConnectionError as e:
            logger.error(f"Stripe: Connection error - {e}")
            return PaymentResult(
                success=False,
                error_message="Payment service temporarily unavailable",
                error_code="connection_error",
                response_time_ms=(time.perf_counter() - start) * 1000,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe: Error - {e}")
            return PaymentResult(
                success=False,
                error_message="Payment processing error",
                error_code="stripe_error",
                response_time_ms=(time.perf_counter() - start) * 1000,
            )

        logger.info(f"Stripe: PaymentIntent created - {intent.id} - status={intent.status}")
        return PaymentResult(
            success=True,
            payment_intent_id=intent.id,
            amount_cents=intent.amount,
            currency=intent.currency,
            response_time_ms=(time.perf_counter() - start) * 1000,
            metadata={"status": intent.status, "client_secret": intent.client_secret},
        )

    async def refund_payment(
        self,
        payment_intent_id: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        """Refund a PaymentIntent, in full unless ``amount_cents`` is given."""
        params: dict = {"payment_intent": payment_intent_id}
        if amount_cents is not None:
            params["amount"] = amount_cents
        if reason:
            params["reason"] = reason

        try:
            refund = await asyncio.to_thread(stripe.Refund.create, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe: Refund failed for {payment_intent_id} - {e}")
            return RefundResult(success=False, error_message=str(e))

        logger.info(f"Stripe: Refund processed - {refund.id} - status={refund.status}")
        return RefundResult(
            success=True,
            refund_id=refund.id,
            amount_cents=refund.amount,
            status=refund.status,
        )

    async def health_check(self) -> bool:
        """Lightweight API call that proves credentials and connectivity."""
        try:
            await asyncio.to_thread(stripe.Account.retrieve)
            return True
        except stripe.StripeError as e:
            logger.error(f"Stripe: Health check failed - {e}")
            return False
