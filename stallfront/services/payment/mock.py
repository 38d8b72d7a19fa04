"""
Mock Payment Service Implementation

Simulates card processing without calling any provider. Used when
ENV_MODE=development.

Behavior:
    - Optional simulated latency (MOCK_LATENCY_SECONDS)
    - Declines a fraction of charges (MOCK_FAILURE_RATE, default 0)
    - Generates Stripe-like ids (pi_mock_xxx, re_mock_xxx)

Version: 1.0.0
"""

import asyncio
import logging
import random
import time
import uuid
from typing import Optional

from stallfront.services.payment.base import BasePaymentService, PaymentResult, RefundResult

logger = logging.getLogger(__name__)


class MockPaymentService(BasePaymentService):
    """
    Mock implementation of the payment service.

    Attributes:
        failure_rate: Probability of a simulated decline (0.0-1.0)
        latency_seconds: Simulated provider round trip
    """

    # Mimics real Stripe decline codes
    DECLINE_REASONS = [
        ("card_declined", "Your card was declined."),
        ("insufficient_funds", "Your card has insufficient funds."),
        ("expired_card", "Your card has expired."),
        ("processing_error", "An error occurred while processing your card."),
    ]

    def __init__(self, failure_rate: float = 0.0, latency_seconds: float = 0.0):
        self.failure_rate = failure_rate
        self.latency_seconds = latency_seconds
        self.refunds: list[str] = []
        logger.info(
            f"MockPaymentService initialized "
            f"(failure_rate={failure_rate:.0%}, latency={latency_seconds}s)"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> None:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

    def _should_fail(self) -> bool:
        return self.failure_rate > 0 and random.random() < self.failure_rate

    async def process_payment(
        self,
        amount_cents: int,
        currency: str,
        customer_email: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """Simulate charging a card."""
        start = time.perf_counter()

        if amount_cents <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
            )

        await self._simulate_latency()
        elapsed_ms = (time.perf_counter() - start) * 1000

        if self._should_fail():
            error_code, error_message = random.choice(self.DECLINE_REASONS)
            logger.info(f"Mock: Payment declined - {error_code}")
            return PaymentResult(
                success=False,
                amount_cents=amount_cents,
                currency=currency.lower(),
                error_message=error_message,
                error_code=error_code,
                response_time_ms=elapsed_ms,
            )

        payment_intent_id = f"pi_mock_{uuid.uuid4().hex[:24]}"
        logger.info(f"Mock: Payment successful - {payment_intent_id} - {amount_cents} {currency.upper()}")
        return PaymentResult(
            success=True,
            payment_intent_id=payment_intent_id,
            amount_cents=amount_cents,
            currency=currency.lower(),
            response_time_ms=elapsed_ms,
            metadata={"mock": True, "customer_email": customer_email, **(metadata or {})},
        )

    async def refund_payment(
        self,
        payment_intent_id: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        """Simulate refunding a payment."""
        await self._simulate_latency()

        if not payment_intent_id.startswith("pi_"):
            return RefundResult(success=False, error_message="Invalid payment intent ID")

        refund_id = f"re_mock_{uuid.uuid4().hex[:24]}"
        self.refunds.append(payment_intent_id)
        logger.info(f"Mock: Refund processed - {refund_id} for {payment_intent_id}")
        return RefundResult(success=True, refund_id=refund_id, amount_cents=amount_cents, status="succeeded")

    async def health_check(self) -> bool:
        """Mock health check always passes."""
        return True
