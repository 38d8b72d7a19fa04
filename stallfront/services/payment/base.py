"""
Payment Service Abstract Base Class

Defines the interface shared by the Mock and Stripe providers. Card orders
are charged at checkout through ``process_payment``; cancelling a paid card
order goes through ``refund_payment``.

All amounts are integer minor units (cents).

Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class PaymentResult:
    """
    Standardized result from payment processing.

    Attributes:
        success: Whether the payment was accepted
        payment_intent_id: Provider reference for the charge (pi_xxx)
        amount_cents: Amount charged
        currency: ISO currency code, lower case
        error_message: Human readable decline reason
        error_code: Machine readable decline code
        response_time_ms: Provider round trip
    """
    success: bool
    payment_intent_id: Optional[str] = None
    amount_cents: Optional[int] = None
    currency: str = "kes"
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    response_time_ms: float = 0.0
    metadata: dict = field(default_factory=dict)


@dataclass
class RefundResult:
    """Standardized result from refund processing."""
    success: bool
    refund_id: Optional[str] = None
    amount_cents: Optional[int] = None
    status: str = "pending"
    error_message: Optional[str] = None


class BasePaymentService(ABC):
    """Abstract base class for payment services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of the payment provider ("mock", "stripe")."""

    @abstractmethod
    async def process_payment(
        self,
        amount_cents: int,
        currency: str,
        customer_email: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """
        Charge the customer.

        Args:
            amount_cents: Amount in minor units, must be positive
            currency: ISO currency code
            customer_email: Receipt address
            description: Statement description
            metadata: Extra key/value data (order id, stall id)
        """

    @abstractmethod
    async def refund_payment(
        self,
        payment_intent_id: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        """Refund a previous payment (``amount_cents=None`` refunds in full)."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify connectivity to the payment provider."""
