"""
Notification Service Abstract Base Class

Providers implement the two transport calls (``send_email`` and
``send_sms``); the transactional messages are rendered here once and
shared by every provider.

A failed notification never fails the operation that triggered it: the
``notify_*`` helpers log and return a failed ``NotificationResult``.

Version: 1.0.0
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from jinja2 import TemplateError

from stallfront.core.config import get_settings
from stallfront.services.notifications.templates import format_money, render_email, render_sms

logger = logging.getLogger(__name__)


@dataclass
class NotificationResult:
    """Result from sending a notification."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


@dataclass
class OrderMessage:
    """What the order templates need to know about an order."""
    reference: str
    customer_name: str
    customer_email: str
    stall_name: str
    status: str
    total_cents: int
    currency: str
    scheduled_for: str
    delivery_option: str = "pickup"
    delivery_address: Optional[str] = None
    customer_phone: Optional[str] = None
    items: Optional[list[dict]] = None  # {"title", "qty", "total_cents"}


class BaseNotificationService(ABC):
    """Abstract base class for notification services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send an email."""

    @abstractmethod
    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        """Send an SMS message."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""

    # =========================================================================
    # TRANSACTIONAL MESSAGES
    # =========================================================================

    async def _send_template(self, to_email: str, template: str, **context) -> NotificationResult:
        context.setdefault("app_name", get_settings().app_name)
        try:
            rendered = render_email(template, **context)
            result = await self.send_email(to_email, rendered.subject, rendered.html)
        except TemplateError as e:
            logger.error(f"Template '{template}' failed to render: {e}")
            return NotificationResult(success=False, error_message=str(e), provider=self.provider_name)
        except Exception as e:
            logger.error(f"Sending '{template}' to {to_email} failed: {e}")
            return NotificationResult(success=False, error_message=str(e), provider=self.provider_name)

        if not result.success:
            logger.warning(f"Email '{template}' to {to_email} not delivered: {result.error_message}")
        return result

    async def notify_signup(self, email: str, name: str, link: str) -> NotificationResult:
        hours = get_settings().magic_link_hours
        return await self._send_template(email, "signup", name=name, link=link, hours=hours)

    async def notify_invite(
        self, email: str, name: str, business_name: str, roles: list[str], link: str
    ) -> NotificationResult:
        return await self._send_template(
            email,
            "invite",
            name=name,
            business_name=business_name,
            roles=roles,
            link=link,
            hours=get_settings().magic_link_hours,
        )

    async def notify_password_reset(self, email: str, link: str) -> NotificationResult:
        return await self._send_template(email, "password_reset", link=link)

    async def notify_login_link(self, email: str, link: str) -> NotificationResult:
        return await self._send_template(email, "login_link", link=link)

    async def notify_otp(self, email: str, code: str) -> NotificationResult:
        minutes = get_settings().otp_expiry_minutes
        return await self._send_template(email, "otp", code=code, minutes=minutes)

    async def notify_order_confirmation(self, order: OrderMessage) -> NotificationResult:
        items = [
            {
                "title": item["title"],
                "qty": item["qty"],
                "total": format_money(item["total_cents"], order.currency),
            }
            for item in order.items or []
        ]
        return await self._send_template(
            order.customer_email,
            "order_confirmation",
            name=order.customer_name,
            reference=order.reference,
            stall_name=order.stall_name,
            items=items,
            delivery_option=order.delivery_option,
            delivery_address=order.delivery_address or "",
            scheduled_for=order.scheduled_for,
            total=format_money(order.total_cents, order.currency),
        )

    async def notify_order_status(self, order: OrderMessage, notes: Optional[str] = None) -> NotificationResult:
        result = await self._send_template(
            order.customer_email,
            "order_status",
            name=order.customer_name,
            reference=order.reference,
            stall_name=order.stall_name,
            status=order.status,
            notes=notes or "",
        )
        if order.status == "ready" and order.customer_phone:
            await self.notify_order_ready_sms(order)
        return result

    async def notify_order_cancelled(
        self, order: OrderMessage, reason: Optional[str], refunded: bool
    ) -> NotificationResult:
        return await self._send_template(
            order.customer_email,
            "order_cancelled",
            name=order.customer_name,
            reference=order.reference,
            stall_name=order.stall_name,
            reason=reason or "",
            refunded=refunded,
            total=format_money(order.total_cents, order.currency),
        )

    async def notify_order_ready_sms(self, order: OrderMessage) -> NotificationResult:
        try:
            message = render_sms(
                "order_ready",
                stall_name=order.stall_name,
                reference=order.reference,
                delivery_option=order.delivery_option,
            )
            return await self.send_sms(order.customer_phone, message)
        except Exception as e:
            logger.error(f"Ready SMS for order #{order.reference} failed: {e}")
            return NotificationResult(success=False, error_message=str(e), provider=self.provider_name)
