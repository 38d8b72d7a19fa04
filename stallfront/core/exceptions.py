"""
Domain Exceptions

Services raise these; the application maps them to JSON error responses
with the status code carried by each class.
"""

from typing import Optional


class StallFrontError(Exception):
    """Base class for all expected, client-facing failures."""

    status_code = 500

    def __init__(self, message: str, details: Optional[list[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationFailedError(StallFrontError):
    status_code = 400


class InvalidTransitionError(ValidationFailedError):
    """Raised when an order status change is not in the transition table."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot change order status from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class AuthenticationError(StallFrontError):
    status_code = 401


class PaymentFailedError(StallFrontError):
    status_code = 402


class PermissionDeniedError(StallFrontError):
    status_code = 403


class NotFoundError(StallFrontError):
    status_code = 404


class ConflictError(StallFrontError):
    status_code = 409


class RateLimitExceededError(StallFrontError):
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after
