"""
Exception Classes - Strongly typed exception hierarchy.

Every error carries the HTTP status it maps to; main.py renders them as
{"error": message}.
"""

from uuid import UUID


class BackofficeError(Exception):
    """Base exception for all back-office errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UnauthorizedError(BackofficeError):
    """Raised when no credential is present or it does not verify."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class ForbiddenError(BackofficeError):
    """Raised when the credential is valid but the role is insufficient."""

    status_code = 403

    def __init__(self, required_role: str = "admin") -> None:
        self.required_role = required_role
        super().__init__("Forbidden - Admin access required")


class ValidationError(BackofficeError):
    """Raised for malformed or out-of-range input."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class NotFoundError(BackofficeError):
    """Raised when an entity id does not resolve."""

    status_code = 404

    def __init__(self, entity: str, entity_id: UUID | str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.replace('_', ' ').capitalize()} not found")


class ConflictError(BackofficeError):
    """Raised when the requested transition is not valid from the current state."""

    status_code = 400


class InvalidStatusError(ConflictError):
    """Raised when a status value is outside the allowed enumeration."""

    def __init__(self, status: str, allowed: list[str]) -> None:
        self.status = status
        self.allowed = allowed
        super().__init__(f"Invalid status '{status}'. Must be one of: {', '.join(allowed)}")


class PaymentExpiredError(ConflictError):
    """Raised when a pending payment is looked up after its expiry."""

    status_code = 410

    def __init__(self, payment_id: UUID) -> None:
        self.payment_id = payment_id
        super().__init__("Payment request has expired")


class DeliveryError(BackofficeError):
    """Raised when a downstream provider (email, payments) fails."""

    status_code = 502


class PaymentProviderError(DeliveryError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Payment provider error: {message}")


class WebhookVerificationError(BackofficeError):
    """Raised when webhook verification fails."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(f"Webhook verification error: {message}")


class InternalError(BackofficeError):
    """Raised for unexpected failures that should surface as 500."""

    status_code = 500
