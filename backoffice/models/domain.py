"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from backoffice.models.api import LineItemType, UserRole

CENT = Decimal("0.01")


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Quantize a value to cents using half-up rounding."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity resolved from a verified credential."""

    uid: str
    email: str
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


@dataclass(frozen=True)
class AuthResult:
    """
    Outcome of credential verification.

    user is None when no credential was supplied (error is None) or when
    the credential was rejected (error describes why).
    """

    user: AuthenticatedUser | None
    error: str | None = None


@dataclass(frozen=True)
class OAuthToken:
    """OAuth token response from the identity provider."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None


@dataclass(frozen=True)
class OAuthUser:
    """User profile from the identity provider."""

    id: str
    email: str
    name: str | None = None


@dataclass(frozen=True)
class SessionGrant:
    """Result of a successful sign-in."""

    session_token: str
    user: AuthenticatedUser
    redirect_uri: str | None = None
    refresh_token: str | None = None


@dataclass(frozen=True)
class RequestMeta:
    """Client metadata captured for audit entries."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class LineItem:
    """Immutable invoice line."""

    id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    type: LineItemType = LineItemType.SERVICE

    @property
    def total(self) -> Decimal:
        return to_money(self.quantity * self.unit_price)

    def to_json(self) -> dict[str, Any]:
        """Serialize for the JSONB line_items column."""
        return {
            "id": self.id,
            "description": self.description,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "total": str(self.total),
            "type": self.type.value,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "LineItem":
        return cls(
            id=str(data["id"]),
            description=str(data.get("description", "")),
            quantity=Decimal(str(data["quantity"])),
            unit_price=Decimal(str(data["unit_price"])),
            type=LineItemType(data.get("type", LineItemType.SERVICE.value)),
        )


@dataclass(frozen=True)
class InvoiceTotals:
    """Computed invoice amounts. total == subtotal + tax_amount."""

    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal

    def __post_init__(self) -> None:
        if self.total != self.subtotal + self.tax_amount:
            raise ValueError(
                f"Invoice total {self.total} != subtotal {self.subtotal} + tax {self.tax_amount}"
            )


@dataclass(frozen=True)
class EmailAttachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


@dataclass(frozen=True)
class OutboundEmail:
    """Message handed to the email transport: {to, subject, html, attachments?}."""

    to: str
    subject: str
    html: str
    attachments: tuple[EmailAttachment, ...] = field(default_factory=tuple)
    reply_to: str | None = None
