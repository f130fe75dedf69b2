"""
Payment Provider Protocol - Provider-agnostic checkout interface.

NO DICTIONARIES - Checkout requests and results are strongly typed models.
Metadata is the one free-form mapping, because it round-trips through the
provider verbatim.
"""

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class CheckoutRequest:
    """
    Request to open a hosted checkout page.

    amount_minor is in cents; metadata is echoed back on the completed event.
    """

    amount_minor: int
    currency: str
    product_name: str
    description: str
    success_url: str
    cancel_url: str
    customer_email: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CheckoutSession:
    """Provider checkout session as created or retrieved."""

    session_id: str
    url: str | None
    payment_status: str  # "paid" | "unpaid" | "no_payment_required"
    amount_total_minor: int | None
    currency: str | None
    customer_email: str | None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


@dataclass(frozen=True)
class WebhookEvent:
    """
    Verified webhook notification.

    session is populated only for checkout.session.* events.
    """

    event_id: str
    event_type: str
    session: CheckoutSession | None = None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    The back office only relies on hosted checkout, so this is the whole
    surface a provider must implement.
    """

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a hosted checkout session.

        Raises:
            PaymentProviderError: If the provider rejects the request
        """
        ...

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        """
        Fetch a checkout session by id.

        Raises:
            PaymentProviderError: If the session cannot be retrieved
        """
        ...

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse a webhook notification.

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        ...
