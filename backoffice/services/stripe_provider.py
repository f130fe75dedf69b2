"""
Stripe Payment Provider Implementation.

Hosted Checkout only: sessions are created for fixed packages and pending
payments, and completion arrives through checkout.session.completed.
"""

from typing import Any

import stripe
from structlog import get_logger

from backoffice.exceptions import PaymentProviderError, WebhookVerificationError
from backoffice.services.payment_provider import (
    CheckoutRequest,
    CheckoutSession,
    WebhookEvent,
)

logger = get_logger(__name__)


def _field(obj: Any, name: str) -> Any:
    """Item lookup that works for StripeObject and plain dicts; missing keys are None."""
    if obj is None:
        return None
    try:
        return obj[name]
    except (KeyError, TypeError):
        return None


def _to_checkout_session(session: Any) -> CheckoutSession:
    """Convert a Stripe checkout session object into the provider-agnostic model."""
    metadata = _field(session, "metadata") or {}
    customer_email = _field(session, "customer_email") or _field(
        _field(session, "customer_details"), "email"
    )
    currency = _field(session, "currency")
    return CheckoutSession(
        session_id=session["id"],
        url=_field(session, "url"),
        payment_status=_field(session, "payment_status") or "unpaid",
        amount_total_minor=_field(session, "amount_total"),
        currency=currency.upper() if currency else None,
        customer_email=customer_email,
        metadata={str(k): str(v) for k, v in metadata.items()},
    )


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe Checkout.
    """

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a Stripe Checkout session in payment mode.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            logger.info(
                "creating_stripe_checkout_session",
                amount_minor=request.amount_minor,
                currency=request.currency,
                product=request.product_name,
            )

            params: dict[str, Any] = {
                "mode": "payment",
                "payment_method_types": ["card"],
                "line_items": [
                    {
                        "price_data": {
                            "currency": request.currency.lower(),
                            "product_data": {
                                "name": request.product_name,
                                "description": request.description,
                            },
                            "unit_amount": request.amount_minor,
                        },
                        "quantity": 1,
                    }
                ],
                "success_url": request.success_url,
                "cancel_url": request.cancel_url,
                "metadata": request.metadata,
            }
            if request.customer_email:
                params["customer_email"] = request.customer_email

            session = stripe.checkout.Session.create(**params)

            logger.info(
                "stripe_checkout_session_created",
                session_id=session["id"],
                amount_minor=request.amount_minor,
            )
            return _to_checkout_session(session)

        except stripe.StripeError as exc:
            logger.error(
                "stripe_checkout_session_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe checkout failed: {exc}") from exc

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        """
        Retrieve a Stripe Checkout session.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            session = stripe.checkout.Session.retrieve(session_id)
            logger.info(
                "stripe_checkout_session_retrieved",
                session_id=session_id,
                payment_status=_field(session, "payment_status"),
            )
            return _to_checkout_session(session)

        except stripe.StripeError as exc:
            logger.error(
                "stripe_checkout_session_retrieve_failed",
                session_id=session_id,
                error=str(exc),
            )
            raise PaymentProviderError(f"Failed to retrieve checkout session: {exc}") from exc

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse Stripe webhook event.

        Args:
            payload: Raw webhook payload
            signature: Stripe-Signature header value

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc

        logger.info("stripe_webhook_verified", event_id=event.id, event_type=event.type)

        session = None
        if event.type.startswith("checkout.session."):
            session = _to_checkout_session(event.data.object)

        return WebhookEvent(event_id=event.id, event_type=event.type, session=session)
