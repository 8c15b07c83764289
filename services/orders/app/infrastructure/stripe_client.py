"""Payment provider adapter for Stripe Checkout, built on the official SDK."""
from dataclasses import dataclass
from typing import Optional

import stripe


CHECKOUT_COMPLETED = "checkout.session.completed"


class ProviderError(Exception):
    """The provider rejected a request or could not be reached."""


class SignatureInvalid(Exception):
    """Webhook signature header missing, stale or not matching the payload."""


class EventParseError(Exception):
    """Webhook payload is not a well-formed event."""


@dataclass
class LineItem:
    name: str
    unit_amount: int  # minor currency units
    quantity: int


@dataclass
class PaymentSession:
    session_id: str
    redirect_url: str


@dataclass
class WebhookEvent:
    type: str
    session_id: Optional[str]
    payload: Optional[stripe.Event] = None


class StripeGateway:
    def __init__(self, secret_key: str, currency: str = "gbp"):
        self.secret_key = secret_key
        self.currency = currency

    def create_session(
        self,
        line_items: list[LineItem],
        success_url: str,
        cancel_url: str,
        metadata: dict,
        customer_email: str,
    ) -> PaymentSession:
        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                mode="payment",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": self.currency,
                            "product_data": {"name": item.name},
                            "unit_amount": item.unit_amount,
                        },
                        "quantity": item.quantity,
                    }
                    for item in line_items
                ],
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=customer_email,
                metadata={key: str(value) for key, value in metadata.items()},
            )
        except stripe.StripeError as e:
            raise ProviderError(e.user_message or str(e)) from e

        session_id = getattr(session, "id", None)
        redirect_url = getattr(session, "url", None)
        if not session_id or not redirect_url:
            raise ProviderError("Payment session response missing id or url")
        return PaymentSession(session_id=session_id, redirect_url=redirect_url)

    def expire_session(self, session_id: str) -> None:
        try:
            stripe.checkout.Session.expire(session_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise ProviderError(e.user_message or str(e)) from e

    @staticmethod
    def verify_and_parse_webhook(
        payload: bytes,
        signature_header: Optional[str],
        secret: str,
        tolerance: int = 300,
    ) -> WebhookEvent:
        if not signature_header:
            raise SignatureInvalid("Missing signature header")
        try:
            event = stripe.Webhook.construct_event(payload, signature_header, secret, tolerance=tolerance)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalid(str(e)) from e
        except ValueError as e:
            raise EventParseError(f"Invalid JSON payload: {e}") from e

        event_type = getattr(event, "type", None)
        if not isinstance(event_type, str):
            raise EventParseError("Event has no type")
        obj = getattr(getattr(event, "data", None), "object", None)
        if not isinstance(obj, stripe.StripeObject):
            raise EventParseError("Event data.object is not an object")
        return WebhookEvent(type=event_type, session_id=getattr(obj, "id", None), payload=event)
