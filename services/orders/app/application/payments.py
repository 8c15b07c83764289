from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.models import Order, utcnow
from app.infrastructure.stripe_client import (
    CHECKOUT_COMPLETED,
    EventParseError,
    SignatureInvalid,
    StripeGateway,
    WebhookEvent,
)
from shared.core import get_logger
from .errors import PersistenceError, ValidationError
from .notifications import Notifier


class PaymentConfirmationService:
    """
    Consumes payment provider webhooks.

    Once the signature and payload check out the caller always acknowledges:
    unknown sessions and repeated deliveries are reported through logs only,
    so the provider never retries them.
    """

    def __init__(self, db: Session, notifier: Notifier, webhook_secret: str,
                 tolerance: int = 300, logger=None):
        self.db = db
        self.notifier = notifier
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance
        self.logger = logger or get_logger(__name__)

    def handle(self, payload: bytes, signature_header: Optional[str]) -> WebhookEvent:
        try:
            event = StripeGateway.verify_and_parse_webhook(
                payload, signature_header, self.webhook_secret, tolerance=self.tolerance
            )
        except SignatureInvalid as e:
            self.logger.error(f"Webhook signature verification failed: {e}")
            raise ValidationError(f"Webhook Error: {e}") from e
        except EventParseError as e:
            self.logger.error(f"Webhook payload rejected: {e}")
            raise ValidationError(f"Webhook Error: {e}") from e

        if event.type == CHECKOUT_COMPLETED:
            self.confirm_payment(event.session_id)
        else:
            self.logger.info(f"Ignoring webhook event {event.type}")
        return event

    def confirm_payment(self, session_id: Optional[str]) -> bool:
        """Flip the order for this session to paid; True only for the call that did it."""
        fields = {"stripe_session_id": session_id}
        if not session_id:
            self.logger.warning("Completed checkout event without a session id")
            return False
        try:
            # Conditional update: only one delivery of the same event can win
            result = self.db.execute(
                update(Order)
                .where(Order.stripe_session_id == session_id, Order.is_paid.is_(False))
                .values(is_paid=True, paid_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error("Recording payment failed", exc_info=True, extra={"extra_fields": fields})
            raise PersistenceError(f"Recording payment failed: {e}") from e

        order = self.db.scalars(select(Order).where(Order.stripe_session_id == session_id)).first()
        if order is None:
            self.logger.warning("Order not found for webhook event", extra={"extra_fields": fields})
            return False
        if result.rowcount != 1:
            self.logger.info("Order already paid, webhook ignored",
                             extra={"extra_fields": {**fields, "order_id": order.id}})
            return False

        self.db.refresh(order)
        self.logger.info("Order payment confirmed via webhook",
                         extra={"extra_fields": {**fields, "order_id": order.id}})
        self.notifier.order_confirmed(order)
        return True
