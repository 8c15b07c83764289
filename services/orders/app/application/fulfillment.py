from typing import Iterable, Union

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.models import Order, utcnow
from shared.core import get_logger
from .errors import (
    AuthError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .inventory import InventoryLedger
from .notifications import Notifier
from .principal import MANAGE_OWN_ORDERS, Principal
from .schemas import OrderUpdate


def parse_order_ids(raw_ids: Iterable[Union[int, str]]) -> list[int]:
    """Validate a batch of order references; any malformed id rejects the whole batch."""
    raw_ids = list(raw_ids)
    if not raw_ids:
        raise ValidationError("No order IDs provided")
    parsed, invalid = [], []
    for raw in raw_ids:
        if isinstance(raw, bool):
            invalid.append(str(raw))
        elif isinstance(raw, int) and raw > 0:
            parsed.append(raw)
        elif isinstance(raw, str) and raw.strip().isascii() and raw.strip().isdigit() and int(raw) > 0:
            parsed.append(int(raw))
        else:
            invalid.append(str(raw))
    if invalid:
        raise ValidationError(f"Invalid order IDs: {', '.join(invalid)}")
    # keep first-seen order, drop duplicates
    return list(dict.fromkeys(parsed))


class FulfillmentService:
    """
    Order lifecycle after checkout.

    Pending -> Paid -> Delivered -> MovedToSales -> (archived by the batch
    job). Cancel and delete are terminal and give the reserved stock back.
    The paid, delivered and moved-to-sales flags only ever go from false to
    true; their timestamps are written once.
    """

    def __init__(self, db: Session, notifier: Notifier, logger=None):
        self.db = db
        self.notifier = notifier
        self.logger = logger or get_logger(__name__)

    def get(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            self.logger.warning("Order not found", extra={"extra_fields": {"order_id": order_id}})
            raise NotFoundError("Order not found")
        return order

    def get_for_principal(self, order_id: int, principal: Principal) -> Order:
        order = self.get(order_id)
        if principal.is_admin or principal.owns(order.user_id):
            return order
        self.logger.warning("Unauthorized access to order",
                            extra={"extra_fields": {"order_id": order_id, "user_id": principal.user_id}})
        raise AuthError("Not authorized to view this order")

    def get_by_session(self, session_id: str) -> Order:
        order = self.db.scalars(select(Order).where(Order.stripe_session_id == session_id)).first()
        if order is None:
            self.logger.warning("Order not found by session ID",
                                extra={"extra_fields": {"stripe_session_id": session_id}})
            raise NotFoundError("Order not found")
        return order

    def list_for_user(self, principal: Principal) -> list[Order]:
        if principal.user_id is None:
            return []
        return list(self.db.scalars(
            select(Order).where(Order.user_id == principal.user_id).order_by(Order.created_at.desc(), Order.id.desc())
        ))

    def list_paid(self) -> list[Order]:
        return list(self.db.scalars(
            select(Order).where(Order.is_paid.is_(True)).order_by(Order.created_at.desc(), Order.id.desc())
        ))

    def cancel(self, order_id: int, principal: Principal) -> None:
        order = self.get(order_id)
        if not principal.can(MANAGE_OWN_ORDERS) or not principal.owns(order.user_id):
            self.logger.warning("Cancel order failed: Unauthorized",
                                extra={"extra_fields": {"order_id": order_id, "user_id": principal.user_id}})
            raise ForbiddenError("Unauthorized")
        if order.is_paid:
            self.logger.warning("Cancel order failed: Order already paid",
                                extra={"extra_fields": {"order_id": order_id}})
            raise ConflictError("Cannot cancel a paid order")
        self._restock_and_delete(order)
        self.logger.info("Order cancelled",
                         extra={"extra_fields": {"order_id": order_id, "user_id": principal.user_id}})

    def delete(self, order_id: int) -> None:
        order = self.get(order_id)
        self._restock_and_delete(order)
        self.logger.info("Order deleted", extra={"extra_fields": {"order_id": order_id, "state": order.state.value}})

    def _restock_and_delete(self, order: Order) -> None:
        lines = [(item.product_id, item.quantity) for item in order.items]
        try:
            InventoryLedger(self.db, logger=self.logger).restock(lines)
            self.db.delete(order)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error("Order removal failed", exc_info=True,
                              extra={"extra_fields": {"order_id": order.id}})
            raise PersistenceError(f"Order removal failed: {e}") from e

    def admin_update(self, order_id: int, data: OrderUpdate) -> Order:
        order = self.get(order_id)
        if data.is_paid is False and order.is_paid:
            raise ConflictError("Payment status cannot be reverted")
        if data.is_delivered is False and order.is_delivered:
            raise ConflictError("Delivery status cannot be reverted")

        newly_paid = bool(data.is_paid) and not order.is_paid
        newly_delivered = bool(data.is_delivered) and not order.is_delivered
        if newly_delivered and not (order.is_paid or newly_paid):
            raise ConflictError("Cannot deliver an unpaid order")

        now = utcnow()
        if newly_paid:
            order.is_paid = True
            order.paid_at = order.paid_at or now
        if newly_delivered:
            order.is_delivered = True
            order.delivered_at = order.delivered_at or now
        self._commit(order, "Order update failed")
        self.logger.info("Order updated",
                         extra={"extra_fields": {"order_id": order_id, "paid": newly_paid, "delivered": newly_delivered}})

        if newly_paid:
            self.notifier.order_confirmed(order)
        return order

    def mark_delivered(self, order_id: int) -> Order:
        order = self.get(order_id)
        if order.is_delivered:
            return order
        if not order.is_paid:
            raise ConflictError("Cannot deliver an unpaid order")
        order.is_delivered = True
        order.delivered_at = utcnow()
        self._commit(order, "Marking order delivered failed")
        self.logger.info("Order marked as delivered", extra={"extra_fields": {"order_id": order_id}})
        return order

    def move_to_sales(self, raw_ids: Iterable[Union[int, str]]) -> int:
        """Finalize delivered orders; each order is notified by the one call that moves it."""
        try:
            order_ids = parse_order_ids(raw_ids)
        except ValidationError as e:
            self.logger.warning(f"Move orders failed: {e.message}")
            raise

        moved: list[int] = []
        try:
            now = utcnow()
            for order_id in order_ids:
                result = self.db.execute(
                    update(Order)
                    .where(
                        Order.id == order_id,
                        Order.is_delivered.is_(True),
                        Order.is_moved_to_sales.is_(False),
                    )
                    .values(is_moved_to_sales=True, moved_to_sales_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    moved.append(order_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error("Move orders error", exc_info=True,
                              extra={"extra_fields": {"order_ids": order_ids}})
            raise PersistenceError(f"Moving orders to sales failed: {e}") from e

        self.logger.info("Orders moved to sales", extra={"extra_fields": {
            "requested": len(order_ids), "modified_count": len(moved), "order_ids": moved,
        }})
        for order_id in moved:
            order = self.db.get(Order, order_id)
            self.db.refresh(order)
            self.notifier.order_dispatched(order)
        return len(moved)

    def _commit(self, order: Order, failure: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error(failure, exc_info=True, extra={"extra_fields": {"order_id": order.id}})
            raise PersistenceError(f"{failure}: {e}") from e
        self.db.refresh(order)

