import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core_settings import Settings
from app.domain.models import CartItem, Order, OrderItem, Product, User
from app.infrastructure.stripe_client import LineItem, PaymentSession, ProviderError
from shared.core import get_logger
from .errors import (
    AuthError,
    InsufficientStockError,
    NotFoundError,
    OrderServiceError,
    PersistenceError,
    UpstreamError,
    ValidationError,
)
from .inventory import InventoryLedger
from .pricing import PriceQuote, check_claimed_prices, to_minor_units, to_money
from .principal import PLACE_ORDER, Principal
from .schemas import CheckoutRequest, CustomerDetailsIn, OrderItemCreate, ShippingAddressIn

ADDRESS_TYPES = ("Shipping", "Billing")
EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")
PHONE_PATTERN = re.compile(r"^(\+\d{1,3}[- ]?)?\d{10}$")


@dataclass
class PricedLine:
    product_id: int
    name: str
    quantity: int
    price: Decimal
    size: str
    image: Optional[str]
    serial_number: str


class CheckoutService:
    """
    Turns a cart into a pending order plus a hosted payment session.

    Nothing is written until every validation step has passed. After that
    the writes happen in this order, each one undone if a later one fails:

    1. pending order persisted without a payment reference
    2. payment session opened with the provider
    3. session reference attached to the order
    4. stock reserved and the user's cart cleared (one transaction)
    """

    def __init__(self, db: Session, payments, settings: Settings, logger=None):
        self.db = db
        self.payments = payments
        self.settings = settings
        self.logger = logger or get_logger(__name__)

    def checkout(self, principal: Optional[Principal], data: CheckoutRequest) -> str:
        user = self._require_user(principal)
        try:
            self._validate_items_present(data.order_items)
            self._validate_address(data.shipping_address)
            self._validate_customer(data.customer_details)
            self._validate_payment_method(data.payment_method)
            lines, quote = self._price_items(data.order_items)
            check_claimed_prices(quote, data.items_price, data.shipping_price, data.total_price)
        except OrderServiceError as e:
            self.logger.warning(
                f"Checkout rejected: {e.message}",
                extra={"extra_fields": {"user_id": user.id, "status_code": e.status_code}}
            )
            raise

        order = self._create_pending_order(user, data, lines, quote)
        session = self._open_payment_session(order, user, lines, quote, data.customer_details.email)
        self._attach_session(order, session)
        self._reserve_and_clear_cart(order, session, user, lines)

        self.logger.info(
            "Order created",
            extra={"extra_fields": {
                "order_id": order.id,
                "user_id": user.id,
                "stripe_session_id": session.session_id,
                "total_price": str(order.total_price),
            }}
        )
        return session.redirect_url

    def _require_user(self, principal: Optional[Principal]) -> User:
        if principal is None or not principal.can(PLACE_ORDER) or principal.user_id is None:
            raise AuthError("User not authenticated")
        user = self.db.get(User, principal.user_id)
        if user is None:
            raise AuthError("User not authenticated")
        return user

    def _validate_items_present(self, items: list[OrderItemCreate]) -> None:
        if not items:
            raise ValidationError("No order items")
        for item in items:
            if item.product is None or item.quantity is None or item.quantity < 1 or not item.size:
                raise ValidationError("Invalid order item")

    def _validate_address(self, address: ShippingAddressIn) -> None:
        if not all([address.street, address.city, address.postal_code, address.country, address.type]):
            raise ValidationError("All shipping address fields are required")
        if address.type not in ADDRESS_TYPES:
            raise ValidationError("Invalid shipping address type. Must be Shipping or Billing")

    def _validate_customer(self, customer: CustomerDetailsIn) -> None:
        if not customer.first_name or not customer.last_name or not customer.email:
            raise ValidationError("First name, last name, and email are required")
        if not EMAIL_PATTERN.match(customer.email):
            raise ValidationError("Invalid email format")
        if customer.phone and not PHONE_PATTERN.match(customer.phone):
            raise ValidationError("Invalid phone number format")

    def _validate_payment_method(self, payment_method: Optional[str]) -> None:
        if payment_method != self.settings.ACCEPTED_PAYMENT_METHOD:
            raise ValidationError("Invalid payment method")

    def _price_items(self, items: list[OrderItemCreate]) -> tuple[list[PricedLine], PriceQuote]:
        lines = []
        items_price = Decimal("0.00")
        for item in items:
            product = self.db.get(Product, item.product)
            if product is None:
                raise NotFoundError(f"Product not found: {item.product}")
            if product.count_in_stock < item.quantity:
                raise InsufficientStockError(f"Insufficient stock for {product.name}")
            if item.size not in (product.sizes or []):
                raise ValidationError(f"Invalid size for {product.name}: {item.size}")
            price = to_money(product.price)
            items_price += price * item.quantity
            lines.append(PricedLine(
                product_id=product.id,
                name=product.name,
                quantity=item.quantity,
                price=price,
                size=item.size,
                image=product.images[0] if product.images else None,
                serial_number=item.serial_number or "",
            ))
        return lines, PriceQuote(items_price=items_price, shipping_price=to_money(self.settings.SHIPPING_PRICE))

    def _create_pending_order(
        self, user: User, data: CheckoutRequest, lines: list[PricedLine], quote: PriceQuote
    ) -> Order:
        address = data.shipping_address
        customer = data.customer_details
        order = Order(
            user_id=user.id,
            shipping_street=address.street,
            shipping_city=address.city,
            shipping_postal_code=address.postal_code,
            shipping_country=address.country,
            shipping_type=address.type,
            customer_first_name=customer.first_name,
            customer_last_name=customer.last_name,
            customer_email=customer.email,
            customer_phone=customer.phone or None,
            payment_method=data.payment_method,
            shipping_method=self.settings.SHIPPING_METHOD,
            items_price=quote.items_price,
            shipping_price=quote.shipping_price,
            total_price=quote.total_price,
            stripe_session_id=None,
            is_paid=False,
            is_delivered=False,
            is_moved_to_sales=False,
            items=[
                OrderItem(
                    position=position,
                    product_id=line.product_id,
                    name=line.name,
                    quantity=line.quantity,
                    price=line.price,
                    size=line.size,
                    image=line.image,
                    serial_number=line.serial_number,
                )
                for position, line in enumerate(lines)
            ],
        )
        try:
            self.db.add(order)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error("Pending order creation failed", exc_info=True,
                              extra={"extra_fields": {"user_id": user.id}})
            raise PersistenceError(f"Order creation failed: {e}") from e
        return order

    def _open_payment_session(
        self, order: Order, user: User, lines: list[PricedLine], quote: PriceQuote, email: str
    ) -> PaymentSession:
        line_items = [
            LineItem(name=f"{line.name} ({line.size})", unit_amount=to_minor_units(line.price), quantity=line.quantity)
            for line in lines
        ]
        line_items.append(LineItem(
            name=f"Shipping ({self.settings.SHIPPING_METHOD})",
            unit_amount=to_minor_units(quote.shipping_price),
            quantity=1,
        ))
        try:
            session = self.payments.create_session(
                line_items=line_items,
                success_url=f"{self.settings.CHECKOUT_SUCCESS_URL}?orderId={order.id}",
                cancel_url=self.settings.CHECKOUT_CANCEL_URL,
                metadata={"userId": user.id, "orderId": order.id},
                customer_email=email,
            )
        except ProviderError as e:
            self.logger.error(
                f"Payment session creation failed: {e}",
                extra={"extra_fields": {"order_id": order.id, "user_id": user.id}}
            )
            self._discard(order.id)
            raise UpstreamError(f"Failed to create payment session: {e}") from e
        self.logger.info(
            "Payment session created",
            extra={"extra_fields": {"order_id": order.id, "stripe_session_id": session.session_id}}
        )
        return session

    def _attach_session(self, order: Order, session: PaymentSession) -> None:
        try:
            order.stripe_session_id = session.session_id
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error(
                "Attaching payment session failed", exc_info=True,
                extra={"extra_fields": {"order_id": order.id, "stripe_session_id": session.session_id}}
            )
            self._discard(order.id)
            self._expire(session)
            raise PersistenceError(f"Order update failed: {e}") from e

    def _reserve_and_clear_cart(
        self, order: Order, session: PaymentSession, user: User, lines: list[PricedLine]
    ) -> None:
        ledger = InventoryLedger(self.db, logger=self.logger)
        try:
            ledger.reserve([(line.product_id, line.quantity) for line in lines])
            self.db.execute(delete(CartItem).where(CartItem.user_id == user.id))
            self.db.commit()
        except InsufficientStockError:
            self.db.rollback()
            self._discard(order.id)
            self._expire(session)
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error("Stock reservation failed", exc_info=True,
                              extra={"extra_fields": {"order_id": order.id}})
            self._discard(order.id)
            self._expire(session)
            raise PersistenceError(f"Stock reservation failed: {e}") from e

    def _discard(self, order_id: int) -> None:
        """Compensation: remove a pending order that never completed checkout."""
        try:
            self.db.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
            self.db.execute(delete(Order).where(Order.id == order_id))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.error(
                "Could not delete pending order after failed checkout",
                exc_info=True,
                extra={"extra_fields": {"order_id": order_id}}
            )
            return
        self.logger.info("Pending order deleted", extra={"extra_fields": {"order_id": order_id}})

    def _expire(self, session: PaymentSession) -> None:
        try:
            self.payments.expire_session(session.session_id)
        except ProviderError as e:
            self.logger.warning(
                f"Could not expire payment session: {e}",
                extra={"extra_fields": {"stripe_session_id": session.session_id}}
            )
