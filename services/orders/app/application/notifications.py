from html import escape
from urllib.parse import quote

from app.domain.models import Order
from app.infrastructure.mailer import DispatchError
from shared.core import get_logger


def _layout(content: str, store_url: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: auto; padding: 20px;">
        <h1 style="text-align: center;">UWEAR</h1>
        <div style="border: 2px solid #000000; padding: 20px;">
            {content}
            <p style="text-align: center;">Visit us at <a href="{escape(store_url)}">{escape(store_url)}</a></p>
        </div>
    </div>
    """


def _address_html(order: Order) -> str:
    return (
        f"<p>{escape(order.shipping_street)}, {escape(order.shipping_city)}, <br />"
        f"{escape(order.shipping_postal_code)}, {escape(order.shipping_country)} "
        f"({escape(order.shipping_type)})</p>"
    )


class Notifier:
    """
    Composes order emails and hands them to the mailer.

    Dispatch is best effort: a DispatchError is logged and reported as
    False, it never propagates into the order workflow.
    """

    def __init__(self, mailer, store_url: str, logger=None):
        self.mailer = mailer
        self.store_url = store_url.rstrip("/")
        self.logger = logger or get_logger(__name__)

    def _order_link(self, order: Order) -> str:
        return f"{self.store_url}/account/orders/{quote(str(order.id))}"

    def order_confirmed(self, order: Order) -> bool:
        rows = "".join(
            f"<tr><td>{escape(item.name)} ({escape(item.size)})</td>"
            f"<td>{item.quantity}</td><td>&pound;{item.price * item.quantity:.2f}</td></tr>"
            for item in order.items
        )
        content = f"""
            <h2>Thank You for Your Order, {escape(order.customer_first_name)}!</h2>
            <p>Your order #{order.id} has been successfully paid and confirmed.</p>
            <table style="width: 100%;"><tbody>{rows}</tbody></table>
            <p><strong>Subtotal: &pound;{order.items_price:.2f}</strong></p>
            <p><strong>Shipping: &pound;{order.shipping_price:.2f}</strong></p>
            <p><strong>Total: &pound;{order.total_price:.2f}</strong></p>
            <h3>Shipping Address</h3>
            {_address_html(order)}
            <h3>Payment Method</h3>
            <p>{escape(order.payment_method)}</p>
            <p><a href="{self._order_link(order)}">View Order</a></p>
        """
        subject = f"UWEAR Order Confirmation #{order.id}"
        return self._send(order, "order_confirmed", subject, _layout(content, self.store_url))

    def order_dispatched(self, order: Order) -> bool:
        items = "".join(
            f"<li>{escape(item.name)} ({escape(item.size)}) - Quantity: {item.quantity}</li>"
            for item in order.items
        )
        content = f"""
            <h2>Your UWEAR Order #{order.id} Has Been Dispatched!</h2>
            <p>We're pleased to inform you that your order has been dispatched.</p>
            <p><strong>Shipping Method:</strong> {escape(order.shipping_method)}</p>
            <h3>Items</h3>
            <ul>{items}</ul>
            <h3>Shipping Address</h3>
            {_address_html(order)}
            <p><a href="{self._order_link(order)}">View Order</a></p>
        """
        subject = f"Your UWEAR Order #{order.id} Has Been Dispatched!"
        return self._send(order, "order_dispatched", subject, _layout(content, self.store_url))

    def _send(self, order: Order, kind: str, subject: str, html_body: str) -> bool:
        fields = {"order_id": order.id, "email": order.customer_email, "kind": kind}
        try:
            self.mailer.send(order.customer_email, subject, html_body)
        except DispatchError as e:
            self.logger.error(
                f"Failed to send {kind} email: {e}",
                extra={"extra_fields": fields}
            )
            return False
        self.logger.info(f"Sent {kind} email", extra={"extra_fields": fields})
        return True
