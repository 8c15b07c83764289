from decimal import Decimal

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.application.errors import InsufficientStockError
from app.application.inventory import InventoryLedger
from app.domain.models import CartItem, Order, OrderItem
from conftest import add_to_cart, auth_headers, checkout_payload


def _order_count(db):
    db.expire_all()
    return db.query(Order).count()


def test_checkout_creates_pending_order_and_returns_redirect(client, db, payments, customer, hoodie):
    add_to_cart(db, customer, hoodie, quantity=2)

    resp = client.post("/orders/", json=checkout_payload(hoodie), headers=auth_headers(customer))

    assert resp.status_code == 201
    assert resp.json() == {"url": "https://checkout.stripe.test/cs_test_1"}

    db.expire_all()
    order = db.query(Order).one()
    assert order.user_id == customer.id
    assert order.stripe_session_id == "cs_test_1"
    assert order.is_paid is False
    assert order.items_price == Decimal("20.00")
    assert order.shipping_price == Decimal("2.99")
    assert order.total_price == Decimal("22.99")
    assert order.shipping_method == "RoyalMail_NonTrackable"
    assert [(i.name, i.quantity, i.size) for i in order.items] == [("Hoodie", 2, "M")]
    assert order.items[0].image == "/images/hoodie.png"

    db.refresh(hoodie)
    assert hoodie.count_in_stock == 3
    assert db.query(CartItem).filter_by(user_id=customer.id).count() == 0


def test_checkout_sends_server_prices_to_provider(client, db, payments, customer, hoodie):
    client.post("/orders/", json=checkout_payload(hoodie), headers=auth_headers(customer))

    session = payments.sessions[0]
    order = db.query(Order).one()
    assert [(li.unit_amount, li.quantity) for li in session["line_items"]] == [(1000, 2), (299, 1)]
    assert session["line_items"][-1].name == "Shipping (RoyalMail_NonTrackable)"
    assert session["metadata"] == {"userId": customer.id, "orderId": order.id}
    assert session["success_url"].endswith(f"?orderId={order.id}")
    assert session["cancel_url"] == "http://localhost:3003/checkout"
    assert session["customer_email"] == "jane@example.com"


def test_checkout_rejects_total_off_by_one_cent(client, db, payments, customer, hoodie):
    payload = checkout_payload(hoodie, items_price=20.00, shipping_price=2.99, total_price=23.00)

    resp = client.post("/orders/", json=payload, headers=auth_headers(customer))

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Total price mismatch"
    assert _order_count(db) == 0
    assert payments.sessions == []
    db.refresh(hoodie)
    assert hoodie.count_in_stock == 5


def test_checkout_accepts_float_claims_that_match(client, db, customer, hoodie):
    payload = checkout_payload(hoodie, items_price=20.0, shipping_price=2.99, total_price=22.99)

    resp = client.post("/orders/", json=payload, headers=auth_headers(customer))

    assert resp.status_code == 201


def test_checkout_rejects_items_and_shipping_mismatch(client, db, customer, hoodie):
    resp = client.post("/orders/", json=checkout_payload(hoodie, items_price="19.00"),
                       headers=auth_headers(customer))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Items price mismatch"

    resp = client.post("/orders/", json=checkout_payload(hoodie, shipping_price="0.00", total_price="20.00"),
                       headers=auth_headers(customer))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Shipping price mismatch"
    assert _order_count(db) == 0


def test_checkout_requires_claimed_prices(client, customer, hoodie):
    resp = client.post("/orders/", json=checkout_payload(hoodie, total_price=None),
                       headers=auth_headers(customer))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Items, shipping and total prices are required"


def test_checkout_requires_authentication(client, hoodie):
    resp = client.post("/orders/", json=checkout_payload(hoodie))
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Not authorized, no token"


def test_checkout_validation_messages(client, db, customer, hoodie):
    headers = auth_headers(customer)
    cases = [
        ({"order_items": []}, "No order items"),
        ({"order_items": [{"product": hoodie.id, "quantity": 0, "size": "M"}]}, "Invalid order item"),
        ({"shipping_address": {"street": "1 High Street", "city": "Bristol", "postal_code": "BS1 1AA",
                               "country": "UK"}},
         "All shipping address fields are required"),
        ({"shipping_address": {"street": "1 High Street", "city": "Bristol", "postal_code": "BS1 1AA",
                               "country": "UK", "type": "Home"}},
         "Invalid shipping address type. Must be Shipping or Billing"),
        ({"customer_details": {"first_name": "Jane", "last_name": "Doe"}},
         "First name, last name, and email are required"),
        ({"customer_details": {"first_name": "Jane", "last_name": "Doe", "email": "jane@example"}},
         "Invalid email format"),
        ({"customer_details": {"first_name": "Jane", "last_name": "Doe", "email": "jane@example.com",
                               "phone": "12345"}},
         "Invalid phone number format"),
        ({"payment_method": "PayPal"}, "Invalid payment method"),
        ({"order_items": [{"product": hoodie.id, "quantity": 1, "size": "XXL"}]}, "Invalid size for Hoodie: XXL"),
    ]
    for overrides, message in cases:
        resp = client.post("/orders/", json=checkout_payload(hoodie, **overrides), headers=headers)
        assert resp.status_code == 400, message
        assert resp.json()["detail"] == message
    assert _order_count(db) == 0


def test_checkout_accepts_phone_without_country_code(client, customer, hoodie):
    details = {"first_name": "Jane", "last_name": "Doe", "email": "jane@example.com", "phone": "0712345678"}
    resp = client.post("/orders/", json=checkout_payload(hoodie, customer_details=details),
                       headers=auth_headers(customer))
    assert resp.status_code == 201


def test_checkout_unknown_product(client, customer, hoodie):
    payload = checkout_payload(hoodie, order_items=[{"product": 999, "quantity": 1, "size": "M"}])
    resp = client.post("/orders/", json=payload, headers=auth_headers(customer))
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Product not found: 999"


def test_checkout_insufficient_stock(client, db, customer, hoodie):
    resp = client.post("/orders/", json=checkout_payload(hoodie, quantity=6), headers=auth_headers(customer))
    assert resp.status_code == 409
    assert resp.json()["detail"] == "Insufficient stock for Hoodie"
    assert _order_count(db) == 0


def test_checkout_malformed_body_is_bad_request(client, customer, hoodie):
    resp = client.post("/orders/", json=checkout_payload(hoodie, total_price="lots"),
                       headers=auth_headers(customer))
    assert resp.status_code == 400


def test_provider_failure_leaves_no_order_behind(client, db, payments, customer, hoodie):
    add_to_cart(db, customer, hoodie)
    payments.fail_with = "card network down"

    resp = client.post("/orders/", json=checkout_payload(hoodie), headers=auth_headers(customer))

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to create payment session: card network down"
    assert _order_count(db) == 0
    assert db.query(OrderItem).count() == 0
    db.refresh(hoodie)
    assert hoodie.count_in_stock == 5
    assert db.query(CartItem).filter_by(user_id=customer.id).count() == 1


def test_lost_reservation_race_rolls_back_checkout(client, db, payments, customer, hoodie, monkeypatch):
    def sold_out(self, lines):
        raise InsufficientStockError("Insufficient stock for product 1")

    monkeypatch.setattr(InventoryLedger, "reserve", sold_out)

    resp = client.post("/orders/", json=checkout_payload(hoodie), headers=auth_headers(customer))

    assert resp.status_code == 409
    assert _order_count(db) == 0
    assert payments.expired == ["cs_test_1"]
    db.refresh(hoodie)
    assert hoodie.count_in_stock == 5


def test_attach_session_failure_discards_order_and_expires_session(client, db, payments, customer, hoodie, monkeypatch):
    add_to_cart(db, customer, hoodie)
    real_commit = Session.commit

    def failing_attach(self):
        if any(isinstance(obj, Order) and obj.stripe_session_id for obj in self.dirty):
            raise OperationalError("UPDATE orders", {}, Exception("disk I/O error"))
        return real_commit(self)

    monkeypatch.setattr(Session, "commit", failing_attach)

    resp = client.post("/orders/", json=checkout_payload(hoodie), headers=auth_headers(customer))

    assert resp.status_code == 500
    assert resp.json()["detail"].startswith("Order update failed")
    assert _order_count(db) == 0
    assert db.query(OrderItem).count() == 0
    assert payments.expired == ["cs_test_1"]
    db.refresh(hoodie)
    assert hoodie.count_in_stock == 5
    assert db.query(CartItem).filter_by(user_id=customer.id).count() == 1


def test_checkout_then_cancel_restores_stock(client, db, customer, hoodie):
    headers = auth_headers(customer)
    client.post("/orders/", json=checkout_payload(hoodie, quantity=3), headers=headers)
    order_id = db.query(Order).one().id
    db.refresh(hoodie)
    assert hoodie.count_in_stock == 2

    resp = client.delete(f"/orders/{order_id}", headers=headers)

    assert resp.status_code == 200
    assert resp.json() == {"message": "Order cancelled successfully"}
    db.refresh(hoodie)
    assert hoodie.count_in_stock == 5
    assert _order_count(db) == 0


def test_last_unit_goes_to_one_checkout(client, db, customer, other_customer, cap):
    first = client.post("/orders/", json=checkout_payload(cap, quantity=1, size="One Size"),
                        headers=auth_headers(customer))
    second = client.post("/orders/", json=checkout_payload(cap, quantity=1, size="One Size"),
                         headers=auth_headers(other_customer))

    assert first.status_code == 201
    assert second.status_code == 409
    db.refresh(cap)
    assert cap.count_in_stock == 0
    assert _order_count(db) == 1
