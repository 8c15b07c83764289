import json
import time
from types import SimpleNamespace

import pytest
import stripe

from app.infrastructure.stripe_client import (
    CHECKOUT_COMPLETED,
    EventParseError,
    LineItem,
    ProviderError,
    SignatureInvalid,
    StripeGateway,
)
from conftest import sign_payload

SECRET = "whsec_unit"


def _gateway():
    return StripeGateway(secret_key="sk_test", currency="gbp")


def test_create_session_sends_line_items(monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="cs_123", url="https://checkout.stripe.test/cs_123")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

    session = _gateway().create_session(
        line_items=[LineItem("Hoodie (M)", 1000, 2), LineItem("Shipping", 299, 1)],
        success_url="https://shop.test/order-confirmation?orderId=7",
        cancel_url="https://shop.test/checkout",
        metadata={"userId": 1, "orderId": 7},
        customer_email="jane@example.com",
    )

    assert session.session_id == "cs_123"
    assert session.redirect_url == "https://checkout.stripe.test/cs_123"
    assert captured["api_key"] == "sk_test"
    assert captured["mode"] == "payment"
    assert captured["line_items"][0] == {
        "price_data": {"currency": "gbp", "product_data": {"name": "Hoodie (M)"}, "unit_amount": 1000},
        "quantity": 2,
    }
    assert captured["line_items"][1]["price_data"]["product_data"]["name"] == "Shipping"
    assert captured["metadata"] == {"userId": "1", "orderId": "7"}
    assert captured["customer_email"] == "jane@example.com"


def test_provider_error_message_is_surfaced(monkeypatch):
    def fake_create(**kwargs):
        raise stripe.CardError("Your card was declined.", None, "card_declined")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

    with pytest.raises(ProviderError, match="Your card was declined."):
        _gateway().create_session([LineItem("Cap", 750, 1)], "s", "c", {}, "a@b.co")


def test_unreadable_provider_reply_is_a_provider_error(monkeypatch):
    def fake_create(**kwargs):
        raise stripe.APIError("Invalid response body from API: <html>Bad gateway</html>")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

    with pytest.raises(ProviderError, match="Invalid response body"):
        _gateway().create_session([LineItem("Cap", 750, 1)], "s", "c", {}, "a@b.co")


def test_session_without_url_is_rejected(monkeypatch):
    monkeypatch.setattr(stripe.checkout.Session, "create", lambda **kwargs: SimpleNamespace(id="cs_1", url=None))

    with pytest.raises(ProviderError, match="missing id or url"):
        _gateway().create_session([LineItem("Cap", 750, 1)], "s", "c", {}, "a@b.co")


def test_expire_session(monkeypatch):
    seen = []

    def fake_expire(session_id, **kwargs):
        seen.append((session_id, kwargs["api_key"]))

    monkeypatch.setattr(stripe.checkout.Session, "expire", fake_expire)

    _gateway().expire_session("cs_123")
    assert seen == [("cs_123", "sk_test")]


def test_unreachable_provider(monkeypatch):
    def fake_expire(session_id, **kwargs):
        raise stripe.APIConnectionError("connection refused")

    monkeypatch.setattr(stripe.checkout.Session, "expire", fake_expire)

    with pytest.raises(ProviderError, match="connection refused"):
        _gateway().expire_session("cs_123")


def test_verify_and_parse_webhook():
    payload = json.dumps({
        "id": "evt_1",
        "type": CHECKOUT_COMPLETED,
        "data": {"object": {"id": "cs_9", "object": "checkout.session"}},
    }).encode()

    event = StripeGateway.verify_and_parse_webhook(payload, sign_payload(payload, SECRET), SECRET)

    assert event.type == CHECKOUT_COMPLETED
    assert event.session_id == "cs_9"


def test_webhook_signature_checks():
    payload = b'{"type": "checkout.session.completed", "data": {"object": {"id": "cs_9"}}}'

    with pytest.raises(SignatureInvalid):
        StripeGateway.verify_and_parse_webhook(payload, None, SECRET)
    with pytest.raises(SignatureInvalid):
        StripeGateway.verify_and_parse_webhook(payload, "v1=abc", SECRET)
    with pytest.raises(SignatureInvalid):
        StripeGateway.verify_and_parse_webhook(payload, sign_payload(payload, "whsec_other"), SECRET)
    with pytest.raises(SignatureInvalid):
        StripeGateway.verify_and_parse_webhook(payload + b" ", sign_payload(payload, SECRET), SECRET)
    with pytest.raises(SignatureInvalid):
        StripeGateway.verify_and_parse_webhook(
            payload, sign_payload(payload, SECRET, timestamp=int(time.time()) - 3600), SECRET
        )
    # inside the tolerance window
    StripeGateway.verify_and_parse_webhook(
        payload, sign_payload(payload, SECRET, timestamp=int(time.time()) - 200), SECRET
    )


def test_webhook_payload_shape_is_checked():
    for payload in (b"not json", b'{"data": {}}', b'{"type": "x", "data": {"object": "cs"}}'):
        with pytest.raises(EventParseError):
            StripeGateway.verify_and_parse_webhook(payload, sign_payload(payload, SECRET), SECRET)
