import os
import time

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("RUN_MIGRATIONS", "false")

from decimal import Decimal

import pytest
import stripe
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_mailer, get_payment_gateway
from app.auth_local import create_access_token, create_admin_session
from app.domain.models import Base, CartItem, Order, OrderItem, Product, User, utcnow
from app.infrastructure.db import get_db
from app.infrastructure.mailer import DispatchError
from app.infrastructure.stripe_client import PaymentSession, ProviderError
from app.main import app

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


class FakePayments:
    def __init__(self):
        self.sessions = []
        self.expired = []
        self.fail_with = None

    def create_session(self, line_items, success_url, cancel_url, metadata, customer_email):
        if self.fail_with:
            raise ProviderError(self.fail_with)
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({
            "id": session_id,
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "customer_email": customer_email,
        })
        return PaymentSession(session_id=session_id, redirect_url=f"https://checkout.stripe.test/{session_id}")

    def expire_session(self, session_id):
        self.expired.append(session_id)


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to_address, subject, html_body):
        if self.fail:
            raise DispatchError("mail provider down")
        self.sent.append({"to": to_address, "subject": subject, "html": html_body})


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(engine, payments, mailer):
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        session = Session()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: payments
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def customer(db):
    user = User(email="jane@example.com", first_name="Jane", last_name="Doe", is_admin=False)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def other_customer(db):
    user = User(email="sam@example.com", first_name="Sam", last_name="Roe", is_admin=False)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin_user(db):
    user = User(email="admin@example.com", first_name="Ada", last_name="Min", is_admin=True)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def hoodie(db):
    product = Product(
        name="Hoodie", price=Decimal("10.00"), sizes=["S", "M", "L"],
        images=["/images/hoodie.png"], serial_number="HD-001", count_in_stock=5,
    )
    db.add(product)
    db.commit()
    return product


@pytest.fixture
def cap(db):
    product = Product(
        name="Cap", price=Decimal("7.50"), sizes=["One Size"],
        images=[], serial_number="CP-001", count_in_stock=1,
    )
    db.add(product)
    db.commit()
    return product


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


def admin_cookies():
    return {"admin_session": create_admin_session("dashboard")}


def checkout_payload(product, quantity=2, size="M", **overrides):
    items_price = Decimal(str(product.price)) * quantity
    payload = {
        "order_items": [{"product": product.id, "quantity": quantity, "size": size, "serial_number": "HD-001"}],
        "shipping_address": {
            "street": "1 High Street", "city": "Bristol", "postal_code": "BS1 1AA",
            "country": "UK", "type": "Shipping",
        },
        "customer_details": {
            "first_name": "Jane", "last_name": "Doe", "email": "jane@example.com", "phone": "+44 7123456789",
        },
        "payment_method": "Card",
        "items_price": str(items_price),
        "shipping_price": "2.99",
        "total_price": str(items_price + Decimal("2.99")),
    }
    payload.update(overrides)
    return payload


def make_order(db, user, product, quantity=1, paid=False, delivered=False, moved=False,
               created_at=None, session_id=None):
    """Insert an order directly, as if checkout had already completed."""
    now = utcnow()
    order = Order(
        user_id=user.id if user else None,
        shipping_street="1 High Street", shipping_city="Bristol", shipping_postal_code="BS1 1AA",
        shipping_country="UK", shipping_type="Shipping",
        customer_first_name="Jane", customer_last_name="Doe", customer_email="jane@example.com",
        customer_phone=None, payment_method="Card", shipping_method="RoyalMail_NonTrackable",
        items_price=Decimal(str(product.price)) * quantity, shipping_price=Decimal("2.99"),
        total_price=Decimal(str(product.price)) * quantity + Decimal("2.99"),
        stripe_session_id=session_id,
        is_paid=paid, paid_at=now if paid else None,
        is_delivered=delivered, delivered_at=now if delivered else None,
        is_moved_to_sales=moved, moved_to_sales_at=now if moved else None,
        created_at=created_at or now,
        items=[OrderItem(position=0, product_id=product.id, name=product.name, quantity=quantity,
                         price=product.price, size=product.sizes[0], image=None, serial_number="HD-001")],
    )
    db.add(order)
    db.commit()
    return order


def add_to_cart(db, user, product, quantity=1, size="M"):
    db.add(CartItem(user_id=user.id, product_id=product.id, quantity=quantity, size=size))
    db.commit()


def sign_payload(payload: bytes, secret: str, timestamp=None) -> str:
    """Stripe-Signature header for `payload`, as the provider would send it."""
    ts = int(time.time()) if timestamp is None else timestamp
    signature = stripe.WebhookSignature._compute_signature(f"{ts}.{payload.decode()}", secret)
    return f"t={ts},{stripe.WebhookSignature.EXPECTED_SCHEME}={signature}"
