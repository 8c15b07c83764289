from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, ForeignKey, Numeric, DateTime, Integer, Boolean, JSON
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column here."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class OrderState(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    DELIVERED = "delivered"
    MOVED_TO_SALES = "moved_to_sales"


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String(100))
    last_name: Mapped[str] = mapped_column(String(100))
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    cart_items: Mapped[list["CartItem"]] = relationship(
        "CartItem", back_populates="user", cascade="all, delete-orphan"
    )


class CartItem(Base):
    __tablename__ = "cart_items"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    # No FK to products: the catalog is owned elsewhere
    product_id: Mapped[int]
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    size: Mapped[str] = mapped_column(String(20))
    user: Mapped[User] = relationship("User", back_populates="cart_items")


class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    sizes: Mapped[list] = mapped_column(JSON, default=list)
    images: Mapped[list] = mapped_column(JSON, default=list)
    serial_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    count_in_stock: Mapped[int] = mapped_column(Integer, default=0)


class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(primary_key=True)
    # Nullable for guest orders
    user_id: Mapped[Optional[int]] = mapped_column(Integer, index=True, nullable=True)

    shipping_street: Mapped[str] = mapped_column(String(200))
    shipping_city: Mapped[str] = mapped_column(String(100))
    shipping_postal_code: Mapped[str] = mapped_column(String(20))
    shipping_country: Mapped[str] = mapped_column(String(100))
    shipping_type: Mapped[str] = mapped_column(String(20))

    customer_first_name: Mapped[str] = mapped_column(String(100))
    customer_last_name: Mapped[str] = mapped_column(String(100))
    customer_email: Mapped[str] = mapped_column(String(255))
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    payment_method: Mapped[str] = mapped_column(String(20))
    shipping_method: Mapped[str] = mapped_column(String(50))
    items_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    shipping_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    # Null between order creation and session attachment during checkout
    stripe_session_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, index=True, nullable=True)

    is_paid: Mapped[bool] = mapped_column(Boolean, default=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_delivered: Mapped[bool] = mapped_column(Boolean, default=False)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_moved_to_sales: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    moved_to_sales_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    archive_marked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan",
        order_by="OrderItem.position"
    )

    @property
    def state(self) -> OrderState:
        if self.is_moved_to_sales:
            return OrderState.MOVED_TO_SALES
        if self.is_delivered:
            return OrderState.DELIVERED
        if self.is_paid:
            return OrderState.PAID
        return OrderState.PENDING

    @property
    def shipping_address(self) -> dict:
        return {
            "street": self.shipping_street,
            "city": self.shipping_city,
            "postal_code": self.shipping_postal_code,
            "country": self.shipping_country,
            "type": self.shipping_type,
        }

    @property
    def customer_details(self) -> dict:
        return {
            "first_name": self.customer_first_name,
            "last_name": self.customer_last_name,
            "email": self.customer_email,
            "phone": self.customer_phone,
        }


class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    # Snapshot of the catalog at order time; product_id is not a FK so
    # historical orders survive product deletion
    product_id: Mapped[int]
    name: Mapped[str] = mapped_column(String(200))
    quantity: Mapped[int]
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    size: Mapped[str] = mapped_column(String(20))
    image: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    serial_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    order: Mapped[Order] = relationship("Order", back_populates="items")


class OrderArchive(Base):
    __tablename__ = "order_archives"
    id: Mapped[int] = mapped_column(primary_key=True)
    source_order_id: Mapped[int] = mapped_column(Integer, unique=True, index=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    shipping_address: Mapped[dict] = mapped_column(JSON)
    customer_details: Mapped[dict] = mapped_column(JSON)
    items: Mapped[list] = mapped_column(JSON)
    payment_method: Mapped[str] = mapped_column(String(20))
    shipping_method: Mapped[str] = mapped_column(String(50))
    items_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    shipping_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    stripe_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_delivered: Mapped[bool] = mapped_column(Boolean, default=False)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_moved_to_sales: Mapped[bool] = mapped_column(Boolean, default=False)
    moved_to_sales_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    order_created_at: Mapped[datetime] = mapped_column(DateTime)
    archived_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class JobLock(Base):
    __tablename__ = "job_locks"
    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    owner: Mapped[str] = mapped_column(String(100))
    acquired_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
