from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from app.domain.models import OrderState

# Request fields are optional at the schema level: completeness is checked by
# the checkout validator so every failure gets its specific message.


class OrderItemCreate(BaseModel):
    product: Optional[int] = None
    quantity: Optional[int] = None
    size: Optional[str] = None
    serial_number: Optional[str] = None


class ShippingAddressIn(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    type: Optional[str] = None


class CustomerDetailsIn(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class CheckoutRequest(BaseModel):
    order_items: list[OrderItemCreate] = []
    shipping_address: ShippingAddressIn = ShippingAddressIn()
    customer_details: CustomerDetailsIn = CustomerDetailsIn()
    payment_method: Optional[str] = None
    items_price: Optional[Decimal] = None
    shipping_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None


class CheckoutResponse(BaseModel):
    url: str


class OrderUpdate(BaseModel):
    is_paid: Optional[bool] = None
    is_delivered: Optional[bool] = None


class MoveToSalesRequest(BaseModel):
    order_ids: list[Union[int, str]] = []


class MoveToSalesResponse(BaseModel):
    message: str
    modified_count: int = Field(serialization_alias="modifiedCount")


class MessageResponse(BaseModel):
    message: str


class WebhookAck(BaseModel):
    received: bool = True


class ShippingAddressRead(BaseModel):
    street: str
    city: str
    postal_code: str
    country: str
    type: str


class CustomerDetailsRead(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None


class OrderItemRead(BaseModel):
    product_id: int
    name: str
    quantity: int
    price: Decimal
    size: str
    image: Optional[str] = None
    serial_number: Optional[str] = None

    class Config:
        from_attributes = True


class OrderRead(BaseModel):
    id: int
    user_id: Optional[int] = None
    items: list[OrderItemRead]
    shipping_address: ShippingAddressRead
    customer_details: CustomerDetailsRead
    payment_method: str
    shipping_method: str
    items_price: Decimal
    shipping_price: Decimal
    total_price: Decimal
    stripe_session_id: Optional[str] = None
    state: OrderState
    is_paid: bool
    paid_at: Optional[datetime] = None
    is_delivered: bool
    delivered_at: Optional[datetime] = None
    is_moved_to_sales: bool
    created_at: datetime

    class Config:
        from_attributes = True
