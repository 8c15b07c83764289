from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.infrastructure.db import get_db
from app.application.checkout import CheckoutService
from app.application.errors import OrderServiceError
from app.application.fulfillment import FulfillmentService
from app.application.notifications import Notifier
from app.application.payments import PaymentConfirmationService
from app.application.principal import Principal
from app.application.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    MessageResponse,
    MoveToSalesRequest,
    MoveToSalesResponse,
    OrderRead,
    OrderUpdate,
    WebhookAck,
)
from app.core_settings import Settings, get_settings
from .deps import get_notifier, get_payment_gateway, require_admin, require_user

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/", response_model=CheckoutResponse, status_code=201)
def create_order(
    payload: CheckoutRequest,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
    payments=Depends(get_payment_gateway),
    settings: Settings = Depends(get_settings),
):
    """Validate the cart, open a payment session and return its redirect URL."""
    url = CheckoutService(db, payments, settings).checkout(principal, payload)
    return CheckoutResponse(url=url)


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
):
    """Payment provider callback; acknowledged whenever the signature and payload are valid."""
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise OrderServiceError("Webhook secret not configured")
    payload = await request.body()
    service = PaymentConfirmationService(
        db, notifier, settings.STRIPE_WEBHOOK_SECRET,
        tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
    )
    # blocking database and mail I/O, run outside the event loop
    await run_in_threadpool(service.handle, payload, request.headers.get("Stripe-Signature"))
    return WebhookAck(received=True)


@router.get("/myorders", response_model=list[OrderRead])
def list_my_orders(
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return FulfillmentService(db, notifier).list_for_user(principal)


@router.get("/session/{session_id}", response_model=OrderRead)
def get_order_by_session(
    session_id: str,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return FulfillmentService(db, notifier).get_by_session(session_id)


@router.get("/", response_model=list[OrderRead])
def list_paid_orders(
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Paid orders, newest first (admin)."""
    return FulfillmentService(db, notifier).list_paid()


@router.put("/move-to-sales", response_model=MoveToSalesResponse)
def move_orders_to_sales(
    payload: MoveToSalesRequest,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    modified = FulfillmentService(db, notifier).move_to_sales(payload.order_ids)
    return MoveToSalesResponse(message=f"{modified} orders moved to sales", modified_count=modified)


@router.put("/{order_id}", response_model=OrderRead)
def update_order(
    order_id: int,
    payload: OrderUpdate,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return FulfillmentService(db, notifier).admin_update(order_id, payload)


@router.put("/{order_id}/delivered", response_model=OrderRead)
def mark_order_delivered(
    order_id: int,
    principal: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return FulfillmentService(db, notifier).mark_delivered(order_id)


@router.delete("/{order_id}", response_model=MessageResponse)
def delete_order(
    order_id: int,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Admins delete any order; customers cancel their own unpaid ones."""
    service = FulfillmentService(db, notifier)
    if principal.is_admin:
        service.delete(order_id)
        return MessageResponse(message="Order deleted")
    service.cancel(order_id, principal)
    return MessageResponse(message="Order cancelled successfully")


@router.get("/{order_id}", response_model=OrderRead)
def get_order(
    order_id: int,
    principal: Principal = Depends(require_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return FulfillmentService(db, notifier).get_for_principal(order_id, principal)
