"""Payments API router."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.auth import Identity, verify_token
from storefront.database import get_db
from storefront.dependencies import get_payment_service
from storefront.schemas import (
    GuestPaymentRequest,
    MessageResponse,
    NotificationAck,
    PaymentNotification,
    PaymentResponse,
    PaymentSessionResponse,
)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/notification", response_model=NotificationAck)
async def payment_notification(
    notification: PaymentNotification,
    db: Session = Depends(get_db),
    payment_service=Depends(get_payment_service)
):
    """Webhook called by the payment processor; authenticated by signature."""
    return payment_service.handle_notification(db, notification.model_dump())


@router.post("/guest", response_model=PaymentSessionResponse)
async def create_guest_payment(
    request: GuestPaymentRequest,
    db: Session = Depends(get_db),
    payment_service=Depends(get_payment_service)
):
    payment = await payment_service.create_guest_payment(db, request.order_number, request.email)
    return PaymentSessionResponse(snap_token=payment.session_token, redirect_url=payment.redirect_url)


@router.post("/{order_id}", response_model=PaymentSessionResponse)
async def create_payment(
    order_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    payment_service=Depends(get_payment_service)
):
    """Open a checkout session for one of the caller's orders."""
    payment = await payment_service.create_payment(db, order_id, identity)
    return PaymentSessionResponse(snap_token=payment.session_token, redirect_url=payment.redirect_url)


@router.get("/{order_id}/status", response_model=PaymentResponse)
async def get_payment_status(
    order_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    payment_service=Depends(get_payment_service)
):
    return PaymentResponse.model_validate(payment_service.get_payment_status(db, order_id, identity))


@router.post("/{order_id}/simulate", response_model=MessageResponse)
async def simulate_payment(
    order_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    payment_service=Depends(get_payment_service)
):
    """Mark the order paid without the processor (sandbox only)."""
    payment_service.simulate_payment(db, order_id, identity)
    return MessageResponse(message="Payment simulated successfully")
