"""Payment session and processor notification handling."""
import hashlib
import hmac
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from opentelemetry import trace
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from storefront.auth import Identity
from storefront.config import Settings
from storefront.errors import (
    BusinessRuleError,
    ForbiddenError,
    IntegrityStoreError,
    NotFoundError,
    StoreError,
)
from storefront.models import GuestPurchaser, Order, OrderStatus, Payment, PaymentStatus
from storefront.monitoring import funnel_stage_counter, payment_notifications_counter, payment_sessions_counter
from storefront.services.order_service import OrderService
from storefront.services.payment_gateway import PaymentGatewayClient

logger = logging.getLogger(__name__)

# Processor transaction_status -> local payment status
TRANSACTION_STATUS_MAP = {
    "capture": PaymentStatus.SUCCESS,
    "settlement": PaymentStatus.SUCCESS,
    "deny": PaymentStatus.FAILED,
    "cancel": PaymentStatus.FAILED,
    "expire": PaymentStatus.EXPIRED,
}


def notification_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    """Hex SHA-512 the processor signs notifications with."""
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


class PaymentService:
    """Service for opening checkout sessions and applying processor callbacks."""

    def __init__(self, settings: Settings, gateway: PaymentGatewayClient, order_service: OrderService):
        """
        Initialize payment service.

        Args:
            settings: Service settings
            gateway: Payment processor client
            order_service: Order service, used to release stock on failed payments
        """
        self.settings = settings
        self.gateway = gateway
        self.order_service = order_service
        self.tracer = trace.get_tracer(__name__)

    async def create_payment(self, db: Session, order_id: str, identity: Identity) -> Payment:
        """
        Open (or reuse) a checkout session for one of the caller's orders.

        Args:
            db: Database session
            order_id: Order identifier
            identity: Verified caller

        Returns:
            Pending payment carrying the session token

        Raises:
            NotFoundError: If the order isn't the caller's
            BusinessRuleError: If the order is no longer pending
            GatewayError: If the processor call fails
        """
        order = db.execute(
            select(Order)
            .where(Order.id == order_id, Order.user_id == identity.user_id)
            .options(selectinload(Order.user), selectinload(Order.address), selectinload(Order.payments))
        ).scalars().first()
        if order is None:
            raise NotFoundError("Order")

        phone = order.address.phone if order.address else ""
        return await self._open_session(db, order, order.user.name, order.user.email, phone)

    async def create_guest_payment(self, db: Session, order_number: str, email: str) -> Payment:
        """
        Open (or reuse) a checkout session for an order found by number and email.

        Raises:
            NotFoundError: If no order matches the number and email
            BusinessRuleError: If the order is no longer pending
            GatewayError: If the processor call fails
        """
        order = self.order_service.track_order(db, order_number, email)
        purchaser = order.purchaser
        if isinstance(purchaser, GuestPurchaser):
            name = purchaser.contact.name
            contact_email = purchaser.contact.email
            phone = purchaser.contact.phone
        else:
            name = order.user.name
            contact_email = order.user.email
            phone = ""
        return await self._open_session(db, order, name, contact_email, phone)

    async def _open_session(
        self,
        db: Session,
        order: Order,
        name: str,
        email: str,
        phone: Optional[str]
    ) -> Payment:
        span = trace.get_current_span()
        span.set_attribute("order.id", order.id)

        if order.status != OrderStatus.PENDING.value:
            raise BusinessRuleError("Payment already processed or order cancelled")

        for payment in order.payments:
            if payment.status == PaymentStatus.PENDING.value and payment.session_token:
                payment_sessions_counter.add(1, {"result": "reused"})
                logger.info("Reusing pending payment session", extra={
                    "order_id": order.id,
                    "payment_id": payment.id
                })
                return payment

        external_id = f"{self.settings.payment_order_prefix}-{order.id[:8]}-{int(time.time())}"
        session = await self.gateway.create_transaction(
            external_id=external_id,
            order_id=order.id,
            amount=order.total,
            customer_name=name,
            customer_email=email,
            customer_phone=phone,
        )

        payment = Payment(
            order_id=order.id,
            external_id=external_id,
            status=PaymentStatus.PENDING.value,
            amount=order.total,
            session_token=session.token,
            redirect_url=session.redirect_url,
        )
        db.add(payment)
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to save payment", extra={
                "order_id": order.id,
                "external_id": external_id,
                "error": str(e)
            })
            raise IntegrityStoreError("Failed to save payment")

        payment_sessions_counter.add(1, {"result": "created"})
        funnel_stage_counter.add(1, {"stage": "payment_started"})
        logger.info("Payment session created", extra={
            "order_id": order.id,
            "payment_id": payment.id,
            "external_id": external_id,
            "amount": order.total
        })
        return payment

    def handle_notification(self, db: Session, payload: Mapping[str, Any]) -> Dict[str, str]:
        """
        Apply a processor notification to the matching payment and order.

        Replays are harmless: only a pending payment ever changes.

        Args:
            db: Database session
            payload: Notification body

        Returns:
            Acknowledgement body

        Raises:
            ForbiddenError: If the signature doesn't match
            NotFoundError: If no payment has the notified transaction id
        """
        external_id = str(payload.get("order_id", ""))
        expected = notification_signature(
            external_id,
            str(payload.get("status_code", "")),
            str(payload.get("gross_amount", "")),
            self.settings.midtrans_server_key,
        )
        if not hmac.compare_digest(expected, str(payload.get("signature_key", ""))):
            payment_notifications_counter.add(1, {"result": "invalid_signature"})
            logger.warning("Rejected payment notification with invalid signature", extra={
                "external_id": external_id
            })
            raise ForbiddenError("Invalid signature")

        transaction_status = str(payload.get("transaction_status", ""))
        new_status = TRANSACTION_STATUS_MAP.get(transaction_status)

        try:
            with self.tracer.start_as_current_span("db.transaction.payment_notification") as db_span:
                db_span.set_attribute("payment.external_id", external_id)
                db_span.set_attribute("payment.transaction_status", transaction_status)

                payment = db.execute(
                    select(Payment).where(Payment.external_id == external_id).with_for_update()
                ).scalars().first()
                if payment is None:
                    raise NotFoundError("Payment")

                if payment.status != PaymentStatus.PENDING.value:
                    db.rollback()
                    payment_notifications_counter.add(1, {"result": "duplicate"})
                    logger.info("Ignoring notification for settled payment", extra={
                        "external_id": external_id,
                        "payment_status": payment.status,
                        "transaction_status": transaction_status
                    })
                    return {"status": "ok"}

                if new_status is None:
                    db.rollback()
                    payment_notifications_counter.add(1, {"result": "ignored"})
                    logger.info("Ignoring non-final payment notification", extra={
                        "external_id": external_id,
                        "transaction_status": transaction_status
                    })
                    return {"status": "ok"}

                payment.status = new_status.value
                if new_status == PaymentStatus.SUCCESS:
                    payment.paid_at = datetime.now(timezone.utc)
                    payment.method = str(payload.get("payment_type") or "")
                    self._mark_order_paid(db, payment.order_id)
                elif self.settings.payment_failure_policy == "release":
                    order = db.execute(
                        select(Order).where(Order.id == payment.order_id).options(selectinload(Order.items))
                    ).scalars().one()
                    if self.order_service.release_pending_order(db, order, "payment_" + new_status.value):
                        logger.info("Released stock for unpaid order", extra={
                            "order_id": order.id,
                            "payment_status": new_status.value
                        })

                db.commit()
        except StoreError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to apply payment notification", extra={
                "external_id": external_id,
                "transaction_status": transaction_status,
                "error": str(e)
            })
            raise IntegrityStoreError("Failed to apply payment notification")

        payment_notifications_counter.add(1, {"result": new_status.value})
        if new_status == PaymentStatus.SUCCESS:
            funnel_stage_counter.add(1, {"stage": "paid"})
        logger.info("Payment notification applied", extra={
            "external_id": external_id,
            "order_id": payment.order_id,
            "payment_status": new_status.value,
            "payment_type": payload.get("payment_type")
        })
        return {"status": "ok"}

    def _mark_order_paid(self, db: Session, order_id: str) -> None:
        result = db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
            .values(status=OrderStatus.PAID.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # The payment is still recorded; someone has to refund or reinstate it
            logger.warning("Payment succeeded for an order that is no longer pending", extra={
                "order_id": order_id
            })

    def get_payment_status(self, db: Session, order_id: str, identity: Identity) -> Payment:
        """
        Latest payment of one of the caller's orders.

        Raises:
            NotFoundError: If the order isn't the caller's or has no payment
        """
        order = db.execute(
            select(Order)
            .where(Order.id == order_id, Order.user_id == identity.user_id)
            .options(selectinload(Order.payments))
        ).scalars().first()
        if order is None:
            raise NotFoundError("Order")
        if order.latest_payment is None:
            raise NotFoundError("Payment")
        return order.latest_payment

    def simulate_payment(self, db: Session, order_id: str, identity: Identity) -> Payment:
        """
        Mark the latest pending payment of an order as paid (sandbox only).

        Raises:
            ForbiddenError: When the processor is in production mode
            NotFoundError: If the order isn't visible or has no pending payment
        """
        if self.settings.midtrans_is_production:
            raise ForbiddenError("Simulation not available in production")

        order = self.order_service.get_order(db, order_id, identity)
        payment = next(
            (p for p in order.payments if p.status == PaymentStatus.PENDING.value),
            None,
        )
        if payment is None:
            raise NotFoundError("Payment")

        try:
            payment.status = PaymentStatus.SUCCESS.value
            payment.method = "simulation"
            payment.paid_at = datetime.now(timezone.utc)
            self._mark_order_paid(db, order.id)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to simulate payment", extra={"order_id": order_id, "error": str(e)})
            raise IntegrityStoreError("Failed to simulate payment")

        logger.info("Payment simulated", extra={
            "order_id": order.id,
            "payment_id": payment.id
        })
        return payment
