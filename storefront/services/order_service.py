"""Order management service."""
import logging
import random
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from opentelemetry import trace
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from storefront.auth import Identity
from storefront.config import Settings
from storefront.errors import (
    BusinessRuleError,
    InsufficientStockError,
    IntegrityStoreError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from storefront.models import (
    Address,
    GuestContact,
    GuestPurchaser,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    ProductVariant,
    Purchaser,
    RegisteredPurchaser,
    User,
)
from storefront.monitoring import (
    funnel_stage_counter,
    insufficient_stock_counter,
    order_amount_histogram,
    orders_cancelled_counter,
    orders_created_counter,
)
from storefront.services.cart_service import CartService, unit_price
from storefront.services.catalog_service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, page_count

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5


@dataclass(frozen=True)
class OrderLineRequest:
    """One requested line of a guest order."""
    product_id: str
    quantity: int
    variant_id: Optional[str] = None


@dataclass
class PricedLine:
    """A requested line resolved against the current catalog."""
    product: Product
    variant: Optional[ProductVariant]
    quantity: int
    unit_price: float

    @property
    def subtotal(self) -> float:
        return self.unit_price * self.quantity


def generate_order_number(name: str, rng: Union[random.Random, Any] = random) -> str:
    """
    Build an order number from the purchaser's name.

    The prefix is the uppercase first letter of each of the first three
    words (letters only), or ``ORD`` when the name has none, followed by a
    six digit random number. ``"Budi Santoso"`` gives e.g. ``BS-482913``.
    """
    initials = ""
    for word in (name or "").split()[:3]:
        letters = re.sub(r"[^A-Za-z]", "", word)
        if letters:
            initials += letters[0].upper()
    return f"{initials or 'ORD'}-{rng.randint(100000, 999999)}"


class OrderService:
    """Service for placing, cancelling and tracking orders."""

    def __init__(self, settings: Settings, cart_service: CartService, rng: Optional[random.Random] = None):
        """
        Initialize order service.

        Args:
            settings: Service settings (shipping rules)
            cart_service: Cart service instance
            rng: Random source for order numbers
        """
        self.settings = settings
        self.cart_service = cart_service
        self.rng = rng or random.Random()
        self.tracer = trace.get_tracer(__name__)

    def compute_totals(self, subtotal: float) -> Tuple[float, float]:
        """
        Work out shipping fee and total for a subtotal.

        Shipping is free strictly above the threshold.

        Returns:
            ``(shipping_fee, total)``
        """
        if subtotal > self.settings.free_shipping_threshold:
            shipping_fee = 0.0
        else:
            shipping_fee = self.settings.flat_shipping_fee
        return shipping_fee, subtotal + shipping_fee

    # --- Placing orders ---

    def create_order(
        self,
        db: Session,
        identity: Identity,
        address_id: str,
        notes: Optional[str] = ""
    ) -> Order:
        """
        Turn the caller's cart into an order.

        Args:
            db: Database session
            identity: Verified caller
            address_id: Shipping address, must belong to the caller
            notes: Free-form notes for the order

        Returns:
            The committed order with items loaded

        Raises:
            NotFoundError: If the address isn't the caller's
            BusinessRuleError: If the cart is empty or a product is unavailable
            InsufficientStockError: If any line exceeds available stock
            IntegrityStoreError: If the write fails and is rolled back
        """
        span = trace.get_current_span()
        span.set_attribute("user.id", identity.user_id)

        user = db.get(User, identity.user_id)
        if user is None:
            raise NotFoundError("User")

        address = db.execute(
            select(Address).where(Address.id == address_id, Address.user_id == identity.user_id)
        ).scalars().first()
        if address is None:
            raise NotFoundError("Address")

        cart_items = self.cart_service.get_cart_items(db, identity.user_id)
        if not cart_items:
            raise BusinessRuleError("Cart is empty")

        lines = []
        for item in cart_items:
            self._require_available(item.product)
            lines.append(PricedLine(
                product=item.product,
                variant=item.variant,
                quantity=item.quantity,
                unit_price=unit_price(item.product, item.variant),
            ))

        return self._place_order(
            db,
            purchaser=RegisteredPurchaser(user_id=user.id),
            display_name=user.name,
            lines=lines,
            address_id=address.id,
            notes=notes,
        )

    def create_guest_order(
        self,
        db: Session,
        contact: GuestContact,
        items: Iterable[OrderLineRequest],
        notes: Optional[str] = ""
    ) -> Order:
        """
        Place an order without an account.

        Args:
            db: Database session
            contact: Guest email, name, phone and shipping address
            items: Requested lines
            notes: Free-form notes for the order

        Returns:
            The committed order with items loaded

        Raises:
            NotFoundError: If a product or variant doesn't exist
            BusinessRuleError: If there are no items or a product is unavailable
            InsufficientStockError: If any line exceeds available stock
            IntegrityStoreError: If the write fails and is rolled back
        """
        lines = []
        for request in items:
            if request.quantity < 1:
                raise ValidationError("Quantity must be at least 1", field="quantity")
            product = db.get(Product, request.product_id)
            if product is None:
                raise NotFoundError("Product")
            self._require_available(product)

            variant = None
            if request.variant_id:
                variant = db.get(ProductVariant, request.variant_id)
                if variant is None or variant.product_id != product.id:
                    raise NotFoundError("Variant")

            lines.append(PricedLine(
                product=product,
                variant=variant,
                quantity=request.quantity,
                unit_price=unit_price(product, variant),
            ))

        if not lines:
            raise BusinessRuleError("Order has no items")

        return self._place_order(
            db,
            purchaser=GuestPurchaser(contact=contact),
            display_name=contact.name,
            lines=lines,
            address_id=None,
            notes=notes,
        )

    def _require_available(self, product: Product) -> None:
        if not product.is_active:
            raise BusinessRuleError(f"{product.name} is no longer available")

    def _check_availability(self, lines: List[PricedLine]) -> None:
        """Reject lines that exceed stock as currently read."""
        for line in lines:
            if line.quantity > line.product.stock or (
                line.variant is not None and line.quantity > line.variant.stock
            ):
                insufficient_stock_counter.add(1, {"product_id": line.product.id})
                logger.warning("Insufficient stock", extra={
                    "product_id": line.product.id,
                    "variant_id": line.variant.id if line.variant else None,
                    "requested": line.quantity,
                    "product_stock": line.product.stock
                })
                raise InsufficientStockError(line.product.name)

    def _place_order(
        self,
        db: Session,
        purchaser: Purchaser,
        display_name: str,
        lines: List[PricedLine],
        address_id: Optional[str],
        notes: Optional[str]
    ) -> Order:
        self._check_availability(lines)

        subtotal = sum(line.subtotal for line in lines)
        shipping_fee, total = self.compute_totals(subtotal)
        order_number = self._allocate_order_number(db, display_name)
        purchaser_kind = "guest" if isinstance(purchaser, GuestPurchaser) else "registered"

        order = Order(
            order_number=order_number,
            address_id=address_id,
            status=OrderStatus.PENDING.value,
            subtotal=subtotal,
            shipping_fee=shipping_fee,
            total=total,
            notes=notes or "",
        )
        if isinstance(purchaser, RegisteredPurchaser):
            order.user_id = purchaser.user_id
        else:
            order.guest_email = purchaser.contact.email
            order.guest_name = purchaser.contact.name
            order.guest_phone = purchaser.contact.phone
            order.guest_address = purchaser.contact.address

        try:
            with self.tracer.start_as_current_span("db.transaction.create_order") as db_span:
                db_span.set_attribute("db.operation", "INSERT")
                db_span.set_attribute("db.table", "orders")
                db_span.set_attribute("order.number", order_number)
                db_span.set_attribute("order.total_amount", total)
                db_span.set_attribute("order.purchaser", purchaser_kind)

                db.add(order)
                db.flush()

                for line in lines:
                    db.add(OrderItem(
                        order_id=order.id,
                        product_id=line.product.id,
                        variant_id=line.variant.id if line.variant else None,
                        product_name=line.product.name,
                        variant_info=line.variant.description if line.variant else "",
                        price=line.unit_price,
                        quantity=line.quantity,
                        subtotal=line.subtotal,
                    ))
                db.flush()

                self._reserve_stock(db, lines)

                if isinstance(purchaser, RegisteredPurchaser):
                    self.cart_service.clear_cart(db, purchaser.user_id)

                db.commit()
                db_span.set_attribute("order.id", order.id)
        except StoreError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to create order", extra={
                "order_number": order_number,
                "purchaser": purchaser_kind,
                "amount": total,
                "error": str(e)
            })
            raise IntegrityStoreError("Failed to create order")

        orders_created_counter.add(1, {"purchaser": purchaser_kind})
        order_amount_histogram.record(total, {"purchaser": purchaser_kind})
        funnel_stage_counter.add(1, {"stage": "order_created"})

        logger.info("Order created", extra={
            "order_id": order.id,
            "order_number": order_number,
            "purchaser": purchaser_kind,
            "subtotal": subtotal,
            "shipping_fee": shipping_fee,
            "total": total,
            "item_count": len(lines)
        })
        return self._load_order(db, order.id)

    def _allocate_order_number(self, db: Session, display_name: str) -> str:
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidate = generate_order_number(display_name, self.rng)
            taken = db.execute(
                select(Order.id).where(Order.order_number == candidate)
            ).first()
            if taken is None:
                return candidate
            logger.warning("Order number collision", extra={"order_number": candidate})
        raise IntegrityStoreError("Could not allocate an order number")

    def _reserve_stock(self, db: Session, lines: List[PricedLine]) -> None:
        """
        Decrement product and variant stock for every line.

        Each decrement only applies while enough stock is left, so a
        concurrent order that already took the stock makes this one fail.

        Raises:
            InsufficientStockError: If a decrement matched no row
        """
        for line in lines:
            with self.tracer.start_as_current_span("db.query.reserve_stock") as update_span:
                update_span.set_attribute("db.operation", "UPDATE")
                update_span.set_attribute("db.table", "products")
                update_span.set_attribute("product.id", line.product.id)
                update_span.set_attribute("quantity", line.quantity)

                result = db.execute(
                    update(Product)
                    .where(Product.id == line.product.id, Product.stock >= line.quantity)
                    .values(stock=Product.stock - line.quantity)
                    .execution_options(synchronize_session=False)
                )
                rows = result.rowcount

                if rows == 1 and line.variant is not None:
                    result = db.execute(
                        update(ProductVariant)
                        .where(
                            ProductVariant.id == line.variant.id,
                            ProductVariant.stock >= line.quantity,
                        )
                        .values(stock=ProductVariant.stock - line.quantity)
                        .execution_options(synchronize_session=False)
                    )
                    rows = result.rowcount

                update_span.set_attribute("db.rows_affected", rows)
                if rows != 1:
                    insufficient_stock_counter.add(1, {"product_id": line.product.id})
                    logger.warning("Stock reservation rejected", extra={
                        "product_id": line.product.id,
                        "variant_id": line.variant.id if line.variant else None,
                        "requested": line.quantity
                    })
                    raise InsufficientStockError(line.product.name)

    # --- Cancelling and status changes ---

    def restore_stock(self, db: Session, order: Order) -> None:
        """Give every item's quantity back to its product and variant, without committing."""
        for item in order.items:
            if item.product_id:
                db.execute(
                    update(Product)
                    .where(Product.id == item.product_id)
                    .values(stock=Product.stock + item.quantity)
                    .execution_options(synchronize_session=False)
                )
            if item.variant_id:
                db.execute(
                    update(ProductVariant)
                    .where(ProductVariant.id == item.variant_id)
                    .values(stock=ProductVariant.stock + item.quantity)
                    .execution_options(synchronize_session=False)
                )

    def release_pending_order(self, db: Session, order: Order, source: str) -> bool:
        """
        Cancel a still-pending order and restore its stock, without committing.

        Only the caller that flips the status performs the restore, so two
        concurrent releases can't both give stock back.

        Returns:
            True if this call cancelled the order
        """
        result = db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.PENDING.value)
            .values(status=OrderStatus.CANCELLED.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.restore_stock(db, order)
        orders_cancelled_counter.add(1, {"source": source})
        return True

    def cancel_order(self, db: Session, order_id: str, identity: Identity) -> Order:
        """
        Cancel a pending order on behalf of its owner or an admin.

        Args:
            db: Database session
            order_id: Order identifier
            identity: Verified caller

        Returns:
            The cancelled order

        Raises:
            NotFoundError: If the order doesn't exist or isn't the caller's
            BusinessRuleError: If the order is no longer pending
        """
        order = self._get_visible_order(db, order_id, identity)
        if order.status != OrderStatus.PENDING.value:
            raise BusinessRuleError("Only pending orders can be cancelled")

        source = "admin" if identity.is_admin and order.user_id != identity.user_id else "customer"
        try:
            with self.tracer.start_as_current_span("db.transaction.cancel_order") as db_span:
                db_span.set_attribute("order.id", order.id)
                if not self.release_pending_order(db, order, source):
                    raise BusinessRuleError("Only pending orders can be cancelled")
                db.commit()
        except StoreError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to cancel order", extra={"order_id": order_id, "error": str(e)})
            raise IntegrityStoreError("Failed to cancel order")

        logger.info("Order cancelled", extra={
            "order_id": order.id,
            "order_number": order.order_number,
            "cancelled_by": identity.user_id
        })
        return self._load_order(db, order.id)

    def update_status(
        self,
        db: Session,
        order_id: str,
        status: Union[OrderStatus, str],
        tracking_number: Optional[str] = None
    ) -> Order:
        """
        Move an order to a new status (admin).

        Args:
            db: Database session
            order_id: Order identifier
            status: Target status
            tracking_number: Courier tracking number, stored whenever given

        Returns:
            The updated order

        Raises:
            ValidationError: If the status is unknown
            NotFoundError: If the order doesn't exist
            BusinessRuleError: If the order is cancelled
        """
        try:
            new_status = OrderStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown order status: {status}", field="status")

        order = self._load_order(db, order_id)
        if order.status == OrderStatus.CANCELLED.value and new_status != OrderStatus.CANCELLED:
            raise BusinessRuleError("Cancelled orders cannot change status")

        previous = order.status
        now = datetime.now(timezone.utc)
        values = {"status": new_status.value, "updated_at": now}
        if tracking_number:
            values["tracking_number"] = tracking_number
        if new_status == OrderStatus.SHIPPED:
            values["shipped_at"] = func.coalesce(Order.shipped_at, now)
        if new_status == OrderStatus.DELIVERED:
            values["delivered_at"] = func.coalesce(Order.delivered_at, now)

        try:
            with self.tracer.start_as_current_span("db.transaction.update_order_status") as db_span:
                db_span.set_attribute("order.id", order.id)
                db_span.set_attribute("order.status.before", previous)
                db_span.set_attribute("order.status.after", new_status.value)

                # A cancel committed since the read above must win
                result = db.execute(
                    update(Order)
                    .where(Order.id == order.id, Order.status != OrderStatus.CANCELLED.value)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                db_span.set_attribute("db.rows_affected", result.rowcount)

                if result.rowcount != 1:
                    if new_status != OrderStatus.CANCELLED:
                        raise BusinessRuleError("Cancelled orders cannot change status")
                elif new_status == OrderStatus.CANCELLED:
                    self.restore_stock(db, order)
                    orders_cancelled_counter.add(1, {"source": "admin"})

                db.commit()
        except StoreError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to update order status", extra={
                "order_id": order_id,
                "status": new_status.value,
                "error": str(e)
            })
            raise IntegrityStoreError("Failed to update order status")

        logger.info("Order status updated", extra={
            "order_id": order.id,
            "from_status": previous,
            "to_status": new_status.value,
            "tracking_number": tracking_number
        })
        return self._load_order(db, order.id)

    # --- Reads ---

    def list_orders(
        self,
        db: Session,
        identity: Identity,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> Dict[str, Any]:
        """
        Get the caller's orders, newest first.

        Args:
            db: Database session
            identity: Verified caller
            page: 1-based page number
            limit: Page size

        Returns:
            Page of orders plus pagination counters
        """
        with self.tracer.start_as_current_span("db.query.get_user_orders") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "orders")
            db_span.set_attribute("user.id", identity.user_id)

            result = self._paginate(db, [Order.user_id == identity.user_id], page, limit)
            db_span.set_attribute("db.rows_returned", len(result["orders"]))
            return result

    def list_all_orders(
        self,
        db: Session,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE
    ) -> Dict[str, Any]:
        """Admin listing of every order, optionally filtered by status."""
        filters = []
        if status:
            try:
                filters.append(Order.status == OrderStatus(status).value)
            except ValueError:
                raise ValidationError(f"Unknown order status: {status}", field="status")
        return self._paginate(db, filters, page, limit)

    def _paginate(self, db: Session, filters: list, page: int, limit: int) -> Dict[str, Any]:
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        total = db.execute(
            select(func.count()).select_from(Order).where(*filters)
        ).scalar_one()
        orders = db.execute(
            select(Order)
            .where(*filters)
            .options(selectinload(Order.items), selectinload(Order.payments))
            .order_by(Order.created_at.desc(), Order.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()
        return {
            "orders": orders,
            "total": total,
            "page": page,
            "limit": limit,
            "pages": page_count(total, limit),
        }

    def get_order(self, db: Session, order_id: str, identity: Identity) -> Order:
        """
        Get one order visible to the caller.

        Raises:
            NotFoundError: If the order doesn't exist or belongs to someone else
        """
        return self._get_visible_order(db, order_id, identity)

    def get_order_admin(self, db: Session, order_id: str) -> Order:
        return self._load_order(db, order_id)

    def track_order(self, db: Session, order_number: str, email: str) -> Order:
        """
        Look up an order by number for whoever placed it.

        The email must match the guest email, or the account email of a
        registered order. A mismatch is reported the same as a missing order.
        """
        order = db.execute(
            select(Order)
            .where(Order.order_number == order_number.strip().upper())
            .options(
                selectinload(Order.items),
                selectinload(Order.payments),
                selectinload(Order.user),
            )
        ).scalars().first()
        if order is None or not self.email_matches(order, email):
            raise NotFoundError("Order")
        return order

    @staticmethod
    def email_matches(order: Order, email: str) -> bool:
        wanted = (email or "").strip().lower()
        purchaser = order.purchaser
        if isinstance(purchaser, GuestPurchaser):
            actual = purchaser.contact.email or ""
        else:
            actual = order.user.email if order.user else ""
        return bool(wanted) and actual.lower() == wanted

    def _get_visible_order(self, db: Session, order_id: str, identity: Identity) -> Order:
        order = db.execute(
            select(Order).where(Order.id == order_id).options(
                selectinload(Order.items),
                selectinload(Order.payments),
                selectinload(Order.address),
                selectinload(Order.user),
            )
        ).scalars().first()
        if order is None or (order.user_id != identity.user_id and not identity.is_admin):
            raise NotFoundError("Order")
        return order

    def _load_order(self, db: Session, order_id: str) -> Order:
        order = db.execute(
            select(Order)
            .where(Order.id == order_id)
            .options(
                selectinload(Order.items),
                selectinload(Order.payments),
                selectinload(Order.address),
                selectinload(Order.user),
            )
            .execution_options(populate_existing=True)
        ).scalars().first()
        if order is None:
            raise NotFoundError("Order")
        return order
