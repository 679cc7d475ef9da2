"""Cart and wishlist management service."""
import logging
from typing import Any, Dict, List, Optional

from opentelemetry import trace
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from storefront.errors import ConflictError, NotFoundError
from storefront.models import CartItem, Product, ProductVariant, WishlistItem
from storefront.monitoring import cart_additions_counter, funnel_stage_counter

logger = logging.getLogger(__name__)


def unit_price(product: Product, variant: Optional[ProductVariant]) -> float:
    """Base price plus the variant's modifier."""
    if variant is None:
        return product.base_price
    return product.base_price + variant.price_modifier


class CartService:
    """Service for managing shopping carts and wishlists."""

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def add_to_cart(
        self,
        db: Session,
        user_id: str,
        product_id: str,
        quantity: int,
        variant_id: Optional[str] = None
    ) -> CartItem:
        """
        Add item to user's cart.

        Adding a (product, variant) pair that is already in the cart
        increments the existing row instead of creating a second one.

        Args:
            db: Database session
            user_id: User identifier
            product_id: Product identifier
            quantity: Quantity to add
            variant_id: Optional variant of the product

        Returns:
            The new or updated cart item

        Raises:
            NotFoundError: If the product is missing or inactive, or the
                variant doesn't belong to it
        """
        span = trace.get_current_span()
        span.set_attribute("product.id", product_id)
        span.set_attribute("quantity", quantity)

        with self.tracer.start_as_current_span("db.query.get_product") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")
            db_span.set_attribute("product.id", product_id)

            product = db.execute(
                select(Product).where(Product.id == product_id, Product.is_active.is_(True))
            ).scalars().first()
            db_span.set_attribute("db.rows_returned", 1 if product else 0)
            if product is None:
                raise NotFoundError("Product")

        if variant_id is not None:
            variant = db.get(ProductVariant, variant_id)
            if variant is None or variant.product_id != product.id:
                raise NotFoundError("Variant")

        # Stock is checked at order time; the cart only records intent.
        with self.tracer.start_as_current_span("db.query.upsert_cart_item") as db_span:
            db_span.set_attribute("db.table", "cart_items")
            db_span.set_attribute("user.id", user_id)

            try:
                cart_item = self._merge_line(db, user_id, product.id, variant_id, quantity)
                db.commit()
            except IntegrityError:
                # A concurrent add inserted the same line first
                db.rollback()
                cart_item = self._merge_line(db, user_id, product.id, variant_id, quantity)
                db.commit()

            db_span.set_attribute("cart_item.id", cart_item.id)

        cart_additions_counter.add(1, {"product_id": product.id})
        funnel_stage_counter.add(1, {"stage": "add_to_cart"})

        logger.info("Added product to cart", extra={
            "user_id": user_id,
            "product_id": product.id,
            "variant_id": variant_id,
            "product_name": product.name,
            "quantity": quantity,
            "cart_quantity": cart_item.quantity
        })
        return cart_item

    def _merge_line(
        self,
        db: Session,
        user_id: str,
        product_id: str,
        variant_id: Optional[str],
        quantity: int
    ) -> CartItem:
        query = select(CartItem).where(
            CartItem.user_id == user_id,
            CartItem.product_id == product_id,
        )
        if variant_id is None:
            query = query.where(CartItem.variant_id.is_(None))
        else:
            query = query.where(CartItem.variant_id == variant_id)

        existing = db.execute(query).scalars().first()
        if existing is not None:
            existing.quantity += quantity
            db.flush()
            return existing

        cart_item = CartItem(
            user_id=user_id,
            product_id=product_id,
            variant_id=variant_id,
            quantity=quantity,
        )
        db.add(cart_item)
        db.flush()
        return cart_item

    def get_cart(self, db: Session, user_id: str) -> Dict[str, Any]:
        """
        Get user's cart contents.

        Args:
            db: Database session
            user_id: User identifier

        Returns:
            Cart lines priced at current catalog prices, with the subtotal
        """
        cart_items = self.get_cart_items(db, user_id)

        items = []
        subtotal = 0.0
        for item in cart_items:
            price = unit_price(item.product, item.variant)
            line_total = price * item.quantity
            subtotal += line_total
            primary_image = item.product.images[0].url if item.product.images else None
            items.append({
                "id": item.id,
                "product_id": item.product_id,
                "product_name": item.product.name,
                "product_slug": item.product.slug,
                "variant_id": item.variant_id,
                "variant_info": item.variant.description if item.variant else "",
                "unit_price": price,
                "quantity": item.quantity,
                "subtotal": line_total,
                "stock": item.variant.stock if item.variant else item.product.stock,
                "image_url": primary_image,
            })

        return {
            "items": items,
            "subtotal": subtotal,
            "count": len(items)
        }

    def get_cart_items(self, db: Session, user_id: str) -> List[CartItem]:
        """
        Get cart items for user, with product and variant loaded.

        Args:
            db: Database session
            user_id: User identifier

        Returns:
            List of cart items, oldest first
        """
        with self.tracer.start_as_current_span("db.query.get_cart_items") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "cart_items")
            db_span.set_attribute("user.id", user_id)

            cart_items = db.execute(
                select(CartItem)
                .where(CartItem.user_id == user_id)
                .options(
                    selectinload(CartItem.product).selectinload(Product.images),
                    selectinload(CartItem.variant),
                )
                .order_by(CartItem.created_at, CartItem.id)
            ).scalars().all()

            db_span.set_attribute("db.rows_returned", len(cart_items))

            return cart_items

    def update_quantity(self, db: Session, user_id: str, item_id: str, quantity: int) -> CartItem:
        """Set the quantity of one of the user's cart items."""
        cart_item = self._get_owned_item(db, user_id, item_id)
        cart_item.quantity = quantity
        db.commit()
        return cart_item

    def remove_item(self, db: Session, user_id: str, item_id: str) -> None:
        cart_item = self._get_owned_item(db, user_id, item_id)
        db.delete(cart_item)
        db.commit()

    def clear_cart(self, db: Session, user_id: str) -> int:
        """
        Delete every cart row of a user without committing.

        The order service calls this inside its own transaction.

        Returns:
            Number of rows deleted
        """
        with self.tracer.start_as_current_span("db.query.delete_cart_items") as db_span:
            db_span.set_attribute("db.operation", "DELETE")
            db_span.set_attribute("db.table", "cart_items")
            db_span.set_attribute("user.id", user_id)

            result = db.execute(
                delete(CartItem)
                .where(CartItem.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
            db_span.set_attribute("db.rows_affected", result.rowcount)
            return result.rowcount

    def _get_owned_item(self, db: Session, user_id: str, item_id: str) -> CartItem:
        cart_item = db.execute(
            select(CartItem).where(CartItem.id == item_id, CartItem.user_id == user_id)
        ).scalars().first()
        if cart_item is None:
            raise NotFoundError("Cart item")
        return cart_item

    # --- Wishlist ---

    def get_wishlist(self, db: Session, user_id: str) -> List[WishlistItem]:
        return db.execute(
            select(WishlistItem)
            .where(WishlistItem.user_id == user_id)
            .options(
                selectinload(WishlistItem.product).selectinload(Product.images),
                selectinload(WishlistItem.product).selectinload(Product.category),
            )
            .order_by(WishlistItem.created_at.desc())
        ).scalars().all()

    def add_to_wishlist(self, db: Session, user_id: str, product_id: str) -> WishlistItem:
        """
        Add a product to the wishlist.

        Raises:
            NotFoundError: If the product doesn't exist
            ConflictError: If it is already on the wishlist
        """
        if db.get(Product, product_id) is None:
            raise NotFoundError("Product")

        existing = db.execute(
            select(WishlistItem.id).where(
                WishlistItem.user_id == user_id,
                WishlistItem.product_id == product_id,
            )
        ).first()
        if existing is not None:
            raise ConflictError("Product already in wishlist")

        item = WishlistItem(user_id=user_id, product_id=product_id)
        db.add(item)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError("Product already in wishlist")

        logger.info("Added product to wishlist", extra={
            "user_id": user_id,
            "product_id": product_id
        })
        return item

    def remove_from_wishlist(self, db: Session, user_id: str, product_id: str) -> None:
        item = db.execute(
            select(WishlistItem).where(
                WishlistItem.user_id == user_id,
                WishlistItem.product_id == product_id,
            )
        ).scalars().first()
        if item is None:
            raise NotFoundError("Wishlist item")
        db.delete(item)
        db.commit()
