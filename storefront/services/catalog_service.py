"""Product catalog service."""
import logging
import math
from typing import Any, Dict, List, Optional

from opentelemetry import trace
from slugify import slugify
from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session, selectinload

from storefront.errors import NotFoundError, ValidationError
from storefront.models import (
    CartItem,
    Category,
    Product,
    ProductImage,
    ProductVariant,
    Review,
    WishlistItem,
)
from storefront.monitoring import product_detail_views_counter, product_views_counter

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "created_at": Product.created_at,
    "base_price": Product.base_price,
    "price": Product.base_price,
    "name": Product.name,
    "stock": Product.stock,
}

DEFAULT_PAGE_SIZE = 12
MAX_PAGE_SIZE = 100


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


def unique_slug(db: Session, model, name: str, exclude_id: Optional[str] = None) -> str:
    """Slugify ``name`` and append a numeric suffix until it is unused."""
    base = slugify(name) or "item"
    candidate = base
    suffix = 2
    while True:
        query = select(model.id).where(model.slug == candidate)
        if exclude_id is not None:
            query = query.where(model.id != exclude_id)
        if db.execute(query).first() is None:
            return candidate
        candidate = f"{base}-{suffix}"
        suffix += 1


class CatalogService:
    """Service for browsing and administering the product catalog."""

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    # --- Products ---

    def list_products(
        self,
        db: Session,
        search: Optional[str] = None,
        category: Optional[str] = None,
        active_only: bool = True,
        featured: bool = False,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        sort: str = "created_at",
        order: str = "desc",
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        """
        List products with filtering and pagination.

        Args:
            db: Database session
            search: Case-insensitive match on name or description
            category: Category id or slug
            active_only: Hide inactive products
            featured: Only featured products
            min_price: Lower bound on base price
            max_price: Upper bound on base price
            sort: Column to sort by (see ``SORTABLE_COLUMNS``)
            order: ``asc`` or ``desc``
            page: 1-based page number
            limit: Page size

        Returns:
            Page of products plus pagination counters

        Raises:
            ValidationError: If the sort column or order is unknown
        """
        if sort not in SORTABLE_COLUMNS:
            raise ValidationError(f"Cannot sort by {sort}", field="sort")
        if order not in ("asc", "desc"):
            raise ValidationError("Order must be asc or desc", field="order")
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        filters = []
        if search:
            pattern = f"%{search}%"
            filters.append(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
        if category:
            category_ids = select(Category.id).where(
                or_(Category.id == category, Category.slug == category)
            )
            filters.append(Product.category_id.in_(category_ids))
        if active_only:
            filters.append(Product.is_active.is_(True))
        if featured:
            filters.append(Product.is_featured.is_(True))
        if min_price is not None:
            filters.append(Product.base_price >= min_price)
        if max_price is not None:
            filters.append(Product.base_price <= max_price)

        with self.tracer.start_as_current_span("db.query.list_products") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")

            total = db.execute(
                select(func.count()).select_from(Product).where(*filters)
            ).scalar_one()

            column = SORTABLE_COLUMNS[sort]
            products = db.execute(
                select(Product)
                .where(*filters)
                .options(selectinload(Product.category), selectinload(Product.images))
                .order_by(column.asc() if order == "asc" else column.desc(), Product.id)
                .offset((page - 1) * limit)
                .limit(limit)
            ).scalars().all()

            db_span.set_attribute("db.rows_returned", len(products))

        product_views_counter.add(1, {"search": "yes" if search else "no"})

        return {
            "products": products,
            "total": total,
            "page": page,
            "limit": limit,
            "pages": page_count(total, limit),
        }

    def get_product(self, db: Session, identifier: str) -> Dict[str, Any]:
        """
        Fetch a product by id or slug, with variants, reviews and rating.

        Raises:
            NotFoundError: If no product matches
        """
        product = db.execute(
            select(Product)
            .where(or_(Product.id == identifier, Product.slug == identifier))
            .options(
                selectinload(Product.category),
                selectinload(Product.images),
                selectinload(Product.variants),
                selectinload(Product.reviews).selectinload(Review.user),
            )
        ).scalars().first()
        if product is None:
            raise NotFoundError("Product")

        avg_rating = db.execute(
            select(func.coalesce(func.avg(Review.rating), 0)).where(Review.product_id == product.id)
        ).scalar_one()

        product_detail_views_counter.add(1, {
            "category": product.category.slug if product.category else "none"
        })

        return {"product": product, "avg_rating": round(float(avg_rating), 2)}

    def create_product(self, db: Session, data: Dict[str, Any]) -> Product:
        """Create a product with optional images and variants."""
        category_id = data.get("category_id")
        if category_id:
            self._require_category(db, category_id)

        product = Product(
            name=data["name"],
            slug=unique_slug(db, Product, data["name"]),
            description=data.get("description") or "",
            base_price=data["base_price"],
            category_id=category_id or None,
            stock=data.get("stock", 0),
            is_active=data.get("is_active", True),
            is_featured=data.get("is_featured", False),
        )
        db.add(product)
        db.flush()

        self._replace_images(db, product, data.get("images") or [])
        self._replace_variants(db, product, data.get("variants") or [])
        db.commit()

        logger.info("Created product", extra={
            "product_id": product.id,
            "product_name": product.name,
            "stock": product.stock
        })
        return self._load_product(db, product.id)

    def update_product(self, db: Session, product_id: str, data: Dict[str, Any]) -> Product:
        """
        Apply a partial update to a product.

        ``images`` and ``variants``, when present, replace the existing lists.
        """
        product = db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product")

        if data.get("name"):
            product.name = data["name"]
            product.slug = unique_slug(db, Product, data["name"], exclude_id=product.id)
        if data.get("description") is not None:
            product.description = data["description"]
        if data.get("base_price") is not None:
            product.base_price = data["base_price"]
        if data.get("category_id"):
            self._require_category(db, data["category_id"])
            product.category_id = data["category_id"]
        if data.get("stock") is not None:
            product.stock = data["stock"]
        if data.get("is_active") is not None:
            product.is_active = data["is_active"]
        if data.get("is_featured") is not None:
            product.is_featured = data["is_featured"]
        if data.get("images") is not None:
            self._replace_images(db, product, data["images"])
        if data.get("variants") is not None:
            self._replace_variants(db, product, data["variants"])

        db.commit()
        logger.info("Updated product", extra={"product_id": product.id})
        return self._load_product(db, product.id)

    def delete_product(self, db: Session, product_id: str) -> None:
        """
        Delete a product and everything that hangs off it.

        Order items keep their snapshot; their product reference is cleared
        by the foreign key.
        """
        product = db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product")

        db.execute(delete(CartItem).where(CartItem.product_id == product_id))
        db.execute(delete(WishlistItem).where(WishlistItem.product_id == product_id))
        db.delete(product)
        db.commit()
        logger.info("Deleted product", extra={"product_id": product_id})

    def _load_product(self, db: Session, product_id: str) -> Product:
        return db.execute(
            select(Product)
            .where(Product.id == product_id)
            .options(
                selectinload(Product.category),
                selectinload(Product.images),
                selectinload(Product.variants),
            )
            .execution_options(populate_existing=True)
        ).scalar_one()

    def _require_category(self, db: Session, category_id: str) -> Category:
        category = db.get(Category, category_id)
        if category is None:
            raise NotFoundError("Category")
        return category

    def _replace_images(self, db: Session, product: Product, urls: List[str]) -> None:
        product.images.clear()
        db.flush()
        for position, url in enumerate(urls):
            product.images.append(ProductImage(url=url, position=position, is_primary=position == 0))

    def _replace_variants(self, db: Session, product: Product, variants: List[Dict[str, Any]]) -> None:
        if not variants and not product.variants:
            return
        old_ids = [variant.id for variant in product.variants]
        if old_ids:
            # Carts can't point at variants that no longer exist
            db.execute(delete(CartItem).where(CartItem.variant_id.in_(old_ids)))
        product.variants.clear()
        db.flush()
        for variant in variants:
            product.variants.append(ProductVariant(
                name=variant["name"],
                value=variant["value"],
                price_modifier=variant.get("price_modifier", 0.0),
                stock=variant.get("stock", 0),
                sku=variant.get("sku") or "",
            ))

    # --- Categories ---

    def list_categories(self, db: Session) -> List[Category]:
        return db.execute(select(Category).order_by(Category.name)).scalars().all()

    def create_category(self, db: Session, name: str, icon: Optional[str] = "") -> Category:
        category = Category(name=name, slug=unique_slug(db, Category, name), icon=icon or "")
        db.add(category)
        db.commit()
        logger.info("Created category", extra={"category_id": category.id, "slug": category.slug})
        return category

    def update_category(
        self,
        db: Session,
        category_id: str,
        name: Optional[str] = None,
        icon: Optional[str] = None
    ) -> Category:
        category = self._require_category(db, category_id)
        if name:
            category.name = name
            category.slug = unique_slug(db, Category, name, exclude_id=category.id)
        if icon is not None:
            category.icon = icon
        db.commit()
        return category

    def delete_category(self, db: Session, category_id: str) -> None:
        """Delete a category; its products become uncategorized."""
        category = self._require_category(db, category_id)
        db.query(Product).filter(Product.category_id == category_id).update(
            {Product.category_id: None}, synchronize_session=False
        )
        db.delete(category)
        db.commit()
        logger.info("Deleted category", extra={"category_id": category_id})
