"""Admin reporting."""
from typing import Any, Dict

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from storefront.models import REVENUE_STATUSES, Order, OrderStatus, Product, User

RECENT_ORDERS = 5


class AdminService:
    """Store-wide counters for the admin dashboard."""

    def dashboard(self, db: Session) -> Dict[str, Any]:
        """
        Collect dashboard figures.

        Revenue sums order totals that reached payment (paid, processing,
        shipped or delivered).
        """
        total_users = db.execute(select(func.count()).select_from(User)).scalar_one()
        total_products = db.execute(
            select(func.count()).select_from(Product).where(Product.is_active.is_(True))
        ).scalar_one()
        total_orders = db.execute(select(func.count()).select_from(Order)).scalar_one()
        total_revenue = db.execute(
            select(func.coalesce(func.sum(Order.total), 0)).where(Order.status.in_(REVENUE_STATUSES))
        ).scalar_one()
        pending_orders = db.execute(
            select(func.count()).select_from(Order).where(Order.status == OrderStatus.PENDING.value)
        ).scalar_one()
        recent_orders = db.execute(
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.payments))
            .order_by(Order.created_at.desc(), Order.id)
            .limit(RECENT_ORDERS)
        ).scalars().all()

        return {
            "total_users": total_users,
            "total_products": total_products,
            "total_orders": total_orders,
            "total_revenue": float(total_revenue),
            "pending_orders": pending_orders,
            "recent_orders": recent_orders,
        }
