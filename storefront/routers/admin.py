"""Admin API router. Every route requires the admin role."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.auth import require_admin
from storefront.database import get_db
from storefront.dependencies import (
    get_account_service,
    get_admin_service,
    get_catalog_service,
    get_order_service,
)
from storefront.routers.orders import orders_page
from storefront.schemas import (
    CategoryCreate,
    CategoryResponse,
    CategoryUpdate,
    DashboardResponse,
    MessageResponse,
    OrderDetailResponse,
    OrderResponse,
    OrdersListResponse,
    ProductCreate,
    ProductDetailResponse,
    ProductUpdate,
    RoleUpdateRequest,
    UpdateOrderStatusRequest,
    UserResponse,
    UsersListResponse,
)
from storefront.services.catalog_service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(
    db: Session = Depends(get_db),
    admin_service=Depends(get_admin_service)
):
    stats = admin_service.dashboard(db)
    stats["recent_orders"] = [OrderResponse.model_validate(o) for o in stats["recent_orders"]]
    return DashboardResponse(**stats)


# --- Products ---


@router.post("/products", response_model=ProductDetailResponse, status_code=201)
async def create_product(
    request: ProductCreate,
    db: Session = Depends(get_db),
    catalog_service=Depends(get_catalog_service)
):
    product = catalog_service.create_product(db, request.model_dump())
    return ProductDetailResponse.model_validate(product)


@router.put("/products/{product_id}", response_model=ProductDetailResponse)
async def update_product(
    product_id: str,
    request: ProductUpdate,
    db: Session = Depends(get_db),
    catalog_service=Depends(get_catalog_service)
):
    product = catalog_service.update_product(db, product_id, request.model_dump(exclude_unset=True))
    return ProductDetailResponse.model_validate(product)


@router.delete("/products/{product_id}", response_model=MessageResponse)
async def delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    catalog_service=Depends(get_catalog_service)
):
    catalog_service.delete_product(db, product_id)
    return MessageResponse(message="Product deleted")


# --- Categories ---


@router.post("/categories", response_model=CategoryResponse, status_code=201)
async def create_category(
    request: CategoryCreate,
    db: Session = Depends(get_db),
    catalog_service=Depends(get_catalog_service)
):
    return CategoryResponse.model_validate(catalog_service.create_category(db, request.name, request.icon))


@router.put("/categories/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: str,
    request: CategoryUpdate,
    db: Session = Depends(get_db),
    catalog_service=Depends(get_catalog_service)
):
    category = catalog_service.update_category(db, category_id, name=request.name, icon=request.icon)
    return CategoryResponse.model_validate(category)


@router.delete("/categories/{category_id}", response_model=MessageResponse)
async def delete_category(
    category_id: str,
    db: Session = Depends(get_db),
    catalog_service=Depends(get_catalog_service)
):
    catalog_service.delete_category(db, category_id)
    return MessageResponse(message="Category deleted")


# --- Orders ---


@router.get("/orders", response_model=OrdersListResponse)
async def list_orders(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    order_service=Depends(get_order_service)
):
    return orders_page(order_service.list_all_orders(db, status=status, page=page, limit=limit))


@router.get("/orders/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    order_service=Depends(get_order_service)
):
    return OrderDetailResponse.model_validate(order_service.get_order_admin(db, order_id))


@router.put("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str,
    request: UpdateOrderStatusRequest,
    db: Session = Depends(get_db),
    order_service=Depends(get_order_service)
):
    """Move an order along its lifecycle; cancelling puts stock back."""
    order = order_service.update_status(db, order_id, request.status, request.tracking_number)
    return OrderResponse.model_validate(order)


# --- Users ---


@router.get("/users", response_model=UsersListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    account_service=Depends(get_account_service)
):
    result = account_service.list_users(db, page=page, limit=limit)
    result["users"] = [UserResponse.model_validate(u) for u in result["users"]]
    return UsersListResponse(**result)


@router.put("/users/{user_id}/role", response_model=UserResponse)
async def update_user_role(
    user_id: str,
    request: RoleUpdateRequest,
    db: Session = Depends(get_db),
    account_service=Depends(get_account_service)
):
    return UserResponse.model_validate(account_service.update_role(db, user_id, request.role.value))
