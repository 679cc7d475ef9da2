"""Orders API router."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.auth import Identity, verify_token
from storefront.database import get_db
from storefront.dependencies import get_order_service
from storefront.models import GuestContact
from storefront.schemas import (
    CreateOrderRequest,
    GuestOrderRequest,
    OrderDetailResponse,
    OrderResponse,
    OrdersListResponse,
    TrackOrderRequest,
)
from storefront.services.catalog_service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from storefront.services.order_service import OrderLineRequest

router = APIRouter(prefix="/orders", tags=["orders"])


def orders_page(result: dict) -> OrdersListResponse:
    return OrdersListResponse(
        orders=[OrderResponse.model_validate(o) for o in result["orders"]],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
        pages=result["pages"],
    )


@router.post("", response_model=OrderResponse, status_code=201)
async def create_order(
    request: CreateOrderRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    order_service=Depends(get_order_service)
):
    """Place an order from the cart - requires authentication."""
    order = order_service.create_order(db, identity, request.address_id, request.notes)
    return OrderResponse.model_validate(order)


@router.post("/guest", response_model=OrderResponse, status_code=201)
async def create_guest_order(
    request: GuestOrderRequest,
    db: Session = Depends(get_db),
    order_service=Depends(get_order_service)
):
    """Place an order without an account."""
    contact = GuestContact(
        email=str(request.guest_email).lower(),
        name=request.guest_name,
        phone=request.guest_phone,
        address=request.guest_address,
    )
    items = [
        OrderLineRequest(product_id=item.product_id, quantity=item.quantity, variant_id=item.variant_id)
        for item in request.items
    ]
    order = order_service.create_guest_order(db, contact, items, request.notes)
    return OrderResponse.model_validate(order)


@router.post("/track", response_model=OrderResponse)
async def track_order(
    request: TrackOrderRequest,
    db: Session = Depends(get_db),
    order_service=Depends(get_order_service)
):
    """Look up an order by number and purchaser email."""
    return OrderResponse.model_validate(order_service.track_order(db, request.order_number, request.email))


@router.get("", response_model=OrdersListResponse)
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    order_service=Depends(get_order_service)
):
    """Get user's orders - requires authentication."""
    return orders_page(order_service.list_orders(db, identity, page, limit))


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    order_service=Depends(get_order_service)
):
    return OrderDetailResponse.model_validate(order_service.get_order(db, order_id, identity))


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    order_service=Depends(get_order_service)
):
    """Cancel a pending order and put its stock back."""
    return OrderResponse.model_validate(order_service.cancel_order(db, order_id, identity))
