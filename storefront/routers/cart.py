"""Cart and wishlist API router."""
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.auth import Identity, verify_token
from storefront.database import get_db
from storefront.dependencies import get_cart_service
from storefront.schemas import (
    AddToCartRequest,
    AddToWishlistRequest,
    CartResponse,
    MessageResponse,
    UpdateCartItemRequest,
    WishlistItemResponse,
)

router = APIRouter(tags=["cart"])


@router.get("/cart", response_model=CartResponse)
async def get_cart(
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    cart_service=Depends(get_cart_service)
):
    """Get user's cart - requires authentication."""
    return cart_service.get_cart(db, identity.user_id)


@router.post("/cart", response_model=CartResponse)
async def add_to_cart(
    request: AddToCartRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    cart_service=Depends(get_cart_service)
):
    """Add item to cart - requires authentication."""
    cart_service.add_to_cart(
        db=db,
        user_id=identity.user_id,
        product_id=request.product_id,
        quantity=request.quantity,
        variant_id=request.variant_id,
    )
    return cart_service.get_cart(db, identity.user_id)


@router.put("/cart/{item_id}", response_model=CartResponse)
async def update_cart_item(
    item_id: str,
    request: UpdateCartItemRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    cart_service=Depends(get_cart_service)
):
    cart_service.update_quantity(db, identity.user_id, item_id, request.quantity)
    return cart_service.get_cart(db, identity.user_id)


@router.delete("/cart/{item_id}", response_model=CartResponse)
async def remove_cart_item(
    item_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    cart_service=Depends(get_cart_service)
):
    cart_service.remove_item(db, identity.user_id, item_id)
    return cart_service.get_cart(db, identity.user_id)


@router.delete("/cart", response_model=MessageResponse)
async def clear_cart(
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    cart_service=Depends(get_cart_service)
):
    cart_service.clear_cart(db, identity.user_id)
    db.commit()
    return MessageResponse(message="Cart cleared")


@router.get("/wishlist", response_model=List[WishlistItemResponse])
async def get_wishlist(
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    cart_service=Depends(get_cart_service)
):
    return [WishlistItemResponse.model_validate(item) for item in cart_service.get_wishlist(db, identity.user_id)]


@router.post("/wishlist", response_model=MessageResponse, status_code=201)
async def add_to_wishlist(
    request: AddToWishlistRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    cart_service=Depends(get_cart_service)
):
    cart_service.add_to_wishlist(db, identity.user_id, request.product_id)
    return MessageResponse(message="Added to wishlist")


@router.delete("/wishlist/{product_id}", response_model=MessageResponse)
async def remove_from_wishlist(
    product_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    cart_service=Depends(get_cart_service)
):
    cart_service.remove_from_wishlist(db, identity.user_id, product_id)
    return MessageResponse(message="Removed from wishlist")
