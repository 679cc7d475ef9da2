"""User profile, address and review API router."""
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.auth import Identity, verify_token
from storefront.database import get_db
from storefront.dependencies import get_account_service
from storefront.schemas import (
    AddressCreate,
    AddressResponse,
    AddressUpdate,
    MessageResponse,
    ProfileUpdateRequest,
    ReviewCreate,
    ReviewResponse,
    UserResponse,
)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/profile", response_model=UserResponse)
async def get_profile(
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    account_service=Depends(get_account_service)
):
    return UserResponse.model_validate(account_service.get_user(db, identity))


@router.put("/profile", response_model=UserResponse)
async def update_profile(
    request: ProfileUpdateRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    account_service=Depends(get_account_service)
):
    user = account_service.update_profile(db, identity, name=request.name, avatar=request.avatar)
    return UserResponse.model_validate(user)


@router.get("/addresses", response_model=List[AddressResponse])
async def list_addresses(
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    account_service=Depends(get_account_service)
):
    return [AddressResponse.model_validate(a) for a in account_service.list_addresses(db, identity)]


@router.post("/addresses", response_model=AddressResponse, status_code=201)
async def create_address(
    request: AddressCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    account_service=Depends(get_account_service)
):
    address = account_service.create_address(db, identity, request.model_dump())
    return AddressResponse.model_validate(address)


@router.put("/addresses/{address_id}", response_model=AddressResponse)
async def update_address(
    address_id: str,
    request: AddressUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    account_service=Depends(get_account_service)
):
    address = account_service.update_address(db, identity, address_id, request.model_dump(exclude_unset=True))
    return AddressResponse.model_validate(address)


@router.delete("/addresses/{address_id}", response_model=MessageResponse)
async def delete_address(
    address_id: str,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    account_service=Depends(get_account_service)
):
    account_service.delete_address(db, identity, address_id)
    return MessageResponse(message="Address deleted")


@router.post("/reviews", response_model=ReviewResponse, status_code=201)
async def create_review(
    request: ReviewCreate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(verify_token),
    account_service=Depends(get_account_service)
):
    review = account_service.create_review(
        db, identity, request.product_id, request.rating, request.comment
    )
    return ReviewResponse.model_validate(review)
