"""Catalog API router."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.database import get_db
from storefront.dependencies import get_catalog_service
from storefront.schemas import (
    CategoryResponse,
    ProductDetailResponse,
    ProductResponse,
    ProductsListResponse,
)
from storefront.services.catalog_service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter(tags=["products"])


@router.get("/products", response_model=ProductsListResponse)
async def list_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    active: bool = True,
    featured: bool = False,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    sort: str = "created_at",
    order: str = "desc",
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    catalog_service=Depends(get_catalog_service)
):
    """List products with search, filters, sorting and pagination."""
    result = catalog_service.list_products(
        db,
        search=search,
        category=category,
        active_only=active,
        featured=featured,
        min_price=min_price,
        max_price=max_price,
        sort=sort,
        order=order,
        page=page,
        limit=limit,
    )
    return ProductsListResponse(
        products=[ProductResponse.model_validate(p) for p in result["products"]],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
        pages=result["pages"],
    )


@router.get("/products/{identifier}", response_model=ProductDetailResponse)
async def get_product(
    identifier: str,
    db: Session = Depends(get_db),
    catalog_service=Depends(get_catalog_service)
):
    """Get a product by id or slug."""
    result = catalog_service.get_product(db, identifier)
    detail = ProductDetailResponse.model_validate(result["product"])
    detail.avg_rating = result["avg_rating"]
    return detail


@router.get("/categories", response_model=List[CategoryResponse])
async def list_categories(
    db: Session = Depends(get_db),
    catalog_service=Depends(get_catalog_service)
):
    return [CategoryResponse.model_validate(c) for c in catalog_service.list_categories(db)]
