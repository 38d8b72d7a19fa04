"""
Product Endpoints (business staff)

Customers see products through ``/api/customer/stalls/{id}``; these routes
manage the catalog and its approval workflow.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.dependencies import get_current_session
from stallfront.core.permissions import ensure_business_access
from stallfront.core.security import SessionData
from stallfront.database import get_db
from stallfront.schemas import ImageUrlRequest, ProductCreate, ProductOut, ProductUpdate
from stallfront.services import products

router = APIRouter(prefix="/api/products", tags=["Products"])


def _out(product) -> dict[str, Any]:
    return {"success": True, "product": ProductOut.model_validate(product)}


@router.get("", summary="List products")
async def list_products(
    stall_id: Optional[str] = Query(None),
    business_id: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=100),
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    if not session.is_super_admin:
        business_id = business_id or session.business_id
        ensure_business_access(session, business_id)
    rows = await products.list_products(db, stall_id, business_id, status_filter, search)
    return {"success": True, "products": [ProductOut.model_validate(p) for p in rows]}


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create a draft product")
async def create_product(
    body: ProductCreate,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return _out(await products.create_product(db, session, body))


@router.get("/{product_id}", summary="Get a product")
async def get_product(
    product_id: str,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    product = await products.get_product(db, product_id)
    ensure_business_access(session, product.business_id)
    return _out(product)


@router.patch("/{product_id}", summary="Update a product")
async def update_product(
    product_id: str,
    body: ProductUpdate,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return _out(await products.update_product(db, session, product_id, body))


@router.delete("/{product_id}", summary="Archive a product")
async def delete_product(
    product_id: str,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return _out(await products.archive_product(db, session, product_id))


# =============================================================================
# APPROVAL WORKFLOW
# =============================================================================

@router.post("/{product_id}/submit", summary="Submit a draft for approval")
async def submit_product(
    product_id: str,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return _out(await products.submit_product(db, session, product_id))


@router.post("/{product_id}/approve", summary="Approve a pending product")
async def approve_product(
    product_id: str,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return _out(await products.approve_product(db, session, product_id))


@router.post("/{product_id}/publish", summary="Publish a product")
async def publish_product(
    product_id: str,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return _out(await products.publish_product(db, session, product_id))


@router.post("/{product_id}/unpublish", summary="Return a product to draft")
async def unpublish_product(
    product_id: str,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return _out(await products.unpublish_product(db, session, product_id))


# =============================================================================
# IMAGES
# =============================================================================

@router.post("/{product_id}/images", summary="Attach an image URL")
async def add_image(
    product_id: str,
    body: ImageUrlRequest,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return _out(await products.add_image(db, session, product_id, body.url))


@router.delete("/{product_id}/images", summary="Detach an image URL")
async def remove_image(
    product_id: str,
    url: str = Query(..., min_length=1),
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return _out(await products.remove_image(db, session, product_id, url))
