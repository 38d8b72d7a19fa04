"""
Business Endpoints

Onboarding and settings for businesses, plus the "my business" views used
by business staff.
"""

from typing import Any, Literal, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.dependencies import get_current_session, require_super_admin
from stallfront.core.exceptions import NotFoundError
from stallfront.core.rate_limiter import get_client_ip
from stallfront.core.security import SessionData
from stallfront.database import get_db
from stallfront.schemas import BusinessCreate, BusinessOut, BusinessUpdate, ProductOut, StallOut, UserOut
from stallfront.services import businesses, orders, products, stalls

router = APIRouter(prefix="/api/businesses", tags=["Businesses"])


def _own_business_id(session: SessionData) -> str:
    if not session.business_id:
        raise NotFoundError("You are not attached to a business")
    return session.business_id


@router.get("", summary="List businesses")
async def list_businesses(
    status_filter: Optional[str] = Query(None, alias="status"),
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await businesses.list_businesses(db, session, status_filter)
    return {"success": True, "businesses": [BusinessOut.model_validate(b) for b in rows]}


@router.post("", status_code=status.HTTP_201_CREATED, summary="Onboard a business")
async def create_business(
    body: BusinessCreate,
    request: Request,
    session: SessionData = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Create the business and invite its owner by email."""
    business, owner = await businesses.create_business(db, session, body, get_client_ip(request))
    return {
        "success": True,
        "business": BusinessOut.model_validate(business),
        "owner": UserOut.model_validate(owner),
    }


# =============================================================================
# MY BUSINESS
# =============================================================================

@router.get("/my-business", summary="The caller's business")
async def my_business(
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    business = await businesses.get_business(db, session, _own_business_id(session))
    return {"success": True, "business": BusinessOut.model_validate(business)}


@router.get("/my-stalls", summary="Stalls of the caller's business")
async def my_stalls(
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await stalls.list_stalls(db, session, _own_business_id(session))
    return {"success": True, "stalls": [StallOut.model_validate(s) for s in rows]}


@router.get("/my-products", summary="Products of the caller's business")
async def my_products(
    status_filter: Optional[str] = Query(None, alias="status"),
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await products.list_products(db, business_id=_own_business_id(session), status=status_filter)
    return {"success": True, "products": [ProductOut.model_validate(p) for p in rows]}


@router.get("/my-orders", summary="Orders of the caller's business")
async def my_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    stall_id: Optional[str] = Query(None),
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    business_id = _own_business_id(session)
    rows = await orders.list_orders(db, session, stall_id=stall_id, business_id=business_id, status=status_filter)
    return {"success": True, "orders": await orders.orders_out(db, rows, with_stall=True)}


@router.get("/dashboard-stats", summary="Business dashboard numbers")
async def dashboard_stats(
    business_id: Optional[str] = Query(None),
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return {"success": True, "stats": await businesses.business_dashboard(db, session, business_id)}


# =============================================================================
# SINGLE BUSINESS
# =============================================================================

@router.get("/{business_id}", summary="Get a business")
async def get_business(
    business_id: str,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    business = await businesses.get_business(db, session, business_id)
    return {"success": True, "business": BusinessOut.model_validate(business)}


@router.patch("/{business_id}", summary="Update a business")
async def update_business(
    business_id: str,
    body: BusinessUpdate,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    business = await businesses.update_business(db, session, business_id, body)
    return {"success": True, "business": BusinessOut.model_validate(business)}


@router.put("/{business_id}/status", summary="Enable or disable a business")
async def set_status(
    business_id: str,
    new_status: Literal["pending", "active", "disabled"] = Body(..., embed=True, alias="status"),
    session: SessionData = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    business = await businesses.set_business_status(db, session, business_id, new_status)
    return {"success": True, "business": BusinessOut.model_validate(business)}
