"""
Stall Endpoints (business staff)
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.dependencies import get_current_session
from stallfront.core.permissions import ensure_business_access
from stallfront.core.security import SessionData
from stallfront.database import get_db
from stallfront.schemas import ProductOut, StallCreate, StallOut, StallUpdate
from stallfront.services import products, stalls

router = APIRouter(prefix="/api/stalls", tags=["Stalls"])


@router.get("", summary="List stalls")
async def list_stalls(
    business_id: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await stalls.list_stalls(db, session, business_id, status_filter)
    return {"success": True, "stalls": [StallOut.model_validate(s) for s in rows]}


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create a stall")
async def create_stall(
    body: StallCreate,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    stall = await stalls.create_stall(db, session, body)
    return {"success": True, "stall": StallOut.model_validate(stall)}


@router.get("/{stall_id}", summary="Get a stall with its products")
async def get_stall(
    stall_id: str,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    stall = await stalls.get_stall(db, stall_id)
    ensure_business_access(session, stall.business_id)
    rows = await products.list_products(db, stall_id=stall.id)
    return {
        "success": True,
        "stall": StallOut.model_validate(stall),
        "products": [ProductOut.model_validate(p) for p in rows],
    }


@router.patch("/{stall_id}", summary="Update a stall")
async def update_stall(
    stall_id: str,
    body: StallUpdate,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    stall = await stalls.update_stall(db, session, stall_id, body)
    return {"success": True, "stall": StallOut.model_validate(stall)}


@router.delete("/{stall_id}", summary="Disable a stall")
async def delete_stall(
    stall_id: str,
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    stall = await stalls.disable_stall(db, session, stall_id)
    return {"success": True, "message": "Stall disabled", "stall": StallOut.model_validate(stall)}
