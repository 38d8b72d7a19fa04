"""
Analytics Endpoints
"""

from pathlib import Path
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.dependencies import get_current_session, require_super_admin
from stallfront.core.exceptions import StallFrontError
from stallfront.core.permissions import ensure_business_access, require_permission
from stallfront.core.security import SessionData
from stallfront.database import get_db
from stallfront.services import admin, analytics
from stallfront.services.activity import ActivityAction, log_activity
from stallfront.tasks import export_business_orders

router = APIRouter(prefix="/api/analytics", tags=["Analytics"])

MEDIA_TYPES = {
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "csv": "text/csv",
}


@router.get("/business/{business_id}", summary="Business analytics")
async def business_analytics(
    business_id: str,
    days: int = Query(30, ge=1, le=365),
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return {"success": True, "analytics": await analytics.business_analytics(db, session, business_id, days)}


@router.get("/business/{business_id}/export", summary="Download orders as a spreadsheet")
async def export_orders(
    business_id: str,
    days: int = Query(30, ge=1, le=365),
    fmt: Literal["xlsx", "csv"] = Query("xlsx", alias="format"),
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> FileResponse:
    result = await analytics.export_business_orders(db, session, business_id, days, fmt)
    if not result["success"]:
        raise StallFrontError(result["message"])

    log_activity(db, ActivityAction.ORDERS_EXPORTED, user_id=session.user_id, entity_type="business",
                 entity_id=business_id, details={"rows": result["rows"], "format": fmt})
    await db.commit()
    path = Path(result["path"])
    return FileResponse(path, media_type=MEDIA_TYPES[fmt], filename=path.name)


@router.post(
    "/business/{business_id}/export/queue",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Export orders in the background",
)
async def queue_export(
    business_id: str,
    days: int = Query(30, ge=1, le=365),
    fmt: Literal["xlsx", "csv"] = Query("xlsx", alias="format"),
    session: SessionData = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await require_permission(db, session, "orders:export")
    ensure_business_access(session, business_id)
    task = export_business_orders.delay(business_id, days, fmt)
    return {"success": True, "task_id": task.id, "message": "Export queued"}


@router.get("/overview", summary="Platform overview")
async def overview(
    session: SessionData = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return {"success": True, "overview": await admin.platform_overview(db)}
