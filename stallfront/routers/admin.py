"""
Admin Console Endpoints

Everything here requires the super_admin role.
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from stallfront.core.dependencies import require_super_admin
from stallfront.core.security import SessionData
from stallfront.database import get_db
from stallfront.schemas import ActivityLogOut, ApprovalAction
from stallfront.services import admin, analytics, orders
from stallfront.services.activity import list_activity
from stallfront.tasks import cleanup_expired

router = APIRouter(prefix="/api/admin", tags=["Admin"], dependencies=[Depends(require_super_admin)])


@router.get("/overview", summary="Platform overview")
async def overview(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    return {"success": True, **await admin.platform_overview(db)}


@router.get("/customer-analytics", summary="Customer analytics")
async def customer_analytics(
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return {"success": True, "analytics": await analytics.customer_analytics(db, days)}


@router.get("/orders", summary="Orders across all businesses")
async def all_orders(
    business_id: Optional[str] = Query(None),
    stall_id: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    customer_id: Optional[str] = Query(None),
    scheduled_from: Optional[datetime] = Query(None),
    scheduled_to: Optional[datetime] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    session: SessionData = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await orders.list_orders(
        db, session,
        stall_id=stall_id,
        business_id=business_id,
        status=status_filter,
        customer_id=customer_id,
        scheduled_from=scheduled_from,
        scheduled_to=scheduled_to,
        limit=limit,
    )
    return {"success": True, "orders": await orders.orders_out(db, rows, with_stall=True), "count": len(rows)}


@router.get("/approvals", summary="Pending approvals")
async def approvals(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    return {"success": True, **await admin.pending_approvals(db)}


@router.post("/approvals", summary="Approve or reject")
async def decide_approval(
    body: ApprovalAction,
    session: SessionData = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return {"success": True, **await admin.process_approval(db, session, body)}


@router.get("/system-health", summary="Dependency health")
async def system_health(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    return {"success": True, **await admin.system_health(db)}


@router.get("/performance", summary="Request, cache and rate limiter stats")
async def performance(window_minutes: int = Query(5, ge=1, le=1440)) -> dict[str, Any]:
    return {"success": True, **admin.performance_report(window_minutes)}


@router.get("/logs", summary="Activity log")
async def logs(
    action: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await list_activity(db, action, user_id, entity_type, entity_id, limit)
    return {"success": True, "logs": [ActivityLogOut.model_validate(r) for r in rows], "count": len(rows)}


@router.post("/validate-data", summary="Scan for inconsistent records")
async def validate_data(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    return {"success": True, **await admin.validate_data(db)}


@router.post("/cleanup", status_code=status.HTTP_202_ACCEPTED, summary="Purge expired carts, links and codes")
async def cleanup() -> dict[str, Any]:
    task = cleanup_expired.delay()
    return {"success": True, "task_id": task.id}
