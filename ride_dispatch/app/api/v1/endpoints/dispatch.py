"""
Auto-Dispatch Ops API Endpoints.

Inspect the scheduler, trigger a tick by hand and review the
dispatch decisions recorded for a trip.
"""

from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ride_dispatch.app.core.config import settings
from ride_dispatch.app.core.exceptions import SchedulerNotRunningError
from ride_dispatch.app.db.session import get_db
from ride_dispatch.app.schemas.dispatch import AuditEntryResponse, DispatchStatusResponse, RunOnceResponse
from ride_dispatch.app.services.audit import TRIP_ENTITY, get_audit_trail
from ride_dispatch.app.workers.auto_dispatch import AutoDispatchScheduler

router = APIRouter(prefix="/dispatch", tags=["Ops - Auto Dispatch"])


def get_scheduler(request: Request) -> AutoDispatchScheduler:
    """FastAPI dependency returning the process-wide scheduler."""
    scheduler = getattr(request.app.state, "dispatch_scheduler", None)
    if scheduler is None:
        raise SchedulerNotRunningError()
    return scheduler


@router.get("/status", response_model=DispatchStatusResponse)
async def get_dispatch_status(scheduler: AutoDispatchScheduler = Depends(get_scheduler)):
    """
    Get auto-dispatch scheduler state and counters.
    """
    return DispatchStatusResponse(
        enabled=settings.auto_dispatch_enabled,
        state=scheduler.state,
        interval_seconds=scheduler.interval_seconds,
        max_attempts_per_tick=scheduler.max_attempts_per_tick,
        tick_count=scheduler.tick_count,
        assigned_count=scheduler.assigned_count,
        failed_tick_count=scheduler.failed_tick_count,
        last_tick_at=scheduler.last_tick_at,
    )


@router.post("/run-once", response_model=RunOnceResponse)
async def run_dispatch_once(scheduler: AutoDispatchScheduler = Depends(get_scheduler)):
    """
    Run one dispatch tick now.

    Waits for any in-flight tick first, so ticks never overlap.
    """
    assigned = await scheduler.tick()
    return RunOnceResponse(assigned=assigned)


@router.get("/trips/{trip_id}/audit", response_model=List[AuditEntryResponse])
async def get_trip_dispatch_audit(
    trip_id: int,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """
    List auto-assignment and escalation entries of a trip, most recent first.

    An unknown trip yields an empty list.
    """
    return await get_audit_trail(db, TRIP_ENTITY, trip_id, limit=limit)
