"""
Dispatch schemas.

Read models passed between the dispatch stages and ops API responses.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Any, Dict, Optional


class DispatchCandidate(BaseModel):
    """Trip selected for auto-dispatch."""
    id: int
    user_id: int
    pickup_latitude: Optional[float]
    pickup_longitude: Optional[float]
    scheduled_time: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class LiveLocationRow(BaseModel):
    """Driver position joined with its directory entry."""
    driver_id: int
    latitude: float
    longitude: float
    driver_role: str
    driver_available: bool


class DriverMatch(BaseModel):
    """Driver chosen by the locator."""
    driver_id: int
    method: str  # nearest | fallback
    distance_km: Optional[float] = None


class EscalationCandidate(BaseModel):
    """Unassigned trip old enough to be escalated."""
    id: int
    user_id: int
    scheduled_time: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class TripUpdatePayload(BaseModel):
    """Real-time trip update event body."""
    id: int
    status: str


class DispatchStatusResponse(BaseModel):
    """Scheduler state for the ops API."""
    enabled: bool
    state: str  # stopped | running
    interval_seconds: float
    max_attempts_per_tick: int
    tick_count: int
    assigned_count: int
    failed_tick_count: int
    last_tick_at: Optional[datetime]


class RunOnceResponse(BaseModel):
    """Result of a manually triggered tick."""
    assigned: int


class AuditEntryResponse(BaseModel):
    """One dispatch decision on a trip, as recorded in the audit log."""
    id: int
    action: str
    actor_role: Optional[str]
    meta_data: Optional[Dict[str, Any]]
    timestamp: datetime

    class Config:
        from_attributes = True
