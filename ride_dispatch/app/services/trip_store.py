"""
Trip store for the dispatch engine.

Selects dispatchable trips and performs the guarded assignment update.
"""

from datetime import datetime
from typing import Optional, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_dispatch.app.models.trip import TransportTrip
from ride_dispatch.app.models.trip_enums import TripStatus, PaymentStatus
from ride_dispatch.app.schemas.dispatch import DispatchCandidate, EscalationCandidate


class TripStore:
    """
    Narrow read/write view of transport trips.

    Every call opens its own session so callers never share
    transaction state across dispatch stages.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_next_dispatchable_trip(
        self,
        now: datetime,
        lookahead: datetime,
        grace_cutoff: datetime
    ) -> Optional[DispatchCandidate]:
        """
        Find the oldest trip that currently qualifies for auto-dispatch.

        Args:
            now: Current time; earliest acceptable scheduled time
            lookahead: Latest acceptable scheduled time
            grace_cutoff: Oldest acceptable creation time

        Returns:
            The candidate trip, or None when nothing qualifies
        """
        stmt = (
            select(TransportTrip)
            .where(
                TransportTrip.status == TripStatus.PENDING_ASSIGNMENT,
                TransportTrip.driver_id.is_(None),
                TransportTrip.payment_status == PaymentStatus.PAID,
                TransportTrip.scheduled_time >= now,
                TransportTrip.scheduled_time <= lookahead,
                TransportTrip.created_at >= grace_cutoff,
            )
            .order_by(TransportTrip.created_at.asc(), TransportTrip.id.asc())
            .limit(1)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            trip = result.scalar_one_or_none()

        if trip is None:
            return None
        return DispatchCandidate.model_validate(trip)

    async def try_assign(self, trip_id: int, driver_id: int, now: datetime) -> int:
        """
        Assign a driver only if the trip is still unassigned and pending.

        Args:
            trip_id: Trip to assign
            driver_id: Driver taking the trip
            now: Pickup timestamp recorded on the trip

        Returns:
            Number of rows changed (1 = assigned, 0 = lost the race)
        """
        stmt = (
            update(TransportTrip)
            .where(
                TransportTrip.id == trip_id,
                TransportTrip.driver_id.is_(None),
                TransportTrip.status == TripStatus.PENDING_ASSIGNMENT,
            )
            .values(
                driver_id=driver_id,
                status=TripStatus.CONFIRMED,
                pickup_time=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            await db.commit()
        return result.rowcount

    async def find_escalation_candidates(
        self,
        now: datetime,
        lookahead: datetime,
        created_before: datetime,
        limit: int = 50
    ) -> List[EscalationCandidate]:
        """
        List near-term, paid, unassigned trips created at or before a cutoff.

        Oldest first.
        """
        stmt = (
            select(TransportTrip)
            .where(
                TransportTrip.status == TripStatus.PENDING_ASSIGNMENT,
                TransportTrip.driver_id.is_(None),
                TransportTrip.payment_status == PaymentStatus.PAID,
                TransportTrip.scheduled_time >= now,
                TransportTrip.scheduled_time <= lookahead,
                TransportTrip.created_at <= created_before,
            )
            .order_by(TransportTrip.created_at.asc(), TransportTrip.id.asc())
            .limit(limit)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            trips = result.scalars().all()
        return [EscalationCandidate.model_validate(t) for t in trips]

    async def try_escalate_to_admin(self, trip_id: int) -> int:
        """
        Hand an unassigned trip over to manual admin assignment.

        Same guard as try_assign, so a trip can never be both
        auto-assigned and escalated.

        Returns:
            Number of rows changed
        """
        stmt = (
            update(TransportTrip)
            .where(
                TransportTrip.id == trip_id,
                TransportTrip.driver_id.is_(None),
                TransportTrip.status == TripStatus.PENDING_ASSIGNMENT,
            )
            .values(status=TripStatus.PENDING_ADMIN_ASSIGNMENT)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            await db.commit()
        return result.rowcount
