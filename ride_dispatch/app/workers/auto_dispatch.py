"""
Transport auto-dispatch worker.

Every tick the scheduler runs a few dispatch cycles back to back:

1. select the oldest paid, unassigned trip that starts soon
2. locate the best driver for its pickup point
3. assign with a guarded update (only one dispatcher can win a trip)
4. tell the driver and the customer, best-effort

then runs the escalation pass. Several processes may run this worker
against the same database; the guarded update in TripStore.try_assign
is what keeps a trip from being assigned twice.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_dispatch.app.core.config import settings
from ride_dispatch.app.core.reliability import with_timeout
from ride_dispatch.app.models.trip_enums import TripStatus
from ride_dispatch.app.schemas.dispatch import DispatchCandidate, DriverMatch, TripUpdatePayload
from ride_dispatch.app.services.audit import AuditAction, TRIP_ENTITY, log_event
from ride_dispatch.app.services.driver_directory import DriverDirectory
from ride_dispatch.app.services.driver_locator import DriverLocator
from ride_dispatch.app.services.escalation import EscalationService
from ride_dispatch.app.services.geo import is_valid_coordinate
from ride_dispatch.app.services.location_store import LiveLocationStore
from ride_dispatch.app.services.realtime import (
    TRIP_UPDATE_EVENT, RealtimeNotifier, driver_channel, user_channel, emit_best_effort
)
from ride_dispatch.app.services.trip_store import TripStore

logger = logging.getLogger(__name__)


class DispatchCycle:
    """One select → locate → assign → notify pass."""

    def __init__(
        self,
        trip_store: TripStore,
        locator: DriverLocator,
        notifier: Optional[RealtimeNotifier] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        lookahead: timedelta = None,
        grace: timedelta = None
    ):
        self.trip_store = trip_store
        self.locator = locator
        self.notifier = notifier
        self.session_factory = session_factory
        if lookahead is None:
            lookahead = timedelta(minutes=settings.dispatch_lookahead_minutes)
        self.lookahead = lookahead
        if grace is None:
            grace = timedelta(minutes=settings.dispatch_grace_minutes)
        self.grace = grace
        self.assigned_count = 0

    async def run_once(self, now: datetime = None) -> bool:
        """
        Try to auto-assign one trip.

        Returns:
            True if there was a trip to work on and a driver for it,
            False when there is nothing to do (the tick should stop)
        """
        now = now or datetime.utcnow()

        trip = await with_timeout(
            "find_next_dispatchable_trip",
            self.trip_store.find_next_dispatchable_trip(
                now=now,
                lookahead=now + self.lookahead,
                grace_cutoff=now - self.grace,
            ),
        )
        if trip is None:
            return False

        if not is_valid_coordinate(trip.pickup_latitude, trip.pickup_longitude):
            logger.warning("Trip has no usable pickup coordinate", extra={"trip_id": trip.id})
            return False

        match = await self.locator.find_best_driver(trip.pickup_latitude, trip.pickup_longitude)
        if match is None:
            logger.debug("No driver available", extra={"trip_id": trip.id})
            return False

        changed = await with_timeout(
            "try_assign",
            self.trip_store.try_assign(trip.id, match.driver_id, now),
        )
        if changed != 1:
            # Another dispatcher got there first
            logger.info(
                "Trip already taken, moving on",
                extra={"trip_id": trip.id, "driver_id": match.driver_id},
            )
            return True

        self.assigned_count += 1
        logger.info(
            "Trip auto-assigned",
            extra={
                "trip_id": trip.id,
                "driver_id": match.driver_id,
                "method": match.method,
                "distance_km": match.distance_km,
            },
        )
        await self._record_assignment(trip, match)
        await self._notify_assignment(trip, match)
        return True

    async def _notify_assignment(self, trip: DispatchCandidate, match: DriverMatch) -> None:
        payload = TripUpdatePayload(id=trip.id, status=TripStatus.CONFIRMED.value).model_dump()
        await emit_best_effort(self.notifier, driver_channel(match.driver_id), TRIP_UPDATE_EVENT, payload)
        await emit_best_effort(self.notifier, user_channel(trip.user_id), TRIP_UPDATE_EVENT, payload)

    async def _record_assignment(self, trip: DispatchCandidate, match: DriverMatch) -> None:
        if self.session_factory is None:
            return
        try:
            await with_timeout("audit_assignment", self._write_assignment_audit(trip, match))
        except Exception:
            logger.warning("Failed to audit assignment", exc_info=True, extra={"trip_id": trip.id})

    async def _write_assignment_audit(self, trip: DispatchCandidate, match: DriverMatch) -> None:
        async with self.session_factory() as db:
            await log_event(
                db,
                action=AuditAction.DRIVER_AUTO_ASSIGNED,
                entity=TRIP_ENTITY,
                entity_id=trip.id,
                metadata={
                    "driver_id": match.driver_id,
                    "method": match.method,
                    "distance_km": match.distance_km,
                },
            )


class AutoDispatchScheduler:
    """
    Owns the dispatch timer of one process.

    Construct once at startup; start() is idempotent and stop() cancels
    the timer. Ticks never overlap within a process.
    """

    STOPPED = "stopped"
    RUNNING = "running"

    def __init__(
        self,
        cycle: DispatchCycle,
        escalation: Optional[EscalationService] = None,
        interval_seconds: float = None,
        max_attempts_per_tick: int = None
    ):
        self.cycle = cycle
        self.escalation = escalation
        if interval_seconds is None:
            interval_seconds = settings.dispatch_interval_seconds
        self.interval_seconds = interval_seconds
        if max_attempts_per_tick is None:
            max_attempts_per_tick = settings.dispatch_max_attempts_per_tick
        self.max_attempts_per_tick = max_attempts_per_tick

        self.state = self.STOPPED
        self.tick_count = 0
        self.failed_tick_count = 0
        self.last_tick_at: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None
        self._tick_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self.state == self.RUNNING

    def start(self) -> None:
        """Start the timer on the running event loop. No-op if already running."""
        if self.is_running:
            return
        self.state = self.RUNNING
        self._task = asyncio.get_running_loop().create_task(self._run(), name="auto-dispatch")
        logger.info(
            "Auto-dispatch started",
            extra={"interval_seconds": self.interval_seconds, "max_attempts": self.max_attempts_per_tick},
        )

    async def stop(self) -> None:
        """Cancel the timer and wait for the current tick to unwind."""
        if not self.is_running:
            return
        self.state = self.STOPPED
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Auto-dispatch stopped")

    async def _run(self) -> None:
        # First tick immediately, then one per interval
        while True:
            await self.tick()
            await asyncio.sleep(self.interval_seconds)

    async def tick(self) -> int:
        """
        Run one bounded batch of dispatch cycles, then escalations.

        Never raises; failures are logged and the next tick proceeds.

        Returns:
            Number of trips assigned in this tick
        """
        async with self._tick_lock:
            self.tick_count += 1
            self.last_tick_at = datetime.utcnow()
            assigned_before = self.cycle.assigned_count

            try:
                for _ in range(self.max_attempts_per_tick):
                    did_work = await self.cycle.run_once()
                    if not did_work:
                        break
            except Exception:
                self.failed_tick_count += 1
                logger.exception("Auto-dispatch tick failed", extra={"tick": self.tick_count})

            if self.escalation is not None:
                try:
                    await self.escalation.process()
                except Exception:
                    logger.exception("Auto-dispatch escalation failed", extra={"tick": self.tick_count})

            return self.cycle.assigned_count - assigned_before

    @property
    def assigned_count(self) -> int:
        return self.cycle.assigned_count


def build_scheduler(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Optional[RealtimeNotifier] = None,
    interval_seconds: float = None
) -> AutoDispatchScheduler:
    """Wire the stores, locator, cycle and escalation into a scheduler."""
    trip_store = TripStore(session_factory)
    locator = DriverLocator(
        location_store=LiveLocationStore(session_factory),
        directory=DriverDirectory(session_factory),
    )
    cycle = DispatchCycle(
        trip_store=trip_store,
        locator=locator,
        notifier=notifier,
        session_factory=session_factory,
    )
    escalation = EscalationService(
        session_factory=session_factory,
        trip_store=trip_store,
        notifier=notifier,
    )
    return AutoDispatchScheduler(
        cycle=cycle,
        escalation=escalation,
        interval_seconds=interval_seconds,
    )
