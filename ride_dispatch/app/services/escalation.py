"""
Auto-dispatch escalation.

Paid, near-term trips that stay unassigned are escalated to admins in
three checkpoints:

- early: no driver after 2 minutes, admins are told to prepare
- warn: still nothing after 5 minutes
- takeover: the grace window has elapsed; the trip is moved to
  PENDING_ADMIN_ASSIGNMENT and leaves auto-dispatch for good

Each checkpoint fires once per trip. Audit log entries are the
idempotency markers, so repeated ticks and other dispatcher instances
do not notify twice. The takeover itself is a guarded update; only the
instance whose update lands notifies.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_dispatch.app.core.config import settings
from ride_dispatch.app.core.reliability import with_timeout
from ride_dispatch.app.models.enums import UserRole
from ride_dispatch.app.models.notification import NotificationType
from ride_dispatch.app.models.trip_enums import TripStatus
from ride_dispatch.app.schemas.dispatch import EscalationCandidate
from ride_dispatch.app.services.audit import AuditAction, TRIP_ENTITY, log_event, get_logged_actions
from ride_dispatch.app.services.notification_service import NotificationService
from ride_dispatch.app.services.realtime import ADMINS_CHANNEL, RealtimeNotifier, emit_best_effort
from ride_dispatch.app.services.trip_store import TripStore

logger = logging.getLogger(__name__)

ESCALATION_ACTIONS = (
    AuditAction.DISPATCH_EARLY_ESCALATION,
    AuditAction.DISPATCH_WARN_ADMIN,
    AuditAction.DISPATCH_ESCALATED_TO_ADMIN,
)

SOFT_ESCALATION_EVENT = "trip:soft_escalation"
ADMIN_TAKEOVER_EVENT = "trip:admin_takeover"


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class EscalationService:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        trip_store: TripStore,
        notifier: Optional[RealtimeNotifier] = None,
        lookahead: timedelta = None,
        grace: timedelta = None,
        early_after: timedelta = None,
        warn_after: timedelta = None,
        scan_limit: int = None
    ):
        self.session_factory = session_factory
        self.trip_store = trip_store
        self.notifier = notifier
        if lookahead is None:
            lookahead = timedelta(minutes=settings.dispatch_lookahead_minutes)
        self.lookahead = lookahead
        if grace is None:
            grace = timedelta(minutes=settings.dispatch_grace_minutes)
        self.grace = grace
        if early_after is None:
            early_after = timedelta(minutes=settings.escalation_early_minutes)
        self.early_after = early_after
        if warn_after is None:
            warn_after = timedelta(minutes=settings.escalation_warn_minutes)
        self.warn_after = warn_after
        if scan_limit is None:
            scan_limit = settings.escalation_scan_limit
        self.scan_limit = scan_limit

    async def process(self, now: datetime = None) -> Dict[str, int]:
        """
        Run one escalation pass.

        Returns:
            Counts of trips escalated per checkpoint
        """
        now = now or datetime.utcnow()
        summary = {"early": 0, "warned": 0, "taken_over": 0}

        candidates = await with_timeout(
            "find_escalation_candidates",
            self.trip_store.find_escalation_candidates(
                now=now,
                lookahead=now + self.lookahead,
                created_before=now - self.early_after,
                limit=self.scan_limit,
            ),
        )
        if not candidates:
            return summary

        async with self.session_factory() as db:
            logged = await with_timeout(
                "get_logged_actions",
                get_logged_actions(db, TRIP_ENTITY, [c.id for c in candidates], ESCALATION_ACTIONS),
            )

        for trip in candidates:
            done = logged.get(trip.id, set())
            age = now - _as_naive_utc(trip.created_at)

            if age >= self.grace:
                if AuditAction.DISPATCH_ESCALATED_TO_ADMIN in done:
                    continue
                if await self._take_over(trip):
                    summary["taken_over"] += 1
            elif age >= self.warn_after:
                if done & {AuditAction.DISPATCH_WARN_ADMIN, AuditAction.DISPATCH_ESCALATED_TO_ADMIN}:
                    continue
                if await self._escalate(
                    trip,
                    AuditAction.DISPATCH_WARN_ADMIN,
                    title="Transport trip still unassigned",
                    message=f"Trip #{trip.id} has had no driver for {self.warn_after} and may need manual assignment.",
                    reason="no_driver_accept_within_warn_window",
                ):
                    summary["warned"] += 1
            elif age >= self.early_after:
                if done:
                    continue
                if await self._escalate(
                    trip,
                    AuditAction.DISPATCH_EARLY_ESCALATION,
                    title="Transport trip waiting for a driver",
                    message=f"No driver has taken trip #{trip.id} yet. Auto-dispatch keeps trying.",
                    reason="no_driver_accept_within_early_window",
                ):
                    summary["early"] += 1
                    await emit_best_effort(
                        self.notifier, ADMINS_CHANNEL, SOFT_ESCALATION_EVENT, {"id": trip.id}
                    )

        if any(summary.values()):
            logger.info("Escalation pass finished", extra=summary)
        return summary

    async def _take_over(self, trip: EscalationCandidate) -> bool:
        changed = await with_timeout(
            "try_escalate_to_admin",
            self.trip_store.try_escalate_to_admin(trip.id),
        )
        if not changed:
            return False

        logger.info("Trip handed over to admins", extra={"trip_id": trip.id})
        await self._escalate(
            trip,
            AuditAction.DISPATCH_ESCALATED_TO_ADMIN,
            title="Transport trip needs manual assignment",
            message=f"Auto-dispatch gave up on trip #{trip.id}. Assign a driver manually.",
            reason="no_driver_accept_within_grace_window",
            before={"status": TripStatus.PENDING_ASSIGNMENT.value},
            after_status=TripStatus.PENDING_ADMIN_ASSIGNMENT.value,
        )
        await emit_best_effort(
            self.notifier,
            ADMINS_CHANNEL,
            ADMIN_TAKEOVER_EVENT,
            {"id": trip.id, "status": TripStatus.PENDING_ADMIN_ASSIGNMENT.value},
        )
        return True

    async def _escalate(
        self,
        trip: EscalationCandidate,
        action: str,
        title: str,
        message: str,
        reason: str,
        before: Optional[dict] = None,
        after_status: Optional[str] = None
    ) -> bool:
        """Notify admins and record the checkpoint in one transaction."""
        metadata = {
            "trip_id": trip.id,
            "user_id": trip.user_id,
            "scheduled_time": trip.scheduled_time.isoformat(),
        }
        after = {"reason": reason}
        if after_status:
            after["status"] = after_status

        try:
            await with_timeout(
                "record_escalation",
                self._write_escalation(trip, action, title, message, metadata, before, after),
            )
        except Exception:
            logger.warning(
                "Failed to record escalation",
                exc_info=True,
                extra={"trip_id": trip.id, "action": action},
            )
            return False
        return True

    async def _write_escalation(
        self,
        trip: EscalationCandidate,
        action: str,
        title: str,
        message: str,
        metadata: dict,
        before: Optional[dict],
        after: dict
    ) -> None:
        async with self.session_factory() as db:
            await NotificationService.broadcast(
                db,
                title=title,
                message=message,
                role=UserRole.ADMIN,
                type=NotificationType.DISPATCH_ESCALATION,
                metadata=metadata,
            )
            await log_event(
                db,
                action=action,
                entity=TRIP_ENTITY,
                entity_id=trip.id,
                metadata={"before": before, "after": after},
            )
