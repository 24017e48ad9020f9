"""
Escalation Tests.

Unassigned trips escalate to admins once per checkpoint; the grace
window ends in an admin takeover.
"""

import asyncio
import pytest
from datetime import timedelta
from sqlalchemy import select, func

from ride_dispatch.app.core.config import settings
from ride_dispatch.app.models.audit_log import AuditLog
from ride_dispatch.app.models.enums import UserRole
from ride_dispatch.app.models.notification import Notification, NotificationType
from ride_dispatch.app.models.trip_enums import TripStatus
from ride_dispatch.app.services.audit import AuditAction, TRIP_ENTITY, get_audit_trail
from ride_dispatch.app.services.escalation import EscalationService
from ride_dispatch.app.services.notification_service import NotificationService
from ride_dispatch.app.services.trip_store import TripStore


@pytest.fixture
def escalation(session_factory, notifier):
    return EscalationService(
        session_factory=session_factory,
        trip_store=TripStore(session_factory),
        notifier=notifier,
    )


@pytest.fixture
async def admins(make_user):
    return [
        await make_user(role=UserRole.ADMIN, is_available=False),
        await make_user(role=UserRole.ADMIN, is_available=False),
    ]


@pytest.fixture
async def customer(make_user):
    return await make_user(role=UserRole.CUSTOMER, is_available=False)


async def count_notifications(db_session, user_id=None):
    query = select(func.count(Notification.id))
    if user_id is not None:
        query = query.where(Notification.user_id == user_id)
    return (await db_session.execute(query)).scalar()


@pytest.mark.asyncio
async def test_nothing_to_escalate(escalation, admins, customer, make_trip, db_session, now):
    await make_trip(customer.id, created_at=now - timedelta(seconds=90))

    summary = await escalation.process(now=now)

    assert summary == {"early": 0, "warned": 0, "taken_over": 0}
    assert await count_notifications(db_session) == 0


@pytest.mark.asyncio
async def test_each_checkpoint_fires(escalation, admins, customer, make_trip, db_session, notifier, now):
    early = await make_trip(customer.id, created_at=now - timedelta(minutes=3))
    warn = await make_trip(customer.id, created_at=now - timedelta(minutes=6))
    late = await make_trip(customer.id, created_at=now - timedelta(minutes=11))

    summary = await escalation.process(now=now)

    assert summary == {"early": 1, "warned": 1, "taken_over": 1}

    await db_session.refresh(late)
    await db_session.refresh(warn)
    await db_session.refresh(early)
    assert late.status == TripStatus.PENDING_ADMIN_ASSIGNMENT
    assert warn.status == TripStatus.PENDING_ASSIGNMENT
    assert early.status == TripStatus.PENDING_ASSIGNMENT

    # Every admin gets one inbox entry per checkpoint; customers get none
    for admin in admins:
        assert await count_notifications(db_session, admin.id) == 3
    assert await count_notifications(db_session, customer.id) == 0

    result = await db_session.execute(select(Notification.type).distinct())
    assert result.scalars().all() == [NotificationType.DISPATCH_ESCALATION]

    assert ("admins", "trip:soft_escalation", {"id": early.id}) in notifier.events
    assert ("admins", "trip:admin_takeover", {"id": late.id, "status": "PENDING_ADMIN_ASSIGNMENT"}) in notifier.events


@pytest.mark.asyncio
async def test_checkpoints_fire_once(escalation, admins, customer, make_trip, db_session, now):
    await make_trip(customer.id, created_at=now - timedelta(minutes=3))
    await make_trip(customer.id, created_at=now - timedelta(minutes=6))

    await escalation.process(now=now)
    second = await escalation.process(now=now + timedelta(seconds=15))

    assert second == {"early": 0, "warned": 0, "taken_over": 0}
    assert await count_notifications(db_session) == 2 * len(admins)


@pytest.mark.asyncio
async def test_trip_moves_through_checkpoints(escalation, admins, customer, make_trip, db_session, now):
    trip = await make_trip(
        customer.id,
        created_at=now - timedelta(minutes=3),
        scheduled_time=now + timedelta(minutes=15),
    )

    assert (await escalation.process(now=now))["early"] == 1
    assert (await escalation.process(now=now + timedelta(minutes=3)))["warned"] == 1
    assert (await escalation.process(now=now + timedelta(minutes=8)))["taken_over"] == 1

    trail = await get_audit_trail(db_session, TRIP_ENTITY, trip.id)
    assert [entry.action for entry in trail] == [
        AuditAction.DISPATCH_ESCALATED_TO_ADMIN,
        AuditAction.DISPATCH_WARN_ADMIN,
        AuditAction.DISPATCH_EARLY_ESCALATION,
    ]
    assert trail[0].meta_data["after"]["status"] == "PENDING_ADMIN_ASSIGNMENT"


@pytest.mark.asyncio
async def test_takeover_skips_trip_assigned_meanwhile(
    session_factory, admins, customer, make_user, make_trip, db_session, notifier, now
):
    driver = await make_user()
    trip = await make_trip(customer.id, created_at=now - timedelta(minutes=11))

    class AssignedMeanwhileStore(TripStore):
        async def try_escalate_to_admin(self, trip_id):
            await self.try_assign(trip_id, driver.id, now)
            return await super().try_escalate_to_admin(trip_id)

    escalation = EscalationService(
        session_factory=session_factory,
        trip_store=AssignedMeanwhileStore(session_factory),
        notifier=notifier,
    )

    summary = await escalation.process(now=now)

    assert summary["taken_over"] == 0
    await db_session.refresh(trip)
    assert trip.status == TripStatus.CONFIRMED
    assert await count_notifications(db_session) == 0
    count = await db_session.execute(select(func.count(AuditLog.id)))
    assert count.scalar() == 0


@pytest.mark.asyncio
async def test_hung_admin_broadcast_is_abandoned(
    escalation, admins, customer, make_trip, db_session, monkeypatch, now
):
    monkeypatch.setattr(settings, "dispatch_store_timeout_seconds", 0.05)

    async def hanging_broadcast(db, **kwargs):
        await asyncio.sleep(3600)

    monkeypatch.setattr(NotificationService, "broadcast", hanging_broadcast)
    trip = await make_trip(customer.id, created_at=now - timedelta(minutes=3))

    summary = await asyncio.wait_for(escalation.process(now=now), timeout=2)

    assert summary == {"early": 0, "warned": 0, "taken_over": 0}
    # No marker was written, so the next pass tries again
    trail = await get_audit_trail(db_session, TRIP_ENTITY, trip.id)
    assert trail == []
