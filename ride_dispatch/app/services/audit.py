"""
Audit logging service for automated dispatch decisions.

Provides centralized logging of system actions on transport trips.
"""

from typing import Optional, Dict, Any, Iterable, Set
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from ride_dispatch.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    DRIVER_AUTO_ASSIGNED = "DRIVER_AUTO_ASSIGNED"

    # Escalation checkpoints
    DISPATCH_EARLY_ESCALATION = "TRANSPORT_AUTO_DISPATCH_NO_ACCEPT_2MIN"
    DISPATCH_WARN_ADMIN = "TRANSPORT_AUTO_DISPATCH_WARN_ADMIN"
    DISPATCH_ESCALATED_TO_ADMIN = "TRANSPORT_AUTO_DISPATCH_ESCALATED_TO_ADMIN"


TRIP_ENTITY = "TRANSPORT_TRIP"
SYSTEM_ROLE = "SYSTEM"


async def log_event(
    db: AsyncSession,
    action: str,
    entity: str,
    entity_id: int,
    actor_id: Optional[int] = None,
    actor_role: Optional[str] = SYSTEM_ROLE,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Log a system event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        entity: Kind of record acted upon
        entity_id: ID of record acted upon
        actor_id: ID of user performing the action (None for the dispatcher)
        actor_role: Role of actor
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_role=actor_role,
        action=action,
        entity=entity,
        entity_id=entity_id,
        meta_data=metadata
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


async def get_logged_actions(
    db: AsyncSession,
    entity: str,
    entity_ids: Iterable[int],
    actions: Iterable[str]
) -> Dict[int, Set[str]]:
    """
    Map each entity ID to the subset of `actions` already logged for it.

    Used as an idempotency check for one-shot system events.
    """
    entity_ids = list(entity_ids)
    if not entity_ids:
        return {}

    result = await db.execute(
        select(AuditLog.entity_id, AuditLog.action).where(
            AuditLog.entity == entity,
            AuditLog.entity_id.in_(entity_ids),
            AuditLog.action.in_(list(actions))
        )
    )

    logged: Dict[int, Set[str]] = {}
    for entity_id, action in result.all():
        logged.setdefault(entity_id, set()).add(action)
    return logged


async def get_audit_trail(
    db: AsyncSession,
    entity: str,
    entity_id: int,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve the audit trail of one record, most recent first.
    """
    query = select(AuditLog).where(
        AuditLog.entity == entity,
        AuditLog.entity_id == entity_id
    ).order_by(desc(AuditLog.timestamp), desc(AuditLog.id)).limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
