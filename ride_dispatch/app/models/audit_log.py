"""
Audit Log Database Model.

Tracks automated dispatch decisions; escalation entries double as
idempotency markers.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from sqlalchemy.sql import func
from ride_dispatch.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - DRIVER_AUTO_ASSIGNED
    - TRANSPORT_AUTO_DISPATCH_* escalation checkpoints
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_role = Column(String(50), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # What was acted upon
    entity = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=False)

    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    __table_args__ = (
        Index('ix_audit_logs_entity', 'entity', 'entity_id'),
    )

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity}:{self.entity_id})>"
