"""
Transport trip database model.

Trips are created by the booking flow; the dispatch engine only assigns them.
"""

from sqlalchemy import Column, Integer, Float, ForeignKey, DateTime, Enum, Index
from sqlalchemy.sql import func
from ride_dispatch.app.db.session import Base
from ride_dispatch.app.models.trip_enums import TripStatus, PaymentStatus


class TransportTrip(Base):
    """
    Transport trip model.

    A paid ride request waiting for (or holding) a driver.
    """
    __tablename__ = "transport_trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Requesting customer
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    # Pickup
    scheduled_time = Column(DateTime(timezone=True), nullable=False)
    pickup_latitude = Column(Float, nullable=True)
    pickup_longitude = Column(Float, nullable=True)

    # Status
    status = Column(Enum(TripStatus), default=TripStatus.PENDING_ASSIGNMENT, nullable=False, index=True)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)

    # Driver assignment (set exactly once by the dispatcher or an admin)
    driver_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)
    pickup_time = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_transport_trips_dispatch', 'status', 'payment_status', 'created_at'),
    )

    def __repr__(self):
        return f"<TransportTrip(id={self.id}, driver_id={self.driver_id}, status='{self.status.value}')>"
