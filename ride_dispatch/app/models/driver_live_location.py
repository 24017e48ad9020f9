"""
Driver live location database model.

Latest reported position per driver, written by the location-reporting path.
"""

from sqlalchemy import Column, Integer, Float, ForeignKey, DateTime
from sqlalchemy.sql import func
from ride_dispatch.app.db.session import Base


class DriverLiveLocation(Base):
    """
    Driver Live Location model.

    One row per driver, overwritten on every GPS report.
    """
    __tablename__ = "driver_live_locations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey('users.id'), nullable=False, unique=True)

    # GPS coordinates
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<DriverLiveLocation(driver_id={self.driver_id}, lat={self.latitude}, lng={self.longitude})>"
