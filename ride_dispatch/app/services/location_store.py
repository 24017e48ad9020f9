"""
Live location store.

Reads recent driver positions joined with the driver directory.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_dispatch.app.models.driver_live_location import DriverLiveLocation
from ride_dispatch.app.models.user import User
from ride_dispatch.app.models.enums import UserRole
from ride_dispatch.app.schemas.dispatch import LiveLocationRow


class LiveLocationStore:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def recent_locations(
        self,
        staleness: timedelta,
        limit: int = 200,
        now: Optional[datetime] = None
    ) -> List[LiveLocationRow]:
        """
        Fetch the most recently updated live positions of available drivers.

        Rows older than `staleness` are ignored, not deleted.

        Args:
            staleness: Maximum age of a position
            limit: Maximum rows scanned
            now: Reference time (defaults to current UTC time)

        Returns:
            Rows ordered newest first
        """
        since = (now or datetime.utcnow()) - staleness

        stmt = (
            select(
                DriverLiveLocation.driver_id,
                DriverLiveLocation.latitude,
                DriverLiveLocation.longitude,
                User.role,
                User.is_available,
            )
            .join(User, User.id == DriverLiveLocation.driver_id)
            .where(
                DriverLiveLocation.updated_at >= since,
                User.role == UserRole.DRIVER,
                User.is_available.is_(True),
                User.is_active.is_(True),
            )
            .order_by(DriverLiveLocation.updated_at.desc())
            .limit(limit)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            rows = result.all()

        return [
            LiveLocationRow(
                driver_id=row.driver_id,
                latitude=row.latitude,
                longitude=row.longitude,
                driver_role=row.role.value,
                driver_available=row.is_available,
            )
            for row in rows
        ]
