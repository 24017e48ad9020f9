"""
Driver directory lookups used by the dispatch fallback path.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_dispatch.app.models.user import User
from ride_dispatch.app.models.enums import UserRole


class DriverDirectory:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def first_available_driver(self) -> Optional[int]:
        """Lowest-id active driver marked available, or None."""
        stmt = (
            select(User.id)
            .where(
                User.role == UserRole.DRIVER,
                User.is_available.is_(True),
                User.is_active.is_(True),
            )
            .order_by(User.id.asc())
            .limit(1)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return result.scalar_one_or_none()
