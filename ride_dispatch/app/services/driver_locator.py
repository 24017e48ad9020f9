"""
Driver locator.

Picks the driver to offer a trip to: the nearest live, available driver,
or the first available driver from the directory when live positions
cannot be used.
"""

import logging
from datetime import timedelta
from typing import Iterable, Optional, Tuple

from ride_dispatch.app.core.config import settings
from ride_dispatch.app.core.reliability import CircuitBreaker, CircuitOpenError, with_timeout
from ride_dispatch.app.models.enums import UserRole
from ride_dispatch.app.schemas.dispatch import DriverMatch, LiveLocationRow
from ride_dispatch.app.services.driver_directory import DriverDirectory
from ride_dispatch.app.services.geo import haversine_distance, is_valid_coordinate
from ride_dispatch.app.services.location_store import LiveLocationStore

logger = logging.getLogger(__name__)


def nearest_candidate(
    pickup_lat: float,
    pickup_lng: float,
    rows: Iterable[LiveLocationRow]
) -> Optional[Tuple[LiveLocationRow, float]]:
    """
    Linear nearest-neighbour scan over live positions.

    Rows that are not available drivers or carry non-finite coordinates
    are skipped. Ties keep the first row encountered.

    Returns:
        (row, distance_km) of the closest driver, or None
    """
    best = None
    best_distance = None
    for row in rows:
        if row.driver_role != UserRole.DRIVER.value or not row.driver_available:
            continue
        if not is_valid_coordinate(row.latitude, row.longitude):
            continue
        distance = haversine_distance(pickup_lat, pickup_lng, row.latitude, row.longitude)
        if best_distance is None or distance < best_distance:
            best = row
            best_distance = distance

    if best is None:
        return None
    return best, best_distance


class DriverLocator:

    def __init__(
        self,
        location_store: Optional[LiveLocationStore],
        directory: DriverDirectory,
        staleness: timedelta = None,
        scan_limit: int = None,
        circuit_breaker: CircuitBreaker = None,
        timeout_seconds: float = None
    ):
        self.location_store = location_store
        self.directory = directory
        if staleness is None:
            staleness = timedelta(minutes=settings.live_location_staleness_minutes)
        self.staleness = staleness
        if scan_limit is None:
            scan_limit = settings.live_location_scan_limit
        self.scan_limit = scan_limit
        self.circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=3, reset_timeout=30)
        self.timeout_seconds = timeout_seconds

    async def find_best_driver(self, pickup_lat: float, pickup_lng: float) -> Optional[DriverMatch]:
        """
        Find the best driver for a pickup point.

        Args:
            pickup_lat: Pickup latitude (degrees)
            pickup_lng: Pickup longitude (degrees)

        Returns:
            The chosen driver, or None when no driver is available
        """
        match = await self._find_nearest(pickup_lat, pickup_lng)
        if match is not None:
            return match
        return await self._find_fallback()

    async def _find_nearest(self, pickup_lat: float, pickup_lng: float) -> Optional[DriverMatch]:
        if self.location_store is None:
            return None

        try:
            rows = await self.circuit_breaker.call(self._load_recent_locations)
        except CircuitOpenError:
            logger.debug("Live location circuit open, skipping nearest-driver lookup")
            return None
        except Exception:
            logger.warning("Live location lookup failed, using fallback", exc_info=True)
            return None

        found = nearest_candidate(pickup_lat, pickup_lng, rows)
        if found is None:
            return None

        row, distance_km = found
        return DriverMatch(driver_id=row.driver_id, method="nearest", distance_km=distance_km)

    async def _load_recent_locations(self):
        return await with_timeout(
            "recent_locations",
            self.location_store.recent_locations(self.staleness, self.scan_limit),
            self.timeout_seconds,
        )

    async def _find_fallback(self) -> Optional[DriverMatch]:
        # Distance-unaware degraded mode, kept as the platform behaves today.
        try:
            driver_id = await with_timeout(
                "first_available_driver",
                self.directory.first_available_driver(),
                self.timeout_seconds,
            )
        except Exception:
            logger.warning("Fallback driver lookup failed", exc_info=True)
            return None

        if driver_id is None:
            return None

        logger.warning(
            "No live driver position usable, falling back to first available driver",
            extra={"driver_id": driver_id},
        )
        return DriverMatch(driver_id=driver_id, method="fallback")
