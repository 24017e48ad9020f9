"""
Real-time notification sink.

Trip updates are published on Redis pub/sub; socket gateways relay each
channel (driver:<id>, user:<id>, admins) to connected clients.
"""

import json
import logging
from typing import Any, Dict, Optional, Protocol

from ride_dispatch.app.core.reliability import with_timeout

logger = logging.getLogger(__name__)

TRIP_UPDATE_EVENT = "trip:update"
ADMINS_CHANNEL = "admins"


def driver_channel(driver_id: int) -> str:
    return f"driver:{driver_id}"


def user_channel(user_id: int) -> str:
    return f"user:{user_id}"


class RealtimeNotifier(Protocol):
    async def emit(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        ...


class RedisNotifier:
    """Publishes `{"event", "payload"}` envelopes on Redis channels."""

    def __init__(self, redis_client):
        self.redis = redis_client

    async def emit(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        message = json.dumps({"event": event, "payload": payload}, default=str)
        await self.redis.publish(channel, message)


async def emit_best_effort(
    notifier: Optional[RealtimeNotifier],
    channel: str,
    event: str,
    payload: Dict[str, Any]
) -> bool:
    """
    Emit one event, swallowing delivery failures and timeouts.

    Returns:
        True if the notifier accepted the event
    """
    if notifier is None:
        return False
    try:
        await with_timeout("emit", notifier.emit(channel, event, payload))
        return True
    except Exception:
        logger.warning(
            "Real-time delivery failed",
            exc_info=True,
            extra={"channel": channel, "event": event},
        )
        return False
