"""Best-effort reward event broadcast over Redis pub/sub."""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

LEVEL_UP_CHANNEL = "pubsub:level_up"
ACHIEVEMENT_CHANNEL = "pubsub:achievement_unlocked"
REWARD_CHANNEL = "pubsub:reward"


async def publish_event(redis: object | None, channel: str, payload: dict[str, Any]) -> None:
    """Publish ``payload`` as JSON. A missing or failing Redis never fails the caller."""
    if redis is None:
        return
    try:
        await redis.publish(channel, json.dumps(payload, default=str))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("Failed to publish %s event", channel, exc_info=True)


async def publish_level_up(redis: object | None, user_id: int, level: int, levels_gained: int) -> None:
    """Announce a level change. Call only after the credit that caused it is committed."""
    if levels_gained <= 0:
        return
    await publish_event(redis, LEVEL_UP_CHANNEL, {
        "user_id": user_id,
        "old_level": level - levels_gained,
        "new_level": level,
        "levels_gained": levels_gained,
    })
