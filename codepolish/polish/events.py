"""Polish status events published to Redis Pub/Sub.

Published to the polish:{id}:events channel as a flat JSON envelope with a
'type' discriminator. Publishing is best-effort: a missing or unreachable Redis
never affects the job itself.
"""

import json
from datetime import UTC, datetime

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = structlog.get_logger(__name__)


class PolishEventType:
    """Event type constants for the polish:{id}:events channel."""

    STATUS_CHANGED = "polish.status.changed"
    CREDIT_REFUNDED = "polish.credit.refunded"


STATUS_LABELS: dict[str, str] = {
    "pending": "Queued...",
    "analyzing": "Analyzing code...",
    "polishing": "Polishing code...",
    "completed": "Polish complete!",
    "failed": "Polish failed",
}

TERMINAL_STATUSES = frozenset({"completed", "failed"})


def channel_for(polish_id: int) -> str:
    return f"polish:{polish_id}:events"


async def publish_event(redis: Redis | None, polish_id: int, event: dict) -> None:
    """Publish a typed event to the polish channel.

    Timestamp and polish_id are added automatically. No-op when redis is None.
    """
    if redis is None:
        return

    event.setdefault("timestamp", datetime.now(UTC).isoformat())
    event["polish_id"] = polish_id
    try:
        await redis.publish(channel_for(polish_id), json.dumps(event))
    except (RedisError, OSError) as e:
        logger.warning(
            "polish_event_publish_failed",
            polish_id=polish_id,
            event_type=event.get("type"),
            error=str(e),
            error_type=type(e).__name__,
        )


async def publish_status(redis: Redis | None, polish_id: int, status: str, message: str = "") -> None:
    await publish_event(
        redis,
        polish_id,
        {
            "type": PolishEventType.STATUS_CHANGED,
            "status": status,
            "status_label": STATUS_LABELS.get(status, status),
            "message": message,
        },
    )
