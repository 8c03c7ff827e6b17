"""Tests for best-effort status event publishing."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from codepolish.polish.events import PolishEventType, channel_for, publish_event, publish_status

pytestmark = pytest.mark.unit


def test_channel_name():
    assert channel_for(17) == "polish:17:events"


async def test_publish_without_redis_is_noop():
    await publish_event(None, 1, {"type": PolishEventType.STATUS_CHANGED})


async def test_publish_status_envelope(redis):
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel_for(3))
    await pubsub.get_message(timeout=1.0)

    await publish_status(redis, 3, "analyzing")

    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
    await pubsub.aclose()
    event = json.loads(message["data"])
    assert event["type"] == "polish.status.changed"
    assert event["status"] == "analyzing"
    assert event["status_label"] == "Analyzing code..."
    assert event["polish_id"] == 3
    assert "timestamp" in event


async def test_publish_failure_is_swallowed():
    redis = MagicMock()
    redis.publish = AsyncMock(side_effect=RedisConnectionError("connection refused"))

    await publish_status(redis, 5, "failed", "boom")

    redis.publish.assert_awaited_once()
