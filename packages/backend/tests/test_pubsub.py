"""Redis fan-out tests with an in-memory stand-in for the Redis client."""

import asyncio
import json

import pytest

from firemarket.events import types as frames
from firemarket.realtime.dispatcher import LocalDispatcher
from firemarket.realtime.pubsub import RedisDispatcher, RedisRelay
from firemarket.realtime.registry import ConnectionRegistry

from realtime_fakes import FakePubSub, FakeTransport, ScriptedRedis


class PublishOnlyRedis:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel, message):
        if self.fail:
            raise ConnectionError("redis down")
        self.published.append((channel, message))
        return 1


@pytest.mark.asyncio
async def test_dispatcher_publishes_envelopes():
    redis = PublishOnlyRedis()
    dispatcher = RedisDispatcher(redis, channel="test:rt")

    assert await dispatcher.notify_new_bid("u1", {"bidId": "b1"}) == 1
    assert await dispatcher.broadcast_notification({}, exclude_user_id="admin") == 1

    channel, raw = redis.published[0]
    envelope = json.loads(raw)
    assert channel == "test:rt"
    assert envelope["mode"] == "user"
    assert envelope["target"] == "u1"
    assert envelope["event_type"] == frames.NEW_BID
    assert json.loads(redis.published[1][1])["exclude_user_id"] == "admin"


@pytest.mark.asyncio
async def test_publish_failure_is_swallowed():
    dispatcher = RedisDispatcher(PublishOnlyRedis(fail=True))
    assert await dispatcher.notify_user("u1", {}) == 0


@pytest.mark.asyncio
async def test_relay_delivers_published_envelope_locally():
    """What worker A publishes, worker B's relay writes to its own sockets."""
    redis = PublishOnlyRedis()
    await RedisDispatcher(redis).notify_order_status("u1", {"status": "closed"})

    registry = ConnectionRegistry()
    transport = FakeTransport()
    registry.bind(registry.register(transport), "u1")
    relay = RedisRelay(redis, LocalDispatcher(registry))

    assert await relay.handle(redis.published[0][1]) == 1
    assert transport.frames[0]["type"] == frames.ORDER_STATUS_CHANGED
    assert transport.frames[0]["data"] == {"status": "closed"}


@pytest.mark.asyncio
async def test_relay_drops_bad_payloads():
    relay = RedisRelay(PublishOnlyRedis(), LocalDispatcher(ConnectionRegistry()))
    assert await relay.handle("not json") == 0
    assert await relay.handle(json.dumps([1, 2])) == 0
    assert await relay.handle(json.dumps({"mode": "user"})) == 0


@pytest.mark.asyncio
async def test_relay_resubscribes_after_connection_loss():
    """A dropped subscription is retried; delivery resumes on the new one."""
    envelope = json.dumps({
        "mode": "user",
        "target": "u1",
        "event_type": frames.NOTIFICATION,
        "data": {"title": "back"},
    })
    lost = FakePubSub(fail=ConnectionError("redis connection lost"))
    healthy = FakePubSub(messages=[
        {"type": "subscribe", "data": 1},
        {"type": "message", "data": envelope},
    ])
    redis = ScriptedRedis(lost, healthy)

    registry = ConnectionRegistry()
    transport = FakeTransport()
    registry.bind(registry.register(transport), "u1")
    relay = RedisRelay(redis, LocalDispatcher(registry), retry_delay=0)

    task = asyncio.create_task(relay.run())
    try:
        for _ in range(50):
            if transport.sent:
                break
            await asyncio.sleep(0)
    finally:
        relay.stop()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    assert redis.opened == 2
    assert relay.reconnects == 1
    assert lost.closed is True
    assert transport.frames[0]["type"] == frames.NOTIFICATION
    assert transport.frames[0]["data"] == {"title": "back"}
