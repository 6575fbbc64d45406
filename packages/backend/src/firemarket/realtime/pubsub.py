"""Redis pub/sub — cross-process fan-out for realtime events.

Learn: The registry only knows the sockets held by THIS process. With
several API workers, a bid accepted on worker A must still reach a
supplier whose socket lives on worker B. So in "redis" mode:

    service → RedisDispatcher.publish(envelope) → Redis channel
    Redis channel → RedisRelay (one per process) → LocalDispatcher.deliver

Redis pub/sub is fire-and-forget: if no relay is listening, the message is
lost. That's fine — the Notification row is the durable record and clients
catch up over REST.

Channel: settings.realtime_channel (default "firemarket:realtime").
"""

import asyncio
import json
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog

from firemarket.config import settings
from firemarket.realtime.dispatcher import (
    LocalDispatcher,
    NotificationDispatcher,
    make_envelope,
)

logger = structlog.get_logger()

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


class RedisDispatcher(NotificationDispatcher):
    """Publishes envelopes to Redis; every process's relay delivers locally.

    The return value is the number of relays that received the envelope,
    not the number of sockets written (that happens elsewhere).
    """

    def __init__(self, redis: aioredis.Redis, channel: str = settings.realtime_channel):
        self.redis = redis
        self.channel = channel

    async def _publish(self, envelope: dict[str, Any]) -> int:
        try:
            return await self.redis.publish(self.channel, json.dumps(envelope, default=str))
        except Exception as e:
            logger.warning(
                "realtime.publish_failed",
                channel=self.channel,
                event_type=envelope["event_type"],
                error=str(e),
            )
            return 0

    async def send_to_user(self, user_id, event_type, data):
        return await self._publish(
            make_envelope("user", event_type, data, target=str(user_id))
        )

    async def send_to_topic(self, topic, event_type, data):
        return await self._publish(
            make_envelope("topic", event_type, data, target=str(topic))
        )

    async def broadcast(self, event_type, data, exclude_user_id=None):
        return await self._publish(
            make_envelope(
                "broadcast",
                event_type,
                data,
                exclude_user_id=str(exclude_user_id) if exclude_user_id else None,
            )
        )


class RedisRelay:
    """Subscribes to the realtime channel and replays envelopes locally.

    Learn: Losing the subscription must not silently stop delivery for
    this process, so run() resubscribes with exponential backoff until
    stop() is called. Envelopes published while disconnected are lost
    (pub/sub has no replay).

    Usage:
        relay = RedisRelay(redis, local_dispatcher)
        task = asyncio.create_task(relay.run())
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        local: LocalDispatcher,
        channel: str = settings.realtime_channel,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
    ):
        self.redis = redis
        self.local = local
        self.channel = channel
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.reconnects = 0
        self._delay = retry_delay
        self._running = False

    async def handle(self, raw: str) -> int:
        """Deliver one raw channel message. Bad payloads are dropped."""
        try:
            envelope = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            logger.warning("realtime.relay_bad_payload", channel=self.channel)
            return 0
        if not isinstance(envelope, dict) or "event_type" not in envelope:
            logger.warning("realtime.relay_bad_payload", channel=self.channel)
            return 0
        return await self.local.deliver(envelope)

    async def run(self) -> None:
        """Main loop — listen, and resubscribe after a failure, until stop()."""
        self._running = True
        while self._running:
            try:
                await self.listen()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning(
                    "realtime.relay_disconnected",
                    channel=self.channel,
                    error=str(e),
                    retry_in=self._delay,
                )
            if not self._running:
                break
            await asyncio.sleep(self._delay)
            self._delay = min(self._delay * 2, self.max_retry_delay)
            self.reconnects += 1
        logger.info("realtime.relay_stopped", channel=self.channel)

    async def listen(self) -> None:
        """One subscription. Returns or raises when the connection ends."""
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(self.channel)
            self._delay = self.retry_delay
            logger.info("realtime.relay_subscribed", channel=self.channel)
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    await self.handle(message["data"])
                except Exception:
                    logger.exception("realtime.relay_error")
        finally:
            try:
                await pubsub.unsubscribe(self.channel)
                await pubsub.aclose()
            except Exception as e:
                logger.debug("realtime.relay_close_failed", error=str(e))

    def stop(self) -> None:
        """Signal the loop to stop."""
        self._running = False
