"""Realtime hub — owns the registry, dispatcher and background workers.

Learn: Instead of a module-level singleton, the app creates ONE hub in
create_app() and stores it on app.state. Route handlers receive the
dispatcher through a FastAPI dependency, so tests (or a future
broker-only deployment) can swap it without touching call sites:

    app.dependency_overrides[get_dispatcher] = lambda: fake_dispatcher

Lifecycle:
    initialize(redis) — pick the dispatcher backend, start supervisor (+ relay)
    shutdown()   — stop workers, close every live socket, clear registry
"""

import asyncio
from typing import Optional

import structlog
from fastapi import Depends
from starlette.requests import HTTPConnection

from firemarket.realtime.dispatcher import LocalDispatcher, NotificationDispatcher
from firemarket.realtime.registry import ConnectionRegistry
from firemarket.realtime.supervisor import GOING_AWAY, LivenessSupervisor

logger = structlog.get_logger()


class RealtimeHub:
    """Everything the WebSocket layer needs, with one lifecycle."""

    def __init__(
        self,
        *,
        heartbeat_interval: float = 30.0,
        stale_after: float = 60.0,
        backend: str = "memory",
        registry: Optional[ConnectionRegistry] = None,
    ):
        self.registry = registry or ConnectionRegistry()
        self.local = LocalDispatcher(self.registry)
        # Until initialize() picks a backend, deliver in-process.
        self.dispatcher: NotificationDispatcher = self.local
        self.supervisor = LivenessSupervisor(
            self.registry, interval=heartbeat_interval, stale_after=stale_after
        )
        self.backend = backend
        self._tasks: list[asyncio.Task] = []
        self.relay = None

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def initialize(self, redis=None) -> None:
        """Start background workers.

        `redis` is the client the app opened at startup (None if Redis is
        down). The "redis" backend needs it; without one the hub falls back
        to in-process delivery.
        """
        if self.running:
            return

        if self.backend == "redis":
            if redis is None:
                logger.warning("realtime.redis_unavailable", fallback="memory")
            else:
                from firemarket.realtime.pubsub import RedisDispatcher, RedisRelay

                self.dispatcher = RedisDispatcher(redis)
                self.relay = RedisRelay(redis, self.local)
                self._tasks.append(asyncio.create_task(self.relay.run()))

        self._tasks.append(asyncio.create_task(self.supervisor.run_loop()))
        logger.info(
            "realtime.initialized",
            backend=type(self.dispatcher).__name__,
            heartbeat_interval=self.supervisor.interval,
            stale_after=self.supervisor.stale_after,
        )

    async def shutdown(self) -> None:
        """Stop workers and drop every connection. The Redis client is the app's."""
        self.supervisor.stop()
        if self.relay is not None:
            self.relay.stop()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("realtime.worker_failed")
        self._tasks.clear()
        self.relay = None

        for conn in self.registry.all():
            self.registry.unregister(conn.connection_id)
            try:
                await conn.transport.close(code=GOING_AWAY, reason="server shutdown")
            except Exception:
                logger.debug("realtime.close_failed", connection_id=conn.connection_id)
        self.registry.clear()

        self.dispatcher = self.local
        logger.info("realtime.shutdown")

    def stats(self) -> dict:
        return {
            **self.registry.stats(),
            "backend": type(self.dispatcher).__name__,
        }


# ─── FastAPI dependencies ────────────────────────────────


def get_hub(conn: HTTPConnection) -> RealtimeHub:
    """Works for both HTTP requests and WebSocket connections."""
    return conn.app.state.realtime


def get_dispatcher(hub: RealtimeHub = Depends(get_hub)) -> NotificationDispatcher:
    return hub.dispatcher
