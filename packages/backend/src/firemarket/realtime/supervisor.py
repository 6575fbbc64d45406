"""Liveness supervisor — evicts connections that stopped pinging.

Learn: Clients that vanish without a clean close (laptop lid, network
partition, crashed tab) never trigger a disconnect event, so their entries
would sit in the registry forever. Every `interval` seconds this worker
sweeps the registry and force-closes anything whose last ping is older
than `stale_after`.

stale_after must exceed the client heartbeat interval plus jitter —
otherwise a healthy but slightly late client gets kicked. The defaults
(30s sweep, 60s window) tolerate one missed heartbeat.

This runs as a background task in the FastAPI lifespan:

    supervisor = LivenessSupervisor(registry)
    task = asyncio.create_task(supervisor.run_loop())
"""

import asyncio

import structlog

from firemarket.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()

GOING_AWAY = 1001


class LivenessSupervisor:
    """Periodic sweep over the registry."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        interval: float = 30.0,
        stale_after: float = 60.0,
    ):
        self.registry = registry
        self.interval = interval
        self.stale_after = stale_after
        self._running = False

    async def run_loop(self) -> None:
        """Main loop — sweep, sleep, repeat until stop()."""
        self._running = True
        logger.info(
            "liveness.started",
            interval=self.interval,
            stale_after=self.stale_after,
        )

        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("liveness.error")

    async def sweep(self) -> list[str]:
        """Evict every stale connection. Returns the evicted ids.

        The stale list is computed once up front; closing a transport awaits,
        so the registry may change underneath us. Each connection is
        unregistered BEFORE its transport is closed so a concurrent dispatch
        can't pick it up mid-close.
        """
        evicted = []
        for connection_id in self.registry.stale(self.stale_after):
            conn = self.registry.unregister(connection_id)
            if conn is None:
                continue  # closed on its own meanwhile
            evicted.append(connection_id)
            try:
                await conn.transport.close(code=GOING_AWAY, reason="liveness timeout")
            except Exception as e:
                logger.debug(
                    "liveness.close_failed",
                    connection_id=connection_id,
                    error=str(e),
                )

        if evicted:
            logger.info(
                "liveness.evicted",
                count=len(evicted),
                remaining=len(self.registry),
            )
        return evicted

    def stop(self) -> None:
        """Signal the loop to stop."""
        self._running = False
        logger.info("liveness.stopping")
