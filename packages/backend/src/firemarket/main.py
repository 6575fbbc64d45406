"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (tables, realtime hub,
database engine). Middleware, CORS, and routers all registered here.

The realtime hub is built per app (not per module) and stored on
app.state, so every test app gets its own registry and handlers reach
it through a dependency.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from firemarket import __version__
from firemarket.api import api_router
from firemarket.config import settings
from firemarket.realtime.hub import RealtimeHub

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown.
    """
    logger.info(
        "firemarket.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from firemarket.db.engine import create_tables, engine
    from firemarket.realtime.pubsub import close_redis, init_redis

    if settings.create_tables:
        await create_tables()

    # Redis backs the rate limiter in every mode, and the relay in "redis" mode
    redis = None
    try:
        redis = await init_redis()
        logger.info("firemarket.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("firemarket.redis_unavailable", error=str(e))
        await close_redis()

    hub: RealtimeHub = app.state.realtime
    await hub.initialize(redis)

    yield

    logger.info("firemarket.shutdown")
    await hub.shutdown()
    await close_redis()
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Firemarket Realtime",
        description="Bid lifecycle and realtime notifications for the marketplace portal",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.realtime = RealtimeHub(
        heartbeat_interval=settings.ws_heartbeat_interval,
        stale_after=settings.ws_stale_after,
        backend=settings.realtime_backend,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from firemarket.middleware.rate_limit import RateLimitMiddleware
    from firemarket.middleware.request_id import RequestIdMiddleware
    from firemarket.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        write_rpm=settings.rate_limit_write_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from firemarket.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: firemarket.main:app)
app = create_app()
