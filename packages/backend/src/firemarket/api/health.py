"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running
and dependencies (database, Redis when the realtime backend uses it)
are reachable. Also reports live connection counts.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from firemarket import __version__
from firemarket.config import settings
from firemarket.db.engine import get_db
from firemarket.realtime.hub import RealtimeHub, get_hub

router = APIRouter()


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    # Check Redis (only when realtime fan-out depends on it)
    if settings.realtime_backend == "redis":
        try:
            from redis.asyncio import from_url

            r = from_url(settings.redis_url)
            await r.ping()
            await r.aclose()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {e}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, **checks, "realtime": hub.stats()}
