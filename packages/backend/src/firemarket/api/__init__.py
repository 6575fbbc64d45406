"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter. This protects all routes in each router
without modifying individual handlers. Health is open (no auth required).
"""

from fastapi import APIRouter, Depends

from firemarket.api.health import router as health_router
from firemarket.api.marketplace import router as marketplace_router
from firemarket.api.notifications import router as notifications_router
from firemarket.api.realtime import router as realtime_router
from firemarket.api.reviews import router as reviews_router
from firemarket.auth.dependencies import get_current_user

# All protected routers require authentication
_auth = [Depends(get_current_user)]

api_router = APIRouter(prefix="/api/v1")

# Open routes
api_router.include_router(health_router, tags=["health"])

# Protected routes: valid JWT required
api_router.include_router(marketplace_router, tags=["marketplace", "dashboard"], dependencies=_auth)
api_router.include_router(notifications_router, tags=["notifications"], dependencies=_auth)
api_router.include_router(reviews_router, tags=["reviews"], dependencies=_auth)
api_router.include_router(realtime_router, tags=["realtime"], dependencies=_auth)
