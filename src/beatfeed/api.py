"""API router aggregating the scheduler, history and cron endpoints."""

from fastapi import APIRouter

from .routes.cron import router as cron_router
from .routes.history import router as history_router
from .routes.scheduler import router as scheduler_router

# Create main router
router = APIRouter()

# History is registered first so /scheduler/history is not shadowed
router.include_router(history_router, tags=["history"])
router.include_router(scheduler_router, tags=["scheduler"])
router.include_router(cron_router, tags=["cron"])
