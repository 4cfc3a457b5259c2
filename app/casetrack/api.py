from fastapi import APIRouter

from app.casetrack.core.config import settings
from app.casetrack.routers.access import router as access_router
from app.casetrack.routers.health import router as health_router
from app.casetrack.routers.metrics import router as metrics_router
from app.casetrack.routers.status import router as status_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(status_router, prefix="/casetrack", tags=["status"])
api_router.include_router(access_router, prefix="/casetrack/access", tags=["access"])
if settings.METRICS_ENABLED:
    api_router.include_router(metrics_router, tags=["ops"])
