from fastapi import FastAPI

from app.casetrack.api import api_router
from app.casetrack.core.config import settings
from app.casetrack.core.errors import setup_exception_handlers
from app.casetrack.core.logging import configure_logging
from app.casetrack.middleware.observability import ObservabilityMiddleware
from app.casetrack.middleware.organization import OrganizationContextMiddleware
from app.casetrack.middleware.trace import TraceIdMiddleware


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.APP_NAME)
    app.add_middleware(OrganizationContextMiddleware)
    app.add_middleware(TraceIdMiddleware)
    app.add_middleware(ObservabilityMiddleware)
    setup_exception_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()
