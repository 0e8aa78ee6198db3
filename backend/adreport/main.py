"""FastAPI application entrypoint.

Configures CORS and observability, includes the report router, and exposes a
healthcheck endpoint.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from adreport import __version__, schemas
from adreport.deps import get_settings
from adreport.routers import report_data as report_data_router
from adreport.state import get_session_registry
from adreport.telemetry import init_observability


@asynccontextmanager
async def lifespan(app: FastAPI):
    status = init_observability()
    logger.info(f"[STARTUP] Observability: {status}")
    yield
    get_session_registry().close_all()
    logger.info("[SHUTDOWN] Report sessions closed")


def create_app() -> FastAPI:
    app = FastAPI(
        title="adreport API",
        description="""
        Report data cache and metric aggregation for Facebook Ads reports.

        This API provides endpoints for:
        - Evaluating report parameters (load, restore from cache, or re-slice)
        - Reading per-tab data for campaigns, ad sets, ads and creatives
        - Filtered, sorted and aggregated table views with period comparison
        """,
        version=__version__,
        lifespan=lifespan,
    )

    settings = get_settings()
    allowed_origins = settings.cors_origins
    logger.info(f"[CORS] Allowed origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(report_data_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    def health():
        return schemas.HealthResponse(status="ok")

    return app


app = create_app()
