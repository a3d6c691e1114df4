"""FastAPI application entrypoint.

Configures logging, Sentry and CORS, includes routers, and exposes a
healthcheck endpoint.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from querybuilder.config import get_settings
from querybuilder.routers import query_builder as query_builder_router
from querybuilder.telemetry import init_sentry

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    init_sentry(settings)

    app = FastAPI(
        title="Query Builder API",
        description="""
        Timeseries engine behind the dashboard query builder.

        - Executes traces, logs and metrics queries against the analytics query engine
        - Retries empty ranges over wider fallback windows
        - Evaluates formulas across queries and compares against the previous period
        """,
        version="1.0.0",
    )

    # BACKEND_CORS_ORIGINS can be a comma-separated list: "https://app.example.com,http://localhost:3000"
    allowed_origins = [origin.strip() for origin in settings.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]
    logger.info(f"[CORS] Allowed origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(query_builder_router.router)

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    def health():
        return HealthResponse(status="ok")

    return app


app = create_app()
