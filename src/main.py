"""FastAPI application entry point for the compliance risk service."""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.middleware.error_handler import (
    compliance_exception_handler,
    global_exception_handler,
)
from src.api.middleware.logging import StructuredLoggingMiddleware
from src.api.routes.compliance import router as compliance_router
from src.api.routes.dashboard import router as dashboard_router
from src.api.routes.documents import router as documents_router
from src.api.routes.health import router as health_router
from src.api.routes.risk_scores import router as risk_scores_router
from src.config import settings
from src.domains.compliance.errors import ComplianceError
from src.shared.logging import setup_logging

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown logic."""
    global APP_START_TIME
    APP_START_TIME = time.time()
    setup_logging(settings.log_level)

    logger.info(
        "compliance_risk_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        analysis_model=settings.ollama_model,
        remote_extraction=bool(settings.extraction_service_url),
    )

    from src.db.database import engine, init_db

    await init_db()

    yield

    await engine.dispose()
    logger.info("compliance_risk_shutting_down")


app = FastAPI(
    title="Compliance Risk",
    description="Compliance item tracking and document risk assessment service",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Structured logging middleware
app.add_middleware(StructuredLoggingMiddleware)

app.add_exception_handler(ComplianceError, compliance_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Register routers
app.include_router(health_router)
app.include_router(compliance_router)
app.include_router(documents_router)
app.include_router(risk_scores_router)
app.include_router(dashboard_router)


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)
