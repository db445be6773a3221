"""wearsync API — FastAPI application entry point.

Run locally:
    uvicorn wearsync.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from wearsync.config import get_settings
from wearsync.routers import health, wearables
from wearsync.services.supabase import close_pool, init_pool
from wearsync.wearables.config_loader import get_sync_config

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("wearsync")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logging.getLogger("wearsync").setLevel(settings.log_level.upper())
    sync_config = get_sync_config()
    logger.info(
        "Starting wearsync API v%s [%s] tz=%s sync-config=v%s",
        settings.app_version,
        settings.environment,
        settings.local_timezone,
        sync_config.version,
    )
    await init_pool(settings)
    yield
    await close_pool()
    logger.info("wearsync API shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="wearsync API",
        description="Idempotent sync of Health Connect data into wearables_data.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(wearables.router, prefix=v1_prefix)

    return app


app = create_app()
