"""Health check endpoint, public with no auth required.

Reports the three things a sync needs: the database behind wearables_data,
the Health Connect bridge, and a valid sync config.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from wearsync.dependencies import AppSettings, Store
from wearsync.services.supabase import get_pool
from wearsync.wearables.base import HealthStore, HealthStoreError, SdkStatus
from wearsync.wearables.config_loader import ConfigValidationError, get_sync_config

router = APIRouter(tags=["system"])
logger = logging.getLogger("wearsync.health")


async def _check_database() -> bool:
    try:
        pool = get_pool()
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
    except Exception as exc:
        logger.warning("Health check DB probe failed: %s", exc)
        return False
    return True


async def _check_bridge(store: HealthStore) -> str:
    """SDK status as seen through the bridge, or 'unreachable'."""
    try:
        status = await store.get_sdk_status()
    except HealthStoreError as exc:
        logger.warning("Health check bridge probe failed: %s", exc)
        return "unreachable"
    return status.value


def _sync_config_version() -> str | None:
    try:
        return get_sync_config().version
    except (ConfigValidationError, FileNotFoundError) as exc:
        logger.error("Health check found no usable sync config: %s", exc)
        return None


@router.get("/health")
async def health_check(settings: AppSettings, store: Store) -> dict:
    """Liveness probe. Returns 200 whenever the API process is up.

    ``status`` is 'healthy' only when the database answers, the bridge
    reports an available SDK, and the sync config loads.
    """
    db_ok = await _check_database()
    bridge = await _check_bridge(store)
    config_version = _sync_config_version()

    healthy = db_ok and bridge == SdkStatus.AVAILABLE.value and config_version is not None
    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.app_version,
        "database": "connected" if db_ok else "unreachable",
        "health_connect": bridge,
        "sync_config_version": config_version,
        "timezone": settings.local_timezone,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
