"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException

from wearsync.config import Settings, get_settings
from wearsync.wearables.adapters import HealthConnectBridge
from wearsync.wearables.base import HealthStore, WearablesGateway
from wearsync.wearables.sync.persistence import PostgresWearablesGateway


async def require_service_key(
    settings: Annotated[Settings, Depends(get_settings)],
    x_service_key: Annotated[str | None, Header()] = None,
) -> None:
    """Reject callers that do not present the shared sync service key."""
    if not x_service_key or not hmac.compare_digest(
        x_service_key.encode(), settings.sync_service_key.encode()
    ):
        raise HTTPException(status_code=401, detail="Invalid service key")


def get_health_store(
    settings: Annotated[Settings, Depends(get_settings)],
) -> HealthStore:
    return HealthConnectBridge(
        settings.health_bridge_url, timeout_s=settings.health_bridge_timeout_s
    )


def get_gateway() -> WearablesGateway:
    return PostgresWearablesGateway()


# Annotated shortcuts for route signatures
AppSettings = Annotated[Settings, Depends(get_settings)]
ServiceKey = Depends(require_service_key)
Store = Annotated[HealthStore, Depends(get_health_store)]
Gateway = Annotated[WearablesGateway, Depends(get_gateway)]
