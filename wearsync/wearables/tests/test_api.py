"""Tests for the sync, data and health endpoints."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from wearsync.config import Settings, get_settings
from wearsync.dependencies import get_gateway, get_health_store
from wearsync.routers import health, wearables
from wearsync.wearables.base import HealthStoreError, MetricType, SdkStatus, SyncInProgressError
from wearsync.wearables.sync.dedup import get_run_locks
from wearsync.wearables.tests.conftest import (
    TEST_INTEGRATION_ID,
    TEST_USER_ID,
    FakeHealthStore,
    InMemoryGateway,
    sample,
)

SERVICE_KEY = "test-service-key"


@pytest.fixture
def api_store() -> FakeHealthStore:
    return FakeHealthStore()


@pytest.fixture
def api_gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture
def client(api_store: FakeHealthStore, api_gateway: InMemoryGateway) -> TestClient:
    app = FastAPI()
    app.include_router(wearables.router, prefix="/api/v1")
    app.dependency_overrides[get_settings] = lambda: Settings(
        supabase_db_url="postgresql://localhost/test",
        sync_service_key=SERVICE_KEY,
        local_timezone="UTC",
    )
    app.dependency_overrides[get_health_store] = lambda: api_store
    app.dependency_overrides[get_gateway] = lambda: api_gateway
    get_run_locks().clear()
    yield TestClient(app)
    get_run_locks().clear()


def sync_body(**overrides) -> dict:
    body = {
        "user_id": str(TEST_USER_ID),
        "integration_id": str(TEST_INTEGRATION_ID),
        "days_to_sync": 2,
    }
    body.update(overrides)
    return body


class TestSyncEndpoint:
    def test_missing_service_key_rejected(self, client: TestClient) -> None:
        response = client.post("/api/v1/wearables/sync", json=sync_body())
        assert response.status_code == 401

    def test_wrong_service_key_rejected(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/wearables/sync", json=sync_body(), headers={"X-Service-Key": "nope"}
        )
        assert response.status_code == 401

    def test_sync_returns_report(
        self, client: TestClient, api_store: FakeHealthStore, api_gateway: InMemoryGateway
    ) -> None:
        api_store.add(
            sample(MetricType.STEPS, datetime.now(timezone.utc) - timedelta(minutes=1), count=640)
        )
        response = client.post(
            "/api/v1/wearables/sync", json=sync_body(), headers={"X-Service-Key": SERVICE_KEY}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["state"] == "done"
        assert data["records_written"] >= 1
        assert data["partial_failure_count"] == 0
        assert api_gateway.of_type("steps")

    def test_days_to_sync_validated(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/wearables/sync",
            json=sync_body(days_to_sync=120),
            headers={"X-Service-Key": SERVICE_KEY},
        )
        assert response.status_code == 422

    def test_uninitialized_platform_returns_503(
        self, client: TestClient, api_store: FakeHealthStore
    ) -> None:
        api_store.initialized = False
        response = client.post(
            "/api/v1/wearables/sync", json=sync_body(), headers={"X-Service-Key": SERVICE_KEY}
        )
        assert response.status_code == 503

    def test_run_in_progress_returns_409(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(
            wearables,
            "sync_to_wearables_data",
            AsyncMock(side_effect=SyncInProgressError("already running")),
        )
        response = client.post(
            "/api/v1/wearables/sync", json=sync_body(), headers={"X-Service-Key": SERVICE_KEY}
        )
        assert response.status_code == 409
        assert "already running" in response.json()["detail"]


class TestDataEndpoint:
    def test_lists_rows_with_decoded_json(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        recorded_at = datetime(2024, 6, 5, 8, 0, tzinfo=timezone.utc)
        fetch = AsyncMock(
            return_value=[
                {
                    "user_id": TEST_USER_ID,
                    "integration_id": TEST_INTEGRATION_ID,
                    "metric_type": "steps",
                    "metric_value": '{"count": 4200, "source": "com.google.android.apps.fitness"}',
                    "recorded_at": recorded_at,
                    "sync_date": recorded_at.date(),
                }
            ]
        )
        monkeypatch.setattr(wearables, "fetch", fetch)

        response = client.get(
            "/api/v1/wearables/data",
            params={"user_id": str(TEST_USER_ID), "metric_type": "steps"},
            headers={"X-Service-Key": SERVICE_KEY},
        )

        assert response.status_code == 200
        (row,) = response.json()
        assert row["metric_value"]["count"] == 4200
        query, *args = fetch.call_args.args
        assert "metric_type = $2" in query
        assert args == [TEST_USER_ID, "steps", 500]
        assert fetch.call_args.kwargs == {"user_id": TEST_USER_ID}


@pytest.fixture
def health_client(api_store: FakeHealthStore, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setattr(health, "_check_database", AsyncMock(return_value=True))
    app = FastAPI()
    app.include_router(health.router)
    app.dependency_overrides[get_settings] = lambda: Settings(
        supabase_db_url="postgresql://localhost/test",
        sync_service_key=SERVICE_KEY,
        local_timezone="Europe/Berlin",
    )
    app.dependency_overrides[get_health_store] = lambda: api_store
    return TestClient(app)


class TestHealthEndpoint:
    def test_healthy_when_all_dependencies_answer(self, health_client: TestClient) -> None:
        response = health_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["health_connect"] == "available"
        assert data["sync_config_version"]
        assert data["timezone"] == "Europe/Berlin"

    def test_sdk_not_available_is_degraded(
        self, health_client: TestClient, api_store: FakeHealthStore
    ) -> None:
        api_store.status = SdkStatus.NEEDS_UPDATE
        data = health_client.get("/health").json()
        assert data["status"] == "degraded"
        assert data["health_connect"] == "needs_update"

    def test_unreachable_bridge_is_degraded(
        self, health_client: TestClient, api_store: FakeHealthStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(
            api_store, "get_sdk_status", AsyncMock(side_effect=HealthStoreError("refused"))
        )
        data = health_client.get("/health").json()
        assert data["status"] == "degraded"
        assert data["health_connect"] == "unreachable"

    def test_database_down_is_degraded(
        self, health_client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(health, "_check_database", AsyncMock(return_value=False))
        data = health_client.get("/health").json()
        assert data["status"] == "degraded"
        assert data["database"] == "unreachable"
