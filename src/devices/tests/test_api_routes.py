"""HTTP-level tests for the device routes, wired to in-memory collaborators."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from src.dependencies import (
    get_current_user,
    get_repository,
    get_sources,
    get_text_generator,
    get_vault,
)
from src.devices.repository import InMemoryRepository
from src.devices.sources import SourceRegistry
from src.devices.tests.conftest import OTHER_USER_ID, TEST_USER_ID, SampleSource
from src.devices.vault import CredentialVault
from src.errors import AuthenticationError, KaloriError
from src.main import create_app
from src.services.text_generation import FallbackTextGenerator

HEADERS = {"X-User-Id": str(TEST_USER_ID)}
PREFIX = "/api/v1/devices"


@pytest.fixture
def client(
    repository: InMemoryRepository,
    vault: CredentialVault,
    sources: SourceRegistry,
) -> TestClient:
    """App without its lifespan: no database pool, in-memory collaborators."""
    app = create_app()
    generator = FallbackTextGenerator()
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_vault] = lambda: vault
    app.dependency_overrides[get_sources] = lambda: sources
    app.dependency_overrides[get_text_generator] = lambda: generator
    return TestClient(app)


def _connect(client: TestClient, device_type: str = "FITBIT", **extra: Any) -> dict:
    body = {"deviceType": device_type, "deviceName": f"My {device_type}", **extra}
    response = client.post(f"{PREFIX}/connect", json=body, headers=HEADERS)
    assert response.status_code == 200, response.text
    return response.json()["data"]


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class TestIdentity:
    def test_missing_header_is_401(self, client: TestClient) -> None:
        response = client.get(PREFIX)
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Not authenticated"}

    def test_malformed_header_is_401(self, client: TestClient) -> None:
        response = client.get(PREFIX, headers={"X-User-Id": "not-a-uuid"})
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid user identity"

    @pytest.mark.asyncio
    async def test_dependency_without_identity_is_401(self) -> None:
        request = MagicMock(state=SimpleNamespace())
        with pytest.raises(AuthenticationError) as excinfo:
            await get_current_user(request)

        handler = create_app().exception_handlers[KaloriError]
        response = await handler(request, excinfo.value)

        assert response.status_code == 401
        assert json.loads(response.body) == {"success": False, "error": "Not authenticated"}

    def test_health_is_public(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        # No pool outside the lifespan
        assert body["status"] == "degraded"
        assert body["engine_config"] == "1.0"


# ---------------------------------------------------------------------------
# Connection lifecycle
# ---------------------------------------------------------------------------


class TestConnectionRoutes:
    def test_connect_and_list(self, client: TestClient) -> None:
        response = client.post(
            f"{PREFIX}/connect",
            json={"deviceType": "FITBIT", "deviceName": "Charge 6", "accessToken": "tok"},
            headers=HEADERS,
        )

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["message"] == "Device connected successfully"
        assert body["data"]["device_type"] == "FITBIT"
        assert body["data"]["is_primary"] is True
        assert "access_token" not in body["data"]

        listed = client.get(PREFIX, headers=HEADERS).json()["data"]
        assert [d["device_name"] for d in listed] == ["Charge 6"]

    def test_connect_unknown_type_is_400(self, client: TestClient) -> None:
        response = client.post(
            f"{PREFIX}/connect",
            json={"deviceType": "NOKIA", "deviceName": "Old"},
            headers=HEADERS,
        )
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid device type: NOKIA"}

    def test_connect_missing_name_is_400(self, client: TestClient) -> None:
        response = client.post(f"{PREFIX}/connect", json={"deviceType": "OURA"}, headers=HEADERS)
        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid request")

    def test_connect_backfills_trailing_days(
        self, client: TestClient, repository: InMemoryRepository, sample_source: SampleSource
    ) -> None:
        _connect(client, accessToken="tok")
        assert len(sample_source.calls) == 7
        assert len(repository.all_activity_records()) == 7

    def test_disconnect(self, client: TestClient) -> None:
        device = _connect(client)

        response = client.delete(f"{PREFIX}/{device['device_id']}", headers=HEADERS)

        assert response.status_code == 200
        listed = client.get(PREFIX, headers=HEADERS).json()["data"]
        assert listed[0]["connection_status"] == "DISCONNECTED"

    def test_other_users_device_is_404(self, client: TestClient) -> None:
        device = _connect(client)
        response = client.delete(
            f"{PREFIX}/{device['device_id']}", headers={"X-User-Id": str(OTHER_USER_ID)}
        )
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Device not found"}

    def test_invalid_device_id_is_404(self, client: TestClient) -> None:
        response = client.delete(f"{PREFIX}/not-a-uuid", headers=HEADERS)
        assert response.status_code == 404

    def test_connection_test(self, client: TestClient) -> None:
        device = _connect(client, accessToken="tok")
        response = client.post(f"{PREFIX}/{device['device_id']}/test", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["data"]["device_status"] == "CONNECTED"
        assert response.json()["message"] == "Device connection test successful"


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


class TestSyncRoutes:
    def test_sync_one_day(self, client: TestClient) -> None:
        device = _connect(client, "APPLE_HEALTH")
        response = client.post(
            f"{PREFIX}/{device['device_id']}/sync",
            json={
                "activityData": {
                    "date": "2026-02-23",
                    "steps": 9000,
                    "caloriesBurned": 450,
                    "activeMinutes": 60,
                    "bmr": 1750,
                }
            },
            headers=HEADERS,
        )

        assert response.status_code == 200
        record = response.json()["data"]
        assert record["date"] == "2026-02-23"
        assert record["steps"] == 9000
        assert record["source_device"] == "My APPLE_HEALTH"

    def test_sync_negative_value_is_400(self, client: TestClient) -> None:
        device = _connect(client, "APPLE_HEALTH")
        response = client.post(
            f"{PREFIX}/{device['device_id']}/sync",
            json={"activityData": {"steps": -5}},
            headers=HEADERS,
        )
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_sync_unknown_device_is_404(self, client: TestClient) -> None:
        response = client.post(
            f"{PREFIX}/{uuid4()}/sync",
            json={"activityData": {"steps": 100}},
            headers=HEADERS,
        )
        assert response.status_code == 404

    def test_bulk_sync_reports_failures(self, client: TestClient) -> None:
        device = _connect(client, "APPLE_HEALTH")
        response = client.post(
            f"{PREFIX}/{device['device_id']}/sync/bulk",
            json={
                "activityData": [
                    {"date": "2026-02-21", "steps": 4000},
                    {"date": "2026-02-22", "steps": "many"},
                    {"date": "2026-02-23", "steps": 6000},
                ]
            },
            headers=HEADERS,
        )

        data = response.json()["data"]
        assert response.status_code == 200
        assert [r["date"] for r in data["records"]] == ["2026-02-21", "2026-02-23"]
        assert data["failed_count"] == 1

    def test_sync_all(self, client: TestClient) -> None:
        _connect(client, "FITBIT", accessToken="tok")
        _connect(client, "APPLE_HEALTH")

        response = client.post(f"{PREFIX}/sync-all", headers=HEADERS)

        assert response.json()["data"] == {
            "total_devices": 2,
            "successful_syncs": 1,
            "failed_syncs": 0,
            "skipped_syncs": 1,
        }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReadRoutes:
    def _push(self, client: TestClient, day: str, steps: int) -> None:
        device = _connect(client, "APPLE_HEALTH")
        client.post(
            f"{PREFIX}/{device['device_id']}/sync",
            json={"activityData": {"date": day, "steps": steps, "caloriesBurned": 400, "bmr": 1600}},
            headers=HEADERS,
        )

    def test_activity_range(self, client: TestClient) -> None:
        self._push(client, "2026-02-20", 1000)
        self._push(client, "2026-02-23", 3000)

        response = client.get(f"{PREFIX}/activity/2026-02-21/2026-02-23", headers=HEADERS)

        assert [r["steps"] for r in response.json()["data"]] == [3000]

    def test_activity_bad_date_is_400(self, client: TestClient) -> None:
        response = client.get(f"{PREFIX}/activity/2026-13-01/2026-02-23", headers=HEADERS)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid startDate format, expected YYYY-MM-DD"

    @pytest.mark.parametrize("value", ["20260223", "2026-W09-1", "2026-02-23T00:00:00"])
    def test_non_calendar_date_forms_are_400(self, client: TestClient, value: str) -> None:
        balance = client.get(f"{PREFIX}/balance/{value}", headers=HEADERS)
        activity = client.get(f"{PREFIX}/activity/{value}/2026-02-23", headers=HEADERS)
        recommendation = client.get(f"{PREFIX}/recommendations/{value}", headers=HEADERS)

        assert balance.status_code == 400
        assert balance.json() == {
            "success": False,
            "error": "Invalid date format, expected YYYY-MM-DD",
        }
        assert activity.status_code == 400
        assert recommendation.status_code == 400

    def test_balance(self, client: TestClient) -> None:
        self._push(client, "2026-02-23", 8000)

        response = client.get(f"{PREFIX}/balance/2026-02-23", headers=HEADERS)

        assert response.json()["data"] == {
            "date": "2026-02-23",
            "caloriesIn": 0,
            "caloriesOut": 2000,
            "balance": -2000,
            "balanceStatus": "significant_imbalance",
        }

    def test_balance_without_activity(self, client: TestClient) -> None:
        response = client.get(f"{PREFIX}/balance/2026-02-23", headers=HEADERS)
        body = response.json()
        assert response.status_code == 200
        assert body.get("data") is None
        assert body["message"] == "No activity data for this date"

    def test_recommendation_falls_back(self, client: TestClient) -> None:
        self._push(client, "2026-02-23", 3000)

        data = client.get(f"{PREFIX}/recommendations/2026-02-23", headers=HEADERS).json()["data"]

        assert data["generated_by"] == "fallback"
        assert data["calorie_adjustment"] == 1000

    def test_analytics(self, client: TestClient) -> None:
        device = _connect(client, "FITBIT", accessToken="tok")

        response = client.get(f"{PREFIX}/{device['device_id']}/analytics?days=7", headers=HEADERS)

        data = response.json()["data"]
        assert data["period_days"] == 7
        assert data["total_records"] == 7
        assert set(data["trends"]) == {"steps_trend", "calories_trend", "active_minutes_trend"}

    @pytest.mark.parametrize("days", ["0", "366", "abc"])
    def test_analytics_bad_window_is_400(self, client: TestClient, days: str) -> None:
        device = _connect(client)
        response = client.get(
            f"{PREFIX}/{device['device_id']}/analytics?days={days}", headers=HEADERS
        )
        assert response.status_code == 400
