"""Tests for vendor activity sources — normalization and mocked HTTP."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.config import Settings
from src.devices.base import DeviceTokens, DeviceType, utc_now
from src.devices.config_loader import EngineConfig
from src.devices.sources import (
    FitbitSource,
    GoogleFitSource,
    OuraSource,
    PolarSource,
    PushOnlySource,
    SourceRegistry,
    WhoopSource,
    WithingsSource,
)
from src.devices.sources.polar import parse_duration_minutes
from src.devices.tests.conftest import TEST_DATE
from src.errors import NoActivityDataError, UpstreamError

TOKENS = DeviceTokens(access_token="access-123", refresh_token="refresh-456")


def _mock_client(body: object = None, status_error: int | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_error or 200
    if status_error:
        request = httpx.Request("GET", "https://vendor.example")
        response.raise_for_status = MagicMock(
            side_effect=httpx.HTTPStatusError(
                "error", request=request, response=httpx.Response(status_error, request=request)
            )
        )
    else:
        response.raise_for_status = MagicMock()
    response.json = MagicMock(return_value=body)
    client = MagicMock()
    client.request = AsyncMock(return_value=response)
    return client


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestFitbit:
    RAW = {
        "summary": {
            "steps": 10432,
            "activityCalories": 612,
            "caloriesBMR": 1705,
            "caloriesOut": 2317,
            "fairlyActiveMinutes": 22,
            "veryActiveMinutes": 31,
            "restingHeartRate": 58,
            "distances": [
                {"activity": "total", "distance": 7.81},
                {"activity": "tracker", "distance": 7.81},
            ],
        }
    }

    def test_normalize(self) -> None:
        payload = FitbitSource().normalize(TEST_DATE, self.RAW)
        assert payload.day == TEST_DATE
        assert payload.steps == 10432
        assert payload.calories_burned == 612
        assert payload.active_minutes == 53
        assert payload.bmr == 1705
        assert payload.heart_rate == 58
        assert payload.distance == 7.81

    def test_missing_fields_default(self) -> None:
        payload = FitbitSource(default_bmr_kcal=1650).normalize(TEST_DATE, {"summary": {"steps": 120}})
        assert payload.steps == 120
        assert payload.calories_burned == 0
        assert payload.bmr == 1650
        assert payload.distance is None

    @pytest.mark.parametrize("raw", [{}, {"summary": {}}, {"summary": None}])
    def test_no_summary_is_no_data(self, raw: dict) -> None:
        with pytest.raises(NoActivityDataError, match="Fitbit has no activity for 2026-02-23"):
            FitbitSource().normalize(TEST_DATE, raw)

    @pytest.mark.asyncio
    async def test_fetch_hits_daily_summary(self) -> None:
        client = _mock_client(self.RAW)
        source = FitbitSource(http_client=client)

        payload = await source.fetch_activity(TEST_DATE, TOKENS)

        assert payload.steps == 10432
        method, url = client.request.call_args.args
        assert method == "GET"
        assert url.endswith("/1/user/-/activities/date/2026-02-23.json")
        assert client.request.call_args.kwargs["headers"] == {"Authorization": "Bearer access-123"}


class TestOura:
    RAW = {
        "data": [
            {
                "day": "2026-02-23",
                "steps": 8421,
                "active_calories": 412,
                "total_calories": 2250,
                "medium_activity_time": 1800,
                "high_activity_time": 600,
                "equivalent_walking_distance": 6830,
            }
        ]
    }

    def test_normalize(self) -> None:
        payload = OuraSource().normalize(TEST_DATE, self.RAW)
        assert payload.steps == 8421
        assert payload.calories_burned == 412
        assert payload.bmr == 1838
        assert payload.active_minutes == 40
        assert payload.distance == 6.83

    @pytest.mark.asyncio
    async def test_fetch_passes_single_day_window(self) -> None:
        client = _mock_client(self.RAW)
        await OuraSource(http_client=client).fetch_activity(TEST_DATE, TOKENS)
        params = client.request.call_args.kwargs["params"]
        assert params == {"start_date": "2026-02-23", "end_date": "2026-02-23"}

    def test_other_day_only_is_no_data(self) -> None:
        other_day = {"data": [dict(self.RAW["data"][0], day="2026-02-22")]}
        with pytest.raises(NoActivityDataError):
            OuraSource().normalize(TEST_DATE, other_day)

    @pytest.mark.asyncio
    async def test_empty_collection_is_no_data(self) -> None:
        source = OuraSource(http_client=_mock_client({"data": []}))
        with pytest.raises(NoActivityDataError):
            await source.fetch_activity(TEST_DATE, TOKENS)


class TestGoogleFit:
    RAW = {
        "bucket": [
            {
                "dataset": [
                    {
                        "dataSourceId": "derived:com.google.step_count.delta:com.google.android.gms:aggregated",
                        "point": [{"value": [{"intVal": 7000}]}, {"value": [{"intVal": 500}]}],
                    },
                    {
                        "dataSourceId": "derived:com.google.calories.expended:com.google.android.gms:aggregated",
                        "point": [{"value": [{"fpVal": 2150.4}]}],
                    },
                    {
                        "dataSourceId": "derived:com.google.active_minutes:com.google.android.gms:aggregated",
                        "point": [{"value": [{"intVal": 42}]}],
                    },
                    {
                        "dataSourceId": "derived:com.google.distance.delta:com.google.android.gms:aggregated",
                        "point": [{"value": [{"fpVal": 5400.0}]}],
                    },
                    {
                        "dataSourceId": "derived:com.google.heart_rate.bpm:com.google.android.gms:merged",
                        "point": [{"value": [{"fpVal": 70.0}]}, {"value": [{"fpVal": 80.0}]}],
                    },
                ]
            }
        ]
    }

    def test_normalize(self) -> None:
        payload = GoogleFitSource(default_bmr_kcal=1800).normalize(TEST_DATE, self.RAW)
        assert payload.steps == 7500
        assert payload.calories_burned == 350.4
        assert payload.active_minutes == 42
        assert payload.distance == 5.4
        assert payload.heart_rate == 75
        assert payload.bmr == 1800

    def test_total_below_bmr_clamps_to_zero(self) -> None:
        raw = {"bucket": [{"dataset": [{
            "dataSourceId": "derived:com.google.calories.expended:x",
            "point": [{"value": [{"fpVal": 900.0}]}],
        }]}]}
        assert GoogleFitSource().normalize(TEST_DATE, raw).calories_burned == 0

    def test_empty_buckets_are_no_data(self) -> None:
        raw = {"bucket": [{"dataset": [{
            "dataSourceId": "derived:com.google.step_count.delta:x",
            "point": [],
        }]}]}
        with pytest.raises(NoActivityDataError):
            GoogleFitSource().normalize(TEST_DATE, raw)

    @pytest.mark.asyncio
    async def test_fetch_posts_aggregate(self) -> None:
        client = _mock_client(self.RAW)
        await GoogleFitSource(http_client=client).fetch_activity(TEST_DATE, TOKENS)
        method, url = client.request.call_args.args
        body = client.request.call_args.kwargs["json"]
        assert method == "POST"
        assert url.endswith("/users/me/dataset:aggregate")
        assert body["bucketByTime"] == {"durationMillis": 86_400_000}
        assert body["endTimeMillis"] - body["startTimeMillis"] == 86_400_000


class TestWhoop:
    def test_normalize_converts_kilojoules(self) -> None:
        raw = {"records": [{"score": {"kilojoule": 10460.0, "average_heart_rate": 64}}]}
        payload = WhoopSource(default_bmr_kcal=1800).normalize(TEST_DATE, raw)
        # 10460 kJ / 4.184 = 2500 kcal total → 700 active
        assert payload.calories_burned == 700.0
        assert payload.heart_rate == 64
        assert payload.steps == 0

    @pytest.mark.parametrize(
        "raw", [{"records": []}, {"records": [{"score_state": "PENDING_SCORE", "score": None}]}]
    )
    def test_no_scored_cycle_is_no_data(self, raw: dict) -> None:
        with pytest.raises(NoActivityDataError):
            WhoopSource().normalize(TEST_DATE, raw)


class TestPolar:
    def test_normalize(self) -> None:
        raw = {
            "steps": 9100,
            "calories": 2400,
            "active_calories": 560,
            "active_duration": "PT1H15M30S",
            "distance_from_steps": 6500.0,
        }
        payload = PolarSource().normalize(TEST_DATE, raw)
        assert payload.steps == 9100
        assert payload.calories_burned == 560
        assert payload.bmr == 1840
        assert payload.active_minutes == 75
        assert payload.distance == 6.5

    @pytest.mark.parametrize(
        ("value", "minutes"),
        [("PT45M", 45), ("PT2H", 120), ("PT90S", 1), ("", 0), (None, 0), ("P1D", 0)],
    )
    def test_parse_duration(self, value: str | None, minutes: int) -> None:
        assert parse_duration_minutes(value) == minutes

    def test_empty_day_is_no_data(self) -> None:
        with pytest.raises(NoActivityDataError):
            PolarSource().normalize(TEST_DATE, {})


class TestWithings:
    RAW = {
        "status": 0,
        "body": {
            "activities": [
                {
                    "date": "2026-02-23",
                    "steps": 6400,
                    "calories": 380.5,
                    "totalcalories": 2180.5,
                    "moderate": 1200,
                    "intense": 600,
                    "distance": 4800,
                    "hr_average": 71,
                }
            ]
        },
    }

    @pytest.mark.asyncio
    async def test_fetch_unwraps_body(self) -> None:
        client = _mock_client(self.RAW)
        payload = await WithingsSource(http_client=client).fetch_activity(TEST_DATE, TOKENS)
        assert payload.steps == 6400
        assert payload.calories_burned == 380.5
        assert payload.bmr == 1800
        assert payload.active_minutes == 30
        assert payload.heart_rate == 71
        assert payload.distance == 4.8
        assert client.request.call_args.kwargs["data"]["action"] == "getactivity"

    @pytest.mark.asyncio
    async def test_non_zero_status_is_upstream_error(self) -> None:
        client = _mock_client({"status": 401, "body": {}})
        with pytest.raises(UpstreamError, match="status 401"):
            await WithingsSource(http_client=client).fetch_activity(TEST_DATE, TOKENS)

    @pytest.mark.asyncio
    async def test_other_day_only_is_no_data(self) -> None:
        activity = dict(self.RAW["body"]["activities"][0], date="2026-02-20")
        client = _mock_client({"status": 0, "body": {"activities": [activity]}})
        with pytest.raises(NoActivityDataError):
            await WithingsSource(http_client=client).fetch_activity(TEST_DATE, TOKENS)


# ---------------------------------------------------------------------------
# Failure mapping
# ---------------------------------------------------------------------------


class TestHttpFailures:
    @pytest.mark.asyncio
    async def test_http_status_error(self) -> None:
        source = OuraSource(http_client=_mock_client(status_error=401))
        with pytest.raises(UpstreamError, match="401"):
            await source.fetch_activity(TEST_DATE, TOKENS)

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        client = MagicMock()
        client.request = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))
        with pytest.raises(UpstreamError, match="request failed"):
            await FitbitSource(http_client=client).fetch_activity(TEST_DATE, TOKENS)

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        client = _mock_client()
        client.request.return_value.json.side_effect = ValueError("not json")
        with pytest.raises(UpstreamError, match="invalid JSON"):
            await FitbitSource(http_client=client).fetch_activity(TEST_DATE, TOKENS)

    @pytest.mark.asyncio
    async def test_missing_access_token(self) -> None:
        with pytest.raises(UpstreamError, match="no access token"):
            await FitbitSource(http_client=_mock_client({})).fetch_activity(
                TEST_DATE, DeviceTokens()
            )

    def test_out_of_range_vendor_value(self) -> None:
        with pytest.raises(UpstreamError, match="out-of-range"):
            FitbitSource().normalize(TEST_DATE, {"summary": {"restingHeartRate": 900}})

    @pytest.mark.asyncio
    async def test_push_only_cannot_fetch(self) -> None:
        source = PushOnlySource(DeviceType.APPLE_HEALTH)
        assert source.supports_pull is False
        with pytest.raises(UpstreamError):
            await source.fetch_activity(TEST_DATE, TOKENS)


# ---------------------------------------------------------------------------
# Token refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_exchanges_refresh_token(self) -> None:
        client = _mock_client({"access_token": "new-access", "expires_in": 28800})
        source = FitbitSource(client_id="cid", client_secret="secret", http_client=client)

        before = utc_now()
        tokens = await source.refresh(TOKENS)

        assert tokens.access_token == "new-access"
        assert tokens.refresh_token == "refresh-456"
        assert tokens.expires_at >= before + timedelta(seconds=28800)
        data = client.request.call_args.kwargs["data"]
        assert data["grant_type"] == "refresh_token"
        assert data["refresh_token"] == "refresh-456"

    @pytest.mark.asyncio
    async def test_refresh_without_client_config(self) -> None:
        with pytest.raises(UpstreamError, match="OAuth client not configured"):
            await FitbitSource(http_client=_mock_client({})).refresh(TOKENS)

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token(self) -> None:
        source = FitbitSource(client_id="cid", http_client=_mock_client({}))
        with pytest.raises(UpstreamError, match="no refresh token"):
            await source.refresh(DeviceTokens(access_token="a"))

    @pytest.mark.asyncio
    async def test_push_only_refresh_unsupported(self) -> None:
        with pytest.raises(UpstreamError):
            await PushOnlySource(DeviceType.SAMSUNG_HEALTH).refresh(TOKENS)


# ---------------------------------------------------------------------------
# Source registry
# ---------------------------------------------------------------------------


class TestSourceRegistry:
    def test_builds_vendor_sources_with_settings(self, engine_config: EngineConfig) -> None:
        settings = Settings(fitbit_client_id="fit-id", vendor_http_timeout_s=12, _env_file=None)
        sources = SourceRegistry(settings, engine_config)

        fitbit = sources.get(DeviceType.FITBIT)
        assert isinstance(fitbit, FitbitSource)
        assert fitbit._client_id == "fit-id"
        assert fitbit._timeout == 12
        assert sources.get(DeviceType.FITBIT) is fitbit

    @pytest.mark.parametrize(
        "device_type",
        [DeviceType.APPLE_HEALTH, DeviceType.SAMSUNG_HEALTH, DeviceType.HUAWEI_HEALTH,
         DeviceType.GARMIN, DeviceType.SUUNTO, DeviceType.AMAZFIT],
    )
    def test_push_only_types(self, engine_config: EngineConfig, device_type: DeviceType) -> None:
        source = SourceRegistry(Settings(_env_file=None), engine_config).get(device_type)
        assert isinstance(source, PushOnlySource)
        assert source.DEVICE_TYPE == device_type

    @pytest.mark.parametrize(
        ("device_type", "cls"),
        [(DeviceType.OURA, OuraSource), (DeviceType.GOOGLE_FIT, GoogleFitSource),
         (DeviceType.WHOOP, WhoopSource), (DeviceType.POLAR, PolarSource),
         (DeviceType.WITHINGS, WithingsSource)],
    )
    def test_pull_types(self, engine_config: EngineConfig, device_type: DeviceType, cls: type) -> None:
        assert isinstance(SourceRegistry(Settings(_env_file=None), engine_config).get(device_type), cls)
