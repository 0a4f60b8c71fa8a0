"""Tests for the REST layer: envelopes, parameter validation, error mapping, exports."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from beacon.api import create_api
from beacon.config import AuthConfig, Config
from beacon.core.exports import ExportResult
from beacon.core.utils import AccessDenied, NotFound, RateLimitExceeded

CID = "7f1c0e8a-1111-4c3b-9a7e-0d2f5e4b6a01"
USER = "0b6f3f8e-9d3c-4e0a-8a59-3a1f4d2c7e11"


def _services(config=None):
    svc = MagicMock()
    svc.config = config or Config()
    svc.db.connected = True
    svc.db.execute_one.return_value = None
    svc.event_writer = None
    svc.export_limiter.describe.return_value = {"backend": "memory", "max_requests": 5, "window_seconds": 60}
    svc.bulk_export_limiter.describe.return_value = {"backend": "memory", "max_requests": 2, "window_seconds": 60}
    return svc


@pytest.fixture
def svc():
    return _services()


@pytest.fixture
def client(svc):
    return TestClient(create_api(svc), raise_server_exceptions=False)


class TestStatus:
    def test_status_envelope(self, client, svc):
        resp = client.get("/status")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["status"] == "healthy"
        assert body["data"]["config"]["db.password"] != Config().db.password
        svc.db.release_if_held.assert_called()


class TestTrackEndpoints:
    def test_summary_requires_component_id(self, client):
        resp = client.get("/analytics/track")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Component ID is required", "success": False}

    def test_summary(self, client, svc):
        svc.tracking.summary.return_value = {"component_id": CID, "total_usage": 4}
        resp = client.get("/analytics/track", params={"component_id": CID, "timeframe": "7d"})
        assert resp.status_code == 200
        assert resp.json() == {"data": {"component_id": CID, "total_usage": 4}, "success": True}
        svc.tracking.summary.assert_called_once_with(CID, "7d")

    def test_track_invalid_action(self, client, svc):
        resp = client.post("/analytics/track", json={"component_id": CID, "action": "like"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "Invalid tracking data"
        assert body["success"] is False
        assert body["details"]
        svc.tracking.track.assert_not_called()

    def test_track_invalid_component_id(self, client):
        resp = client.post("/analytics/track", json={"component_id": "abc", "action": "view"})
        assert resp.status_code == 400

    def test_track_uses_header_identity_and_client_ip(self, client, svc):
        svc.tracking.track.return_value = {"tracked": True}
        resp = client.post(
            "/analytics/track",
            json={"component_id": CID, "action": "import", "session_id": "s1", "metadata": {"source": "cli"}},
            headers={"X-User-Id": USER, "X-Forwarded-For": "10.0.0.1, 10.0.0.2", "User-Agent": "beacon-test"},
        )
        assert resp.status_code == 200
        assert resp.json()["data"] == {"tracked": True}

        args, kwargs = svc.tracking.track.call_args
        assert args == (CID, "import")
        assert kwargs["user_id"] == USER
        assert kwargs["metadata"] == {
            "source": "cli",
            "user_agent": "beacon-test",
            "ip_address": "10.0.0.1",
            "session_id": "s1",
        }

    def test_track_body_user_wins(self, client, svc):
        svc.tracking.track.return_value = {"tracked": True}
        client.post(
            "/analytics/track",
            json={"component_id": CID, "action": "view", "user_id": USER},
            headers={"X-User-Id": "header-user"},
        )
        assert svc.tracking.track.call_args[1]["user_id"] == USER

    def test_track_unknown_ip(self, client, svc):
        svc.tracking.track.return_value = {"tracked": True}
        client.post("/analytics/track", json={"component_id": CID, "action": "view"})
        assert svc.tracking.track.call_args[1]["metadata"]["ip_address"] == "unknown"

    def test_access_denied(self, client, svc):
        svc.tracking.track.side_effect = AccessDenied("Access denied to component")
        resp = client.post("/analytics/track", json={"component_id": CID, "action": "view"})
        assert resp.status_code == 403
        assert resp.json() == {"error": "Access denied to component", "success": False}


class TestQueryEndpoints:
    @pytest.mark.parametrize("path,params", [
        ("/analytics/popular", {"limit": 0}),
        ("/analytics/popular", {"limit": 101}),
        ("/analytics/popular", {"sort_by": "name"}),
        ("/analytics/popular", {"timeframe": "24h"}),
        ("/analytics/trending", {"min_growth": -1}),
        ("/analytics/trending", {"timeframe": "90d"}),
        ("/analytics/usage", {"granularity": "yearly"}),
        ("/analytics/usage", {"component_id": "not-a-uuid"}),
        ("/analytics", {"limit": 500}),
    ])
    def test_invalid_parameters(self, client, path, params):
        resp = client.get(path, params=params)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid parameters"
        assert resp.json()["success"] is False

    def test_popular_defaults(self, client, svc):
        svc.analytics_engine.popular.return_value = {"components": [], "summary": {}}
        resp = client.get("/analytics/popular")
        assert resp.status_code == 200
        svc.analytics_engine.popular.assert_called_once_with(
            timeframe="30d", category=None, framework=None, limit=20, sort_by="usage_count",
        )

    def test_trending_defaults(self, client, svc):
        svc.analytics_engine.trending.return_value = {"components": [], "summary": {}}
        client.get("/analytics/trending", params={"category": "forms"})
        svc.analytics_engine.trending.assert_called_once_with(
            timeframe="7d", category="forms", framework=None, limit=20, min_growth=0,
        )

    def test_usage_details_flag(self, client, svc):
        svc.analytics_engine.usage.return_value = {}
        client.get("/analytics/usage", params={"include_details": "false"})
        assert svc.analytics_engine.usage.call_args[1]["include_details"] is False

        client.get("/analytics/usage", params={"include_details": "no", "component_id": CID})
        kwargs = svc.analytics_engine.usage.call_args[1]
        assert kwargs["include_details"] is True
        assert kwargs["component_id"] == CID

    def test_usage_not_found(self, client, svc):
        svc.analytics_engine.usage.side_effect = NotFound("Component not found")
        resp = client.get("/analytics/usage", params={"component_id": CID})
        assert resp.status_code == 404
        assert resp.json() == {"error": "Component not found", "success": False}

    def test_overview_multi_params(self, client, svc):
        svc.analytics_engine.overview.return_value = {"overview": {}}
        client.get("/analytics", params={"categories": "forms, layout,", "frameworks": ""})
        svc.analytics_engine.overview.assert_called_once_with(
            timeframe="30d", categories=["forms", "layout"], frameworks=None, limit=10,
        )

    def test_unhandled_error(self, client, svc):
        svc.analytics_engine.overview.side_effect = RuntimeError("pool exhausted")
        resp = client.get("/analytics")
        assert resp.status_code == 500
        assert resp.json() == {
            "error": "Internal server error", "success": False, "message": "pool exhausted",
        }


class TestExportEndpoints:
    def test_missing_component_id(self, client):
        resp = client.get("/analytics/export")
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid export parameters"

    def test_bad_format(self, client):
        resp = client.get("/analytics/export", params={"component_id": CID, "format": "xml"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid export parameters"

    def test_json_export(self, client, svc):
        svc.exports.export_component.return_value = ExportResult("json", {"rows": []}, "usage.json")
        resp = client.get("/analytics/export", params={"component_id": CID}, headers={"X-User-Id": USER})
        assert resp.status_code == 200
        assert resp.json() == {"data": {"rows": []}, "success": True}
        svc.exports.export_component.assert_called_once_with(CID, USER, timeframe="30d", fmt="json")

    def test_csv_export(self, client, svc):
        svc.exports.export_component.return_value = ExportResult(
            "csv", "component_id,date\n", f"usage-{CID}.csv",
        )
        resp = client.get(
            "/analytics/export", params={"component_id": CID, "format": "csv"},
            headers={"X-User-Id": USER},
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert resp.headers["content-disposition"] == f'attachment; filename="usage-{CID}.csv"'
        assert resp.text == "component_id,date\n"

    def test_rate_limited(self, client, svc):
        svc.exports.export_component.side_effect = RateLimitExceeded("Exports rate limit exceeded. Please try again later.")
        resp = client.get("/analytics/export", params={"component_id": CID})
        assert resp.status_code == 429
        assert resp.json()["retry_after"] == 60
        assert resp.json()["success"] is False

    def test_bulk_requires_ids(self, client):
        resp = client.post("/analytics/export/bulk", json={"component_ids": []})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid export parameters"

    def test_bulk_too_many_ids(self, client):
        ids = [f"7f1c0e8a-1111-4c3b-9a7e-{i:012d}" for i in range(51)]
        resp = client.post("/analytics/export/bulk", json={"component_ids": ids})
        assert resp.status_code == 400

    def test_bulk(self, client, svc):
        svc.exports.export_bulk.return_value = ExportResult("json", {"components": []}, "usage-bulk.json")
        resp = client.post(
            "/analytics/export/bulk",
            json={"component_ids": [CID], "timeframe": "7d"},
            headers={"X-User-Id": USER},
        )
        assert resp.status_code == 200
        svc.exports.export_bulk.assert_called_once_with([CID], USER, timeframe="7d", fmt="json")


class TestAPIKeyAuth:
    @pytest.fixture
    def client(self):
        config = Config(auth=AuthConfig(enabled=True, api_key="sekret"))
        svc = _services(config)
        svc.analytics_engine.overview.return_value = {"overview": {}}
        return TestClient(create_api(svc), raise_server_exceptions=False)

    def test_rejects_missing_key(self, client):
        resp = client.get("/analytics")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid or missing API key", "success": False}

    def test_accepts_key(self, client):
        assert client.get("/analytics", headers={"X-API-Key": "sekret"}).status_code == 200

    def test_status_open(self, client):
        assert client.get("/status").status_code == 200


class TestIdentifierParsing:
    def test_summary_malformed_component_id(self, client, svc):
        resp = client.get("/analytics/track", params={"component_id": "not-a-uuid"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid component ID: expected a UUID", "success": False}
        svc.tracking.summary.assert_not_called()

    def test_summary_component_id_canonical(self, client, svc):
        svc.tracking.summary.return_value = {}
        client.get("/analytics/track", params={"component_id": CID.upper()})
        svc.tracking.summary.assert_called_once_with(CID, "30d")

    def test_upper_case_user_header_normalized(self, client, svc):
        svc.tracking.track.return_value = {"tracked": True}
        resp = client.post(
            "/analytics/track", json={"component_id": CID, "action": "view"},
            headers={"X-User-Id": USER.upper()},
        )
        assert resp.status_code == 200
        assert svc.tracking.track.call_args[1]["user_id"] == USER

    def test_non_uuid_user_header_on_track(self, client, svc):
        resp = client.post(
            "/analytics/track", json={"component_id": CID, "action": "view"},
            headers={"X-User-Id": "alice"},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid X-User-Id header: expected a UUID", "success": False}
        svc.tracking.track.assert_not_called()

    def test_non_uuid_user_header_on_export(self, client, svc):
        resp = client.post(
            "/analytics/export/bulk", json={"component_ids": [CID]},
            headers={"X-User-Id": "alice"},
        )
        assert resp.status_code == 400
        svc.exports.export_bulk.assert_not_called()

    def test_upper_case_user_header_on_export(self, client, svc):
        svc.exports.export_component.return_value = ExportResult("json", {"rows": []}, "usage.json")
        client.get("/analytics/export", params={"component_id": CID}, headers={"X-User-Id": USER.upper()})
        svc.exports.export_component.assert_called_once_with(CID, USER, timeframe="30d", fmt="json")

    def test_granularity_passed_as_value(self, client, svc):
        svc.analytics_engine.usage.return_value = {}
        client.get("/analytics/usage", params={"granularity": "weekly"})
        assert svc.analytics_engine.usage.call_args[1]["granularity"] == "weekly"
