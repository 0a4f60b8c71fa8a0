"""Tests for beacon.core.exports: quotas, visibility, JSON and CSV rendering."""

import csv
import io
from datetime import date
from unittest.mock import MagicMock

import pytest

from beacon.core.exports import CSV_COLUMNS, ExportService, render_csv
from beacon.core.ratelimit import InMemoryRateLimiter
from beacon.core.utils import (
    AccessDenied, AuthenticationRequired, NotFound, RateLimitExceeded, ValidationError,
)

CID = "7f1c0e8a-1111-4c3b-9a7e-0d2f5e4b6a01"
OTHER = "7f1c0e8a-2222-4c3b-9a7e-0d2f5e4b6a02"
PUBLIC = {"id": CID, "name": "Button", "is_public": True, "author_id": "author-1"}
PRIVATE = {"id": CID, "name": "Button", "is_public": False, "author_id": "author-1"}


def _row(cid=CID, d=date(2024, 3, 14), uses=3):
    return {
        "component_id": cid, "date": d, "total_uses": uses, "unique_users": 2,
        "successful_imports": 1, "failed_imports": 0, "avg_rating": None,
        "trending_score": 4.5,
    }


def _service(component=PUBLIC, rows=None, visible=None, limit=5, bulk_limit=2):
    db = MagicMock()
    db.execute_one.return_value = component
    db.execute.return_value = visible if visible is not None else []
    fetcher = MagicMock()
    fetcher.fetch.return_value = rows if rows is not None else [_row()]
    fetcher.fetch_many.return_value = rows if rows is not None else [_row()]
    svc = ExportService(
        db, fetcher,
        limiter=InMemoryRateLimiter(limit, 60),
        bulk_limiter=InMemoryRateLimiter(bulk_limit, 60),
    )
    return svc, db, fetcher


class TestRenderCsv:
    def test_header_and_rows(self):
        text = render_csv([{**_row(), "component_name": "Button"}])
        lines = text.splitlines()
        assert lines[0] == ",".join(CSV_COLUMNS)

        [parsed] = list(csv.DictReader(io.StringIO(text)))
        assert parsed["component_name"] == "Button"
        assert parsed["date"] == "2024-03-14"
        assert parsed["avg_rating"] == ""
        assert parsed["total_uses"] == "3"

    def test_empty(self):
        assert render_csv([]).strip() == ",".join(CSV_COLUMNS)


class TestExportComponent:
    def test_requires_user(self):
        svc, db, _ = _service()
        with pytest.raises(AuthenticationRequired):
            svc.export_component(CID, None)
        db.execute_one.assert_not_called()

    def test_quota(self):
        svc, _, _ = _service(limit=2)
        svc.export_component(CID, "u1")
        svc.export_component(CID, "u1")
        with pytest.raises(RateLimitExceeded) as exc_info:
            svc.export_component(CID, "u1")
        assert exc_info.value.retry_after == 60

        # quota is per user
        svc.export_component(CID, "u2")

    def test_bad_format(self):
        svc, _, _ = _service()
        with pytest.raises(ValidationError):
            svc.export_component(CID, "u1", fmt="xml")

    def test_unknown_component(self):
        svc, _, _ = _service(component=None)
        with pytest.raises(NotFound):
            svc.export_component(CID, "u1")

    def test_private_component(self):
        svc, _, fetcher = _service(component=PRIVATE)
        with pytest.raises(AccessDenied):
            svc.export_component(CID, "someone-else")
        fetcher.fetch.assert_not_called()

    def test_private_component_author(self):
        svc, _, _ = _service(component=PRIVATE)
        result = svc.export_component(CID, "author-1")
        assert result.payload["row_count"] == 1

    def test_json(self):
        svc, _, _ = _service()
        result = svc.export_component(CID, "u1", timeframe="7d")
        assert result.format == "json"
        assert result.media_type == "application/json"
        assert result.filename == f"usage-{CID}.json"
        assert result.payload["component"] == {"id": CID, "name": "Button"}
        assert result.payload["period"]["days"] == 7
        assert result.payload["rows"][0]["component_name"] == "Button"

    def test_csv(self):
        svc, _, _ = _service(rows=[_row(), _row(d=date(2024, 3, 15))])
        result = svc.export_component(CID, "u1", fmt="csv")
        assert result.media_type == "text/csv"
        assert result.filename == f"usage-{CID}.csv"
        assert len(result.payload.splitlines()) == 3


class TestExportBulk:
    def test_requires_user(self):
        svc, _, _ = _service()
        with pytest.raises(AuthenticationRequired):
            svc.export_bulk([CID], None)

    def test_bulk_quota_separate_from_single(self):
        svc, _, _ = _service(visible=[{"id": CID, "name": "Button"}], limit=1, bulk_limit=1)
        svc.export_component(CID, "u1")
        svc.export_bulk([CID], "u1")
        with pytest.raises(RateLimitExceeded):
            svc.export_bulk([CID], "u1")

    def test_nothing_visible(self):
        svc, _, _ = _service(visible=[])
        with pytest.raises(NotFound, match="No components found for export"):
            svc.export_bulk([CID, OTHER], "u1")

    def test_visibility_filter_params(self):
        svc, db, _ = _service(visible=[{"id": CID, "name": "Button"}])
        svc.export_bulk([CID, OTHER], "u1")
        sql, params = db.execute.call_args[0]
        assert "is_public = true OR author_id = %s" in " ".join(sql.split())
        assert params == ([CID, OTHER], "u1")

    def test_json_reports_missing(self):
        svc, _, fetcher = _service(visible=[{"id": CID, "name": "Button"}], rows=[_row(), _row(uses=1)])
        result = svc.export_bulk([CID, OTHER], "u1")
        payload = result.payload
        assert payload["missing"] == [OTHER]
        assert payload["row_count"] == 2
        assert payload["components"][0]["id"] == CID
        assert len(payload["components"][0]["rows"]) == 2
        assert fetcher.fetch_many.call_args[0][0] == [CID]

    def test_csv(self):
        svc, _, _ = _service(visible=[{"id": CID, "name": "Button"}])
        result = svc.export_bulk([CID], "u1", fmt="csv")
        assert result.filename == "usage-bulk.csv"
        assert "Button" in result.payload
