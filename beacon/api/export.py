"""Usage export endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

from beacon.api.utils import current_user, ok
from beacon.core.constants import MAX_BULK_EXPORT_IDS, ExportFormat, PeriodTimeframe
from beacon.core.exports import ExportResult
from beacon.core.services import Services


class BulkExportBody(BaseModel):
    component_ids: list[UUID] = Field(..., min_length=1, max_length=MAX_BULK_EXPORT_IDS)
    timeframe: PeriodTimeframe = "30d"
    format: ExportFormat = "json"


def _render(result: ExportResult):
    if result.format == "csv":
        return Response(
            content=result.payload,
            media_type=result.media_type,
            headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
        )
    return ok(result.payload)


def register_routes(router: APIRouter, svc: Services, **kw):
    exports = svc.exports
    user_header = svc.config.auth.user_header

    @router.get("/analytics/export")
    def api_export(
        request: Request,
        component_id: UUID = Query(..., description="Component to export"),
        timeframe: PeriodTimeframe = Query("30d"),
        format: ExportFormat = Query("json", description="Export format: json or csv"),
    ):
        result = exports.export_component(
            str(component_id), current_user(request, user_header),
            timeframe=timeframe, fmt=format,
        )
        return _render(result)

    @router.post("/analytics/export/bulk")
    def api_export_bulk(body: BulkExportBody, request: Request):
        result = exports.export_bulk(
            [str(cid) for cid in body.component_ids],
            current_user(request, user_header),
            timeframe=body.timeframe, fmt=body.format,
        )
        return _render(result)
