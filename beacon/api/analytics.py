"""Analytics endpoints: tracking, popular, trending, usage, overview."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

from beacon.api.utils import client_ip, current_user, ok, parse_multi
from beacon.core.constants import (
    DEFAULT_LIST_LIMIT, DEFAULT_OVERVIEW_LIMIT, DEFAULT_POPULAR_SORT, MAX_LIMIT,
    Granularity, PeriodTimeframe, PopularSort, TrackAction, TrendingTimeframe,
)
from beacon.core.services import Services
from beacon.core.utils import ValidationError


class TrackBody(BaseModel):
    component_id: UUID
    action: TrackAction
    user_id: UUID | None = None
    metadata: dict[str, Any] | None = None
    session_id: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None


def register_routes(router: APIRouter, svc: Services, **kw):
    tracking = svc.tracking
    engine = svc.analytics_engine
    user_header = svc.config.auth.user_header

    @router.get("/analytics/track")
    def api_track_summary(
        component_id: str | None = Query(None),
        timeframe: str = Query("30d"),
    ):
        if not component_id:
            raise ValidationError("Component ID is required")
        try:
            component_id = str(UUID(component_id))
        except ValueError:
            raise ValidationError("Invalid component ID: expected a UUID") from None
        return ok(tracking.summary(component_id, timeframe))

    @router.post("/analytics/track")
    def api_track(body: TrackBody, request: Request):
        user_id = str(body.user_id) if body.user_id else current_user(request, user_header)
        metadata = {
            **(body.metadata or {}),
            "user_agent": request.headers.get("user-agent") or body.user_agent,
            "ip_address": client_ip(request) or body.ip_address or "unknown",
            "session_id": body.session_id,
        }
        return ok(tracking.track(
            str(body.component_id), body.action.value, user_id=user_id, metadata=metadata,
        ))

    @router.get("/analytics/popular")
    def api_popular(
        timeframe: PeriodTimeframe = Query("30d"),
        category: str | None = Query(None),
        framework: str | None = Query(None),
        limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIMIT),
        sort_by: PopularSort = Query(DEFAULT_POPULAR_SORT),
    ):
        return ok(engine.popular(
            timeframe=timeframe, category=category or None,
            framework=framework or None, limit=limit, sort_by=sort_by,
        ))

    @router.get("/analytics/trending")
    def api_trending(
        timeframe: TrendingTimeframe = Query("7d"),
        category: str | None = Query(None),
        framework: str | None = Query(None),
        limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIMIT),
        min_growth: float = Query(0, ge=0),
    ):
        return ok(engine.trending(
            timeframe=timeframe, category=category or None,
            framework=framework or None, limit=limit, min_growth=min_growth,
        ))

    @router.get("/analytics/usage")
    def api_usage(
        component_id: UUID | None = Query(None),
        timeframe: PeriodTimeframe = Query("30d"),
        granularity: Granularity = Query(Granularity.DAILY),
        include_details: str | None = Query(None),
    ):
        return ok(engine.usage(
            component_id=str(component_id) if component_id else None,
            timeframe=timeframe,
            granularity=granularity.value,
            include_details=include_details != "false",
        ))

    @router.get("/analytics")
    def api_overview(
        timeframe: PeriodTimeframe = Query("30d"),
        categories: str | None = Query(None),
        frameworks: str | None = Query(None),
        limit: int = Query(DEFAULT_OVERVIEW_LIMIT, ge=1, le=MAX_LIMIT),
    ):
        return ok(engine.overview(
            timeframe=timeframe,
            categories=parse_multi(categories),
            frameworks=parse_multi(frameworks),
            limit=limit,
        ))
