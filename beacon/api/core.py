"""Core endpoints: status."""

from __future__ import annotations

from fastapi import APIRouter

from beacon.api.utils import ok
from beacon.core.services import Services


def register_routes(router: APIRouter, svc: Services, **kw):
    from beacon.core.status import get_status

    @router.get("/status")
    def api_status():
        return ok(get_status(svc))
