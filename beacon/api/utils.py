"""Shared utilities for API route modules."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from beacon.core.utils import ValidationError


def parse_multi(param: str | None) -> list[str] | None:
    """Split a comma-separated query param into a list, or None if empty."""
    if not param:
        return None
    parts = [p.strip() for p in param.split(",") if p.strip()]
    return parts if parts else None


def ok(data: Any) -> dict:
    """Success envelope."""
    return {"data": data, "success": True}


def error_response(status_code: int, error: str, **extra) -> JSONResponse:
    """Error envelope."""
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "success": False, **extra},
    )


def current_user(request: Request, header_name: str) -> str | None:
    """Caller's user id from the identity header in canonical UUID form, or None if absent."""
    value = (request.headers.get(header_name) or "").strip()
    if not value:
        return None
    try:
        return str(UUID(value))
    except ValueError:
        raise ValidationError(f"Invalid {header_name} header: expected a UUID") from None


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip")


class APIKeyAuthMiddleware(BaseHTTPMiddleware):
    """Optional API key authentication middleware.

    When enabled, checks for a valid API key in the configured header.
    Allows OPTIONS requests (CORS preflight) and health/swagger endpoints through.
    """

    def __init__(self, app, api_key: str, header_name: str = "X-API-Key"):
        super().__init__(app)
        self.api_key = api_key
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next):
        # Always allow CORS preflight, health, and docs
        if request.method == "OPTIONS":
            return await call_next(request)
        path = request.url.path.rstrip("/")
        if path in ("/status", "/swagger", "/openapi.json",
                     "/api/status", "/api/swagger", "/api/openapi.json"):
            return await call_next(request)

        token = request.headers.get(self.header_name)
        if not token or token != self.api_key:
            return error_response(401, "Invalid or missing API key")
        return await call_next(request)
