"""Beacon REST API.

Split into domain modules under beacon/api/. Each module exports a
register_routes(router, svc) function that adds its endpoints.
"""

from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, APIRouter, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from beacon import __version__
from beacon.api.utils import APIKeyAuthMiddleware, error_response
from beacon.core.services import Services
from beacon.core.utils import BeaconError, RateLimitExceeded

logger = logging.getLogger(__name__)

# Request-validation messages that differ from the default.
_VALIDATION_MESSAGES = {
    ("POST", "/analytics/track"): "Invalid tracking data",
    ("GET", "/analytics/export"): "Invalid export parameters",
    ("POST", "/analytics/export/bulk"): "Invalid export parameters",
}


def _validation_message(request: Request) -> str:
    path = request.url.path.rstrip("/")
    for (method, suffix), message in _VALIDATION_MESSAGES.items():
        if request.method == method and path.endswith(suffix):
            return message
    return "Invalid parameters"


def install_error_handlers(app: FastAPI) -> None:
    """Map core exceptions and validation failures onto the error envelope."""

    @app.exception_handler(BeaconError)
    async def _beacon_error(request: Request, exc: BeaconError):
        extra = {}
        if isinstance(exc, RateLimitExceeded):
            extra["retry_after"] = exc.retry_after
        return error_response(exc.status_code, str(exc), **extra)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return error_response(
            400, _validation_message(request),
            details=jsonable_encoder(exc.errors()),
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(500, "Internal server error", message=str(exc))


def create_api(svc: Services) -> FastAPI:
    """Build the REST API as a FastAPI app.

    Designed to be mounted under /api by the server entry point, which owns
    the DB lifecycle.
    """
    db = svc.db
    config = svc.config

    def _release_db_conn():
        """Release the DB connection after each API request.

        Read-only endpoints never commit, which would otherwise leave the
        thread's connection checked out.
        """
        yield
        db.release_if_held()

    app = FastAPI(
        title="Beacon API",
        version=__version__,
        description="Usage analytics for the component marketplace.",
        docs_url="/swagger",
        redoc_url=None,
        dependencies=[Depends(_release_db_conn)],
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    if config.auth.enabled and config.auth.api_key:
        app.add_middleware(
            APIKeyAuthMiddleware,
            api_key=config.auth.api_key,
            header_name=config.auth.header_name,
        )
        logger.info("API key auth enabled (header: %s)", config.auth.header_name)

    install_error_handlers(app)

    router = APIRouter()

    # Register all route modules
    from beacon.api.core import register_routes as reg_core
    from beacon.api.analytics import register_routes as reg_analytics
    from beacon.api.export import register_routes as reg_export

    reg_core(router, svc)
    reg_analytics(router, svc)
    reg_export(router, svc)

    app.include_router(router)
    return app
