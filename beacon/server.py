"""Beacon HTTP server. Entry point for the usage analytics service."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from beacon.config import load_config
from beacon.core.services import Services, create_services
from beacon.storage.database import Database

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("beacon")


def _start_workers(svc: Services):
    """Start background workers."""
    if svc.event_writer:
        svc.event_writer.start()
    logger.info(
        "Beacon started. Rate limiter: %s, row cap: %d",
        svc.config.rate_limit.backend, svc.config.analytics.max_stat_rows,
    )


def _stop_workers(svc: Services, db_instance: Database):
    """Stop background workers and close connections."""
    if svc.event_writer:
        svc.event_writer.stop()
    db_instance.close()
    logger.info("Beacon stopped.")


def build_app(svc: Services) -> FastAPI:
    """Parent app: owns the worker lifecycle and serves the REST API at /api."""
    from beacon.api import create_api

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _start_workers(svc)
        try:
            yield
        finally:
            _stop_workers(svc, svc.db)

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.mount("/api", create_api(svc))
    return app


def main():
    """Run the Beacon HTTP server."""
    import uvicorn

    config = load_config()
    logging.getLogger().setLevel(config.log_level)

    # Pre-connect DB and build services so the API is mounted before the app starts
    db_instance = Database(config.db)
    db_instance.connect()
    db_instance.run_migrations()

    svc = create_services(config=config, db=db_instance)
    app = build_app(svc)

    logger.info("Starting Beacon (HTTP on %s:%d, API at /api)", config.http_host, config.http_port)
    uvicorn.run(app, host=config.http_host, port=config.http_port)


if __name__ == "__main__":
    main()
