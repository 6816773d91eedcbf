"""Application entrypoint for the credit core FastAPI service."""

import logging
from typing import Optional

from fastapi import FastAPI
import uvicorn

from stakecredit.api import build_credit_router, build_router
from stakecredit.core import AppSettings, Clock, get_logger, load_settings, setup_logging
from stakecredit.services import CreditServices, build_services


setup_logging()
logger = get_logger(__name__)


def create_app(
    settings: Optional[AppSettings] = None,
    clock: Optional[Clock] = None,
    services: Optional[CreditServices] = None,
) -> FastAPI:
    """Create and configure a FastAPI application instance."""
    settings = settings or load_settings()
    services = services or build_services(settings, clock=clock)
    app = FastAPI(title=settings.app_name, debug=settings.debug)

    app.include_router(build_router(settings))
    app.include_router(build_credit_router(services))
    app.state.services = services

    @app.on_event("startup")
    async def _startup_background_services() -> None:
        """Start background services on application startup."""
        try:
            await app.state.services.keeper.start()
        except Exception:
            logger.exception("Failed to start background services during startup.")

    @app.on_event("shutdown")
    async def _shutdown_background_services() -> None:
        """Stop background services on application shutdown."""
        try:
            await app.state.services.keeper.stop()
        except Exception:
            logger.exception("Failed to stop background services during shutdown.")

    logger.info("Application initialized: %s", settings.app_name)
    return app


def run() -> None:
    """Start the ASGI server for local development."""
    settings = load_settings()
    logging.getLogger().setLevel(settings.log_level)
    try:
        uvicorn.run(
            "stakecredit.main:create_app",
            factory=True,
            host=settings.host,
            port=settings.port,
            reload=settings.debug,
        )
    except Exception:
        logger.exception("Failed to start uvicorn server.")
        raise


if __name__ == "__main__":
    run()
