"""HTTP route declarations for the FastAPI application."""

from typing import Union

from fastapi import APIRouter

from stakecredit.core.config import AppSettings


def build_router(settings: AppSettings) -> APIRouter:
    """Build and return application routes with injected settings."""
    router = APIRouter()

    @router.get("/", summary="Root endpoint")
    def read_root() -> dict[str, str]:
        """Return a basic message confirming service availability."""
        return {"message": "{0} is running".format(settings.app_name)}

    @router.get("/health", summary="Health check")
    def health_check() -> dict[str, str]:
        """Return service health status for probes and monitors."""
        return {"status": "ok"}

    @router.get("/settings", summary="Settings snapshot")
    def get_settings_snapshot() -> dict[str, Union[str, bool, int]]:
        """Expose non-sensitive settings useful for local verification."""
        return {
            "app_name": settings.app_name,
            "debug": settings.debug,
            "host": settings.host,
            "port": settings.port,
            "default_asset": settings.protocol.default_asset,
            "grace_period_days": settings.protocol.grace_period_days,
            "keeper_enabled": settings.keeper_enabled,
        }

    return router
