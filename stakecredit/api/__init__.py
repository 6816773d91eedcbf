"""HTTP layer exports."""

from .credit_router import build_credit_router
from .routes import build_router

__all__ = ["build_credit_router", "build_router"]
