"""API package exports."""

from src.api.middleware import CorrelationIdMiddleware
from src.api.routes import router
from src.api.suggestions import maintenance_router
from src.api.suggestions import router as suggestions_router

__all__ = ["router", "suggestions_router", "maintenance_router", "CorrelationIdMiddleware"]
