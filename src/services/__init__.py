"""Services package exports."""

from src.services.logging_service import configure_logging, get_logger
from src.services.suggestion_engine import SuggestionEngine
from src.services.suggestion_manager import SuggestionManager
from src.services.suggestion_session import SuggestionSession

__all__ = [
    "SuggestionEngine",
    "SuggestionManager",
    "SuggestionSession",
    "configure_logging",
    "get_logger",
]
