"""
Dependency injection and service container for FastAPI application.
"""
from functools import lru_cache

from config.settings import Settings, load_settings
from ..coordination.workflow import CoordinationWorkflow
from ..utils.logger import setup_logger
from .config import settings as api_settings


@lru_cache(maxsize=1)
def get_logger():
    """Get application logger instance."""
    return setup_logger("fastapi_app", api_settings.log_level)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load application settings once per process."""
    return load_settings()


@lru_cache(maxsize=1)
def get_workflow() -> CoordinationWorkflow:
    """Build the coordination workflow from settings with caching."""
    from ..main import TurnoverAutomation
    return TurnoverAutomation(settings=get_settings()).workflow
