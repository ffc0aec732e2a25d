"""Insights Engine - wiring, background jobs and the HTTP adapter."""

from .config import EngineConfig
from .engine import InsightsEngine
from .handler import create_app
from .scheduler import AnalyticsScheduler

__all__ = [
    "EngineConfig",
    "InsightsEngine",
    "create_app",
    "AnalyticsScheduler",
]
