# modules/job_scout/lib/__init__.py
from __future__ import annotations

# Importing the scrapers package registers every built-in variant.
from . import scrapers as _scrapers  # noqa: F401

# Re-export commonly-used types for convenience
from .config import ConfigError, ScraperConfig, Settings
from .engine import RunAborted, run_once
from .models import Posting, ScrapeResult, SeenRecord
from .relevance import DEFAULT_RULES, FilterRules
from .seen_cache import SeenCache

__all__ = [
    "DEFAULT_RULES",
    "ConfigError",
    "FilterRules",
    "Posting",
    "RunAborted",
    "ScrapeResult",
    "ScraperConfig",
    "SeenCache",
    "SeenRecord",
    "Settings",
    "run_once",
]
