# Importing the variants registers them (see registry.register).
from __future__ import annotations

from . import indeed, itviec, linkedin, stub, topcv  # noqa: F401
from .base import (
    BaseScraper,
    BrowserScraper,
    ChallengeError,
    LoginRequiredError,
    ScraperError,
    SearchTarget,
    keyword_present,
)
from .registry import all_kinds, get, register

__all__ = [
    "BaseScraper",
    "BrowserScraper",
    "ChallengeError",
    "LoginRequiredError",
    "ScraperError",
    "SearchTarget",
    "all_kinds",
    "get",
    "keyword_present",
    "register",
]
