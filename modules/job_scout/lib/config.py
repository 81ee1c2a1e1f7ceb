from __future__ import annotations

import json
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .relevance import FilterRules
from .utils import truthy


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env cannot form a valid Settings."""


# -----------------------------
# Defaults
# -----------------------------
DEFAULT_KEYWORDS = ["golang", "golang developer", "go developer"]
DEFAULT_LOCATIONS = ["Ho Chi Minh", "Can Tho"]
DEFAULT_SOURCES = ["topcv", "itviec", "linkedin"]

SOURCE_ERROR_POLICIES = ("continue", "abort")


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class ScraperConfig:
    """
    One source to scrape during a run.
    - kind: scraper family registered in scrapers.registry ("itviec", "topcv", ...)
    - source: label used in logs, snapshots and messages (defaults to kind)
    - params: per-source overrides handed to the scraper constructor
              (caps, experience levels, location slugs, cookies file, ...)
    """

    kind: str
    source: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class Settings:
    """
    Canonical configuration for a 'job_scout' run.

    Secrets are never read from kwargs directly: the runner resolves
    `telegram_token_env` / `telegram_chat_id_env` (names of env vars) before
    calling the module, and TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID are the
    fallbacks.
    """

    # Search criteria
    keywords: list[str] = field(default_factory=lambda: list(DEFAULT_KEYWORDS))
    locations: list[str] = field(default_factory=lambda: list(DEFAULT_LOCATIONS))
    exclude_keywords: list[str] = field(default_factory=list)
    sources: list[ScraperConfig] = field(default_factory=list)

    # Paths
    cache_dir: str = "/app/local/state"
    logs_dir: str = "/app/local/logs"
    cookies_dir: str = "/app/local/cookies"

    # Runtime behavior
    run_timeout_sec: float = 600.0
    notify_delay_sec: float = 1.0
    max_notify: int | None = None
    on_source_error: str = "continue"
    dry_run: bool = False
    skip_network: bool = False
    headless: bool = True

    # Relevance overrides (None -> built-in defaults)
    filter_overrides: dict[str, Any] = field(default_factory=dict)

    # Telegram (resolved values, never logged)
    telegram_token: str = field(default="", repr=False)
    telegram_chat_id: str = field(default="", repr=False)

    # ------------- convenience -------------
    @property
    def screenshots_dir(self) -> str:
        return os.path.join(self.logs_dir, "screenshots")

    @property
    def seen_cache_path(self) -> str:
        return os.path.join(self.cache_dir, "seen_jobs.json")

    @property
    def abort_on_source_error(self) -> bool:
        return self.on_source_error == "abort"

    def cookies_file(self, site: str) -> str:
        return os.path.join(self.cookies_dir, f"cookies-{site}.json")

    def source_kinds(self) -> list[str]:
        return [sc.kind for sc in self.sources]

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional):

            keywords: list[str]            # search terms, one search per keyword
            locations: list[str]           # location facets (per-source mapping applies)
            exclude_keywords: list[str]    # title words that drop a card at extraction time
            sources: list[str | {kind, source?, params?}]
            sources_path: str              # JSON file holding the same list

            cache_dir: str = "/app/local/state"
            logs_dir: str = "/app/local/logs"
            cookies_dir: str = "/app/local/cookies"

            run_timeout_sec: float = 600
            notify_delay_sec: float = 1.0
            max_notify: int | None = None
            on_source_error: "continue" | "abort" = "continue"
            dry_run: bool = false
            skip_network: bool = false
            headless: bool = true

            # relevance overrides
            keyword_pattern, exclude_pattern, include_pattern, tech_pattern: str
            primary_locations, secondary_locations: list[str]
            min_years: int = 3            # any integer >= 1
            recency_days: int = 60
            future_days: int = 2

            # resolved by the runner from *_env names
            telegram_token_env: str
            telegram_chat_id_env: str
        """
        kw = dict(kwargs or {})

        keywords = _str_list(kw.get("keywords"), "keywords") or list(DEFAULT_KEYWORDS)
        locations = _str_list(kw.get("locations"), "locations") or list(DEFAULT_LOCATIONS)
        exclude_keywords = _str_list(kw.get("exclude_keywords"), "exclude_keywords")

        sources_path = str(kw.get("sources_path") or "").strip() or None
        if sources_path:
            sources = _load_sources_file(sources_path)
        else:
            sources = _parse_sources(kw.get("sources") or list(DEFAULT_SOURCES))

        cache_dir = str(kw.get("cache_dir") or os.getenv("JOB_SCOUT_CACHE_DIR") or "/app/local/state")
        logs_dir = str(kw.get("logs_dir") or os.getenv("JOB_SCOUT_LOGS_DIR") or "/app/local/logs")
        cookies_dir = str(kw.get("cookies_dir") or os.getenv("JOB_SCOUT_COOKIES_DIR") or "/app/local/cookies")

        headless_raw = kw.get("headless", os.getenv("JOB_SCOUT_HEADLESS"))
        headless = True if headless_raw is None or headless_raw == "" else truthy(headless_raw)

        max_notify_raw = kw.get("max_notify")
        max_notify = None if max_notify_raw in (None, "") else _as_int(max_notify_raw, "max_notify")

        filter_overrides = {
            k: kw[k]
            for k in (
                "keyword_pattern",
                "exclude_pattern",
                "include_pattern",
                "tech_pattern",
                "primary_locations",
                "secondary_locations",
                "min_years",
                "recency_days",
                "future_days",
            )
            if kw.get(k) not in (None, "")
        }

        settings = cls(
            keywords=keywords,
            locations=locations,
            exclude_keywords=exclude_keywords,
            sources=sources,
            cache_dir=cache_dir,
            logs_dir=logs_dir,
            cookies_dir=cookies_dir,
            run_timeout_sec=_as_float(kw.get("run_timeout_sec", 600), "run_timeout_sec"),
            notify_delay_sec=_as_float(kw.get("notify_delay_sec", 1.0), "notify_delay_sec"),
            max_notify=max_notify,
            on_source_error=str(kw.get("on_source_error") or "continue").strip().lower(),
            dry_run=truthy(kw.get("dry_run")),
            skip_network=truthy(kw.get("skip_network")),
            headless=headless,
            filter_overrides=filter_overrides,
            telegram_token=str(kw.get("telegram_token_env") or os.getenv("TELEGRAM_BOT_TOKEN") or "").strip(),
            telegram_chat_id=str(kw.get("telegram_chat_id_env") or os.getenv("TELEGRAM_CHAT_ID") or "").strip(),
        )
        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def _str_list(value: Any, name: str) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"'{name}' must be a list of strings.")
    return [str(v).strip() for v in value if str(v).strip()]


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{name}' must be an integer (got {value!r}).") from e


def _as_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{name}' must be a number (got {value!r}).") from e


def _parse_sources(value: Any) -> list[ScraperConfig]:
    """
    Accepts: ["itviec", {"kind": "topcv", "source": "topcv", "params": {...}}, ...]
    """
    if not isinstance(value, list):
        raise ConfigError("'sources' must be a list of kinds or scraper objects.")
    out: list[ScraperConfig] = []
    for i, item in enumerate(value):
        if isinstance(item, str):
            kind = item.strip()
            if not kind:
                raise ConfigError(f"sources[{i}] is empty.")
            out.append(ScraperConfig(kind=kind.lower(), source=kind.lower()))
            continue
        if not isinstance(item, dict):
            raise ConfigError(f"sources[{i}] must be a string or an object.")
        kind = str(item.get("kind") or "").strip().lower()
        if not kind:
            raise ConfigError(f"sources[{i}] requires 'kind'.")
        params = item.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise ConfigError(f"sources[{i}].params must be an object.")
        source = str(item.get("source") or kind).strip()
        out.append(ScraperConfig(kind=kind, source=source, params=dict(params)))
    return out


def _load_sources_file(path: str) -> list[ScraperConfig]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"job_scout sources file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"job_scout sources file is invalid JSON: {path}") from e
    return _parse_sources(data)


def _validate_settings(s: Settings) -> None:
    if not s.sources:
        raise ConfigError("No sources to scrape.")
    labels = [sc.source for sc in s.sources]
    if len(set(labels)) != len(labels):
        raise ConfigError(f"Duplicate source labels: {labels}")
    if s.on_source_error not in SOURCE_ERROR_POLICIES:
        raise ConfigError(f"'on_source_error' must be one of {SOURCE_ERROR_POLICIES} (got {s.on_source_error!r}).")
    if s.run_timeout_sec <= 0:
        raise ConfigError("'run_timeout_sec' must be > 0.")
    if s.notify_delay_sec < 0:
        raise ConfigError("'notify_delay_sec' must be >= 0.")
    if s.max_notify is not None and s.max_notify < 0:
        raise ConfigError("'max_notify' must be >= 0.")
    if not s.cache_dir.strip():
        raise ConfigError("'cache_dir' cannot be empty.")
    if not s.keywords:
        raise ConfigError("At least one keyword is required.")
    try:
        FilterRules.from_overrides(s.filter_overrides)
    except (TypeError, ValueError, re.error) as e:
        raise ConfigError(f"Invalid relevance override: {e}") from e
