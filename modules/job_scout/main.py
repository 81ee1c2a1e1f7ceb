from __future__ import annotations

from typing import Any

from .lib.config import Settings
from .lib.engine import run_once as _run_engine
from .lib.logging_bridge import activity as log_activity


def run(**kwargs: Any) -> dict:
    """
    Entry point for the 'job_scout' module.

    Accepts kwargs (from scheduler/runner), including:
      keywords: list[str] = ["golang", "golang developer", "go developer"]
      locations: list[str] = ["Ho Chi Minh", "Can Tho"]
      sources: list[str | {kind, source?, params?}] = ["topcv", "itviec", "linkedin"]
      cache_dir: str = "/app/local/state"
      logs_dir: str = "/app/local/logs"
      cookies_dir: str = "/app/local/cookies"
      run_timeout_sec: float = 600
      on_source_error: "continue" | "abort" = "continue"
      max_notify: int | None = None
      dry_run: bool = False
      skip_network: bool = False

      # Secrets arrive resolved: the runner swaps *_env names for their values
      telegram_token_env: str
      telegram_chat_id_env: str

    Returns:
      Run summary dict (counts per stage, sent/failed, snapshot path).
      Notifications are sent by the module itself.
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    log_activity({
        "component": "job_scout.main",
        "op": "start",
        "sources": [sc.source for sc in settings.sources],
        "keywords": settings.keywords,
        "flags": {
            "dry_run": settings.dry_run,
            "skip_network": settings.skip_network,
            "on_source_error": settings.on_source_error,
            "headless": settings.headless,
        },
    })

    return _run_engine(settings)
