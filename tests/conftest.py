# tests/conftest.py
from __future__ import annotations

import os
import tempfile
from contextlib import contextmanager

import pytest
from freezegun import freeze_time

from fakes import FakeSurface, RecordingNotifier, stub_items
from modules.job_scout.lib import config as js_config


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (real browser, job sites, Telegram).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that drive a real browser or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch):
    # Write structured logs to a throwaway dir so real logs stay clean (per test)
    monkeypatch.setenv("LOG_DIR", tempfile.mkdtemp(prefix="js-pytest-logs-"))
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    for name in ("TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "SCHEDULED_MODULES_DRY_RUN",
                 "JOB_SCOUT_CACHE_DIR", "JOB_SCOUT_LOGS_DIR", "JOB_SCOUT_COOKIES_DIR", "JOB_SCOUT_HEADLESS"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """Evasion delays and notify throttling sleep through time.sleep; record instead of waiting."""
    calls: list[float] = []
    monkeypatch.setattr("time.sleep", calls.append)
    return calls


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------
@pytest.fixture
def fake_surface_factory():
    """surface_factory for engine.run_once yielding the given FakeSurface."""

    def _factory(surface: FakeSurface | None = None):
        surface = surface or FakeSurface()

        @contextmanager
        def _open(settings):
            yield surface

        return _open

    return _factory


# ---------------------------------------------------------------------
# Notifier / settings fixtures
# ---------------------------------------------------------------------
@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_settings(tmp_path):
    """Settings builder with per-test dirs and no notify throttling."""

    def _make(**overrides) -> js_config.Settings:
        kw = {
            "sources": [{"kind": "stub", "source": "stub", "params": {"items": []}}],
            "cache_dir": str(tmp_path / "state"),
            "logs_dir": str(tmp_path / "logs"),
            "cookies_dir": str(tmp_path / "cookies"),
            "notify_delay_sec": 0,
        }
        kw.update(overrides)
        return js_config.Settings.from_env_and_kwargs(kw)

    return _make


@pytest.fixture
def fresh_settings(make_settings):
    return make_settings(
        sources=[
            {
                "kind": "stub",
                "source": "stub-a",
                "params": {"items": stub_items(
                    ("Junior Golang Developer", "https://jobs.example.com/a/1?utm=x"),
                    ("Golang Intern", "https://jobs.example.com/a/2"),
                )},
            },
            {
                "kind": "stub",
                "source": "stub-b",
                "params": {"items": stub_items(
                    ("Fresher Go Developer", "https://jobs.example.com/b/1"),
                    ("Senior Golang Engineer", "https://jobs.example.com/b/2"),
                )},
            },
        ]
    )


@pytest.fixture
def write_min_config(tmp_path, monkeypatch):
    cfg = {
        "jobs": [
            {
                "id": "job-scout-never",
                "name": "Job Scout (test)",
                "module": "modules.job_scout.main",
                "trigger": {"date": "2099-01-01T00:00:00Z"},
                "kwargs": {"skip_network": True, "sources": ["stub"]},
                "dry_run": False,
                "summary": "pytest config",
            }
        ]
    }
    import json

    p = tmp_path / "config.json"
    p.write_text(json.dumps(cfg), encoding="utf-8")
    monkeypatch.setenv("CONFIG_PATH", str(p))
    return p
