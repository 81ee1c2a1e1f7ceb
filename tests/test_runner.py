import json
import re
import textwrap

import pytest

from service import logging_utils, runner


@pytest.fixture
def fixture_modules(tmp_path, monkeypatch):
    """A throwaway package with module entry points of every shape the runner handles."""
    pkg = tmp_path / "rt_fixture_mods"
    pkg.mkdir()
    (pkg / "__init__.py").write_text("", encoding="utf-8")
    sources = {
        "echo": """
            def run(**kwargs):
                return {"message": "echoed", "kwargs": kwargs}
        """,
        "quiet": """
            def run(**kwargs):
                return None
        """,
        "boom": """
            def run(**kwargs):
                raise RuntimeError("source blocked")
        """,
        "slow": """
            import threading

            def run(**kwargs):
                threading.Event().wait(1.0)
                return {"message": "late"}
        """,
        "wrong_type": """
            def run(**kwargs):
                return "<html>not a dict</html>"
        """,
        "no_entry": """
            VALUE = 1
        """,
    }
    for name, body in sources.items():
        (pkg / f"{name}.py").write_text(textwrap.dedent(body), encoding="utf-8")
    monkeypatch.syspath_prepend(str(tmp_path))
    return "rt_fixture_mods"


def _activity_records():
    with open(logging_utils.get_activity_log_path(), encoding="utf-8") as f:
        return [json.loads(line) for line in f]


def test_runner_normalizes_kwargs_and_returns_meta(fixture_modules, monkeypatch):
    monkeypatch.setenv("JS_TEST_BOT_TOKEN", "123:abc")
    meta, run_id = runner.run_module_once(
        f"{fixture_modules}.echo",
        kwargs={
            "max_notify": "3",
            "run_timeout_sec": "12.5",
            "headless": "false",
            "sources": '["stub"]',
            "keywords": "golang",
            "telegram_token_env": "JS_TEST_BOT_TOKEN",
            "telegram_chat_id_env": "JS_TEST_UNSET_CHAT",
        },
    )
    assert re.fullmatch(r"[0-9a-f]{32}", run_id)
    assert meta["message"] == "echoed"
    assert meta["kwargs"] == {
        "max_notify": 3,
        "run_timeout_sec": 12.5,
        "headless": False,
        "sources": ["stub"],
        "keywords": "golang",
        "telegram_token_env": "123:abc",
        "telegram_chat_id_env": "",
    }


def test_runner_writes_one_activity_record_without_secrets(fixture_modules, monkeypatch):
    monkeypatch.setenv("JS_TEST_BOT_TOKEN", "123:abc")
    _, run_id = runner.run_module_once(
        f"{fixture_modules}.quiet",
        kwargs={"telegram_token_env": "JS_TEST_BOT_TOKEN", "region_env": "JS_TEST_UNSET"},
        trigger_type="adhoc",
        job_context={"job_id": "job-scout-daily", "run_id": "ignored"},
    )
    (rec,) = [r for r in _activity_records() if r.get("run_id") == run_id]
    assert rec["ok"] is True
    assert rec["message"] == "OK"
    assert rec["trigger_type"] == "adhoc"
    assert rec["context"]["job_id"] == "job-scout-daily"
    assert rec["context"]["run_id"] == run_id
    assert rec["kwargs"]["region_env"] is False
    assert "123:abc" not in json.dumps(rec)


def test_loggable_kwargs_reduces_env_values_to_flags():
    assert runner._loggable_kwargs({"telegram_token_env": "123:abc", "x_env": "", "keywords": ["go"]}) == {
        "telegram_token_env": True,
        "x_env": False,
        "keywords": ["go"],
    }


def test_dry_run_flag_is_forwarded(fixture_modules):
    meta, _ = runner.run_module_once(f"{fixture_modules}.echo", kwargs={}, dry_run=True)
    assert meta["kwargs"] == {"dry_run": True}


def test_dry_run_env_is_forwarded(fixture_modules, monkeypatch):
    monkeypatch.setenv("SCHEDULED_MODULES_DRY_RUN", "yes")
    meta, _ = runner.run_module_once(f"{fixture_modules}.echo")
    assert meta["kwargs"]["dry_run"] is True


def test_module_exception_is_logged_and_reraised(fixture_modules):
    with pytest.raises(RuntimeError, match="source blocked"):
        runner.run_module_once(f"{fixture_modules}.boom")
    rec = _activity_records()[-1]
    assert rec["ok"] is False
    assert rec["meta"] == {"exception_type": "RuntimeError"}


def test_timeout_raises(fixture_modules):
    with pytest.raises(TimeoutError, match="timed out"):
        runner.run_module_once(f"{fixture_modules}.slow", timeout_sec=0.05)


def test_non_dict_return_is_rejected(fixture_modules):
    with pytest.raises(TypeError, match="None or a dict"):
        runner.run_module_once(f"{fixture_modules}.wrong_type")


def test_module_without_run_is_rejected(fixture_modules):
    with pytest.raises(AttributeError, match="run"):
        runner.run_module_once(f"{fixture_modules}.no_entry")


def test_job_scout_skip_network(tmp_path):
    meta, _ = runner.run_module_once(
        "modules.job_scout.main",
        kwargs={"skip_network": "true", "cache_dir": str(tmp_path)},
    )
    assert meta["skip_network"] is True
    assert meta["found_total"] == 0
