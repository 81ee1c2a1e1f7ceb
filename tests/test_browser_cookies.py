import json

import pytest

from modules.job_scout.lib import browser

NOW = 1_760_000_000.0


def _write(path, cookies):
    path.write_text(json.dumps(cookies), encoding="utf-8")
    return str(path)


def test_load_cookies_converts_export_format(tmp_path):
    path = _write(tmp_path / "cookies-linkedin.json", [
        {
            "name": "li_at",
            "value": "AQED",
            "domain": ".www.linkedin.com",
            "path": "/",
            "expirationDate": NOW + 3600,
            "httpOnly": True,
            "secure": True,
            "sameSite": "no_restriction",
        },
        {"name": "lang", "value": "v=2&lang=en-us", "domain": ".linkedin.com", "sameSite": "unspecified"},
    ])
    cookies = browser.load_cookies(path, now=NOW)
    assert cookies == [
        {
            "name": "li_at",
            "value": "AQED",
            "domain": ".www.linkedin.com",
            "path": "/",
            "expires": NOW + 3600,
            "httpOnly": True,
            "secure": True,
            "sameSite": "None",
        },
        {"name": "lang", "value": "v=2&lang=en-us", "domain": ".linkedin.com", "path": "/"},
    ]


def test_load_cookies_drops_expired_and_incomplete(tmp_path):
    path = _write(tmp_path / "cookies-itviec.json", [
        {"name": "old", "value": "1", "domain": "itviec.com", "expires": NOW - 1},
        {"name": "", "value": "1", "domain": "itviec.com"},
        {"name": "nodomain", "value": "1"},
        "junk",
        {"name": "session", "value": "1", "domain": "itviec.com", "expires": -1},
    ])
    assert [c["name"] for c in browser.load_cookies(path, now=NOW)] == ["session"]


def test_load_cookies_requires_array(tmp_path):
    path = _write(tmp_path / "cookies-x.json", {"cookies": []})
    with pytest.raises(ValueError):
        browser.load_cookies(path)


def test_load_cookie_dir_skips_bad_files(tmp_path):
    _write(tmp_path / "cookies-a.json", [{"name": "a", "value": "1", "domain": "a.test"}])
    (tmp_path / "cookies-b.json").write_text("{broken", encoding="utf-8")
    _write(tmp_path / "other.json", [{"name": "ignored", "value": "1", "domain": "x.test"}])
    assert [c["name"] for c in browser.load_cookie_dir(str(tmp_path))] == ["a"]


def test_load_cookie_dir_missing_dir(tmp_path):
    assert browser.load_cookie_dir(str(tmp_path / "nope")) == []
