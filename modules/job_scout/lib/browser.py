"""
Playwright session for a run: one chromium context, one page, shared by all
sources in sequence.

Cookies come from exported JSON files in the cookies directory
(`cookies-<site>.json`, the format browser extensions export: a list of
{name, value, domain, path, expires|expirationDate, httpOnly, secure, sameSite}).
"""

from __future__ import annotations

import glob
import json
import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from playwright.sync_api import sync_playwright

from . import logging_bridge
from .config import Settings
from .surface import PlaywrightSurface

log = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
)
VIEWPORT = {"width": 1280, "height": 800}
LOCALE = "vi-VN"
TIMEZONE_ID = "Asia/Ho_Chi_Minh"

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-infobars",
    "--window-size=1280,800",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--no-first-run",
    "--no-service-autorun",
    "--password-store=basic",
]

# Hides the most common automation tells before any page script runs.
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
Object.defineProperty(navigator, 'languages', {get: () => ['vi-VN', 'vi', 'en-US', 'en']});
Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
window.chrome = window.chrome || {runtime: {}};
"""

_SAME_SITE = {
    "lax": "Lax",
    "strict": "Strict",
    "none": "None",
    "no_restriction": "None",
}


# -----------------------------
# Cookies
# -----------------------------
def load_cookies(path: str, *, now: float | None = None) -> list[dict[str, Any]]:
    """
    Convert an exported cookie file to Playwright `add_cookies` dicts.
    Expired cookies and entries without name/domain are dropped.
    """
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, list):
        raise ValueError(f"cookie file {path} must hold a JSON array")

    now = time.time() if now is None else now
    out: list[dict[str, Any]] = []
    for c in raw:
        if not isinstance(c, dict) or not c.get("name") or not c.get("domain"):
            continue
        cookie: dict[str, Any] = {
            "name": str(c["name"]),
            "value": str(c.get("value", "")),
            "domain": str(c["domain"]),
            "path": str(c.get("path") or "/"),
        }
        expires = c.get("expires", c.get("expirationDate"))
        if isinstance(expires, (int, float)) and expires > 0:
            if expires < now:
                continue
            cookie["expires"] = float(expires)
        if c.get("httpOnly"):
            cookie["httpOnly"] = True
        if c.get("secure"):
            cookie["secure"] = True
        same_site = _SAME_SITE.get(str(c.get("sameSite") or "").lower())
        if same_site:
            cookie["sameSite"] = same_site
        out.append(cookie)
    return out


def load_cookie_dir(cookies_dir: str) -> list[dict[str, Any]]:
    """All cookies-*.json files in the directory; unreadable files are logged and skipped."""
    cookies: list[dict[str, Any]] = []
    for path in sorted(glob.glob(os.path.join(cookies_dir, "cookies-*.json"))):
        try:
            loaded = load_cookies(path)
        except (OSError, ValueError) as e:
            logging_bridge.error({
                "component": "job_scout.browser",
                "op": "load_cookies",
                "path": path,
                "error": repr(e),
            })
            continue
        log.info("Loaded %d cookies from %s", len(loaded), path)
        cookies.extend(loaded)
    return cookies


# -----------------------------
# Session
# -----------------------------
@contextmanager
def open_surface(settings: Settings) -> Iterator[PlaywrightSurface]:
    """
    Launch chromium, prepare a stealthy context with cookies, yield a surface.
    """
    cookies = load_cookie_dir(settings.cookies_dir)
    with sync_playwright() as p:
        browser = p.chromium.launch(
            headless=settings.headless,
            args=LAUNCH_ARGS,
            ignore_default_args=["--enable-automation"],
            timeout=60000,
        )
        try:
            context = browser.new_context(
                user_agent=USER_AGENT,
                viewport=VIEWPORT,
                locale=LOCALE,
                timezone_id=TIMEZONE_ID,
                java_script_enabled=True,
            )
            context.add_init_script(STEALTH_INIT_SCRIPT)
            if cookies:
                context.add_cookies(cookies)
            page = context.new_page()
            logging_bridge.activity({
                "component": "job_scout.browser",
                "op": "open",
                "headless": settings.headless,
                "jar_size": len(cookies),
            })
            yield PlaywrightSurface(page)
        finally:
            browser.close()
