"""
Stealth heuristics shared by the scrapers: jittered delays, pointer noise,
scrolling that looks like reading, and challenge-page detection.

Everything here is best-effort. Surface errors are logged and swallowed so a
flaky mouse move never costs a scrape.
"""

from __future__ import annotations

import logging
import os
import random
import re
import time
from collections.abc import Iterable
from datetime import datetime

from .surface import FrameInfo, Surface

log = logging.getLogger(__name__)

CHALLENGE_TITLE_MARKERS = ("Attention Required", "Just a moment", "Cloudflare")
CHALLENGE_FRAME_MARKERS = ("cloudflare", "turnstile", "challenge")


def random_delay(min_ms: int, max_ms: int) -> int:
    """
    Sleep a uniform random duration in [min_ms, max_ms]; min >= max sleeps min.
    Returns the milliseconds slept.
    """
    if min_ms >= max_ms:
        ms = max(0, int(min_ms))
    else:
        ms = random.randint(int(min_ms), int(max_ms))
    time.sleep(ms / 1000.0)
    return ms


def mouse_jiggle(surface: Surface, moves: int = 3) -> int:
    """
    A few pointer moves inside the viewport. Returns the number of moves made.
    """
    try:
        size = surface.viewport()
    except Exception as e:
        log.debug("viewport unavailable: %s", e)
        return 0
    if not size:
        return 0

    width, height = size
    done = 0
    for _ in range(max(1, moves)):
        try:
            surface.mouse_move(random.uniform(0, width), random.uniform(0, height))
            done += 1
        except Exception as e:
            log.debug("mouse move failed: %s", e)
            break
        random_delay(100, 300)
    return done


def smooth_scroll(surface: Surface) -> None:
    """Wheel down, small correction up, then jump to the bottom for lazy content."""
    try:
        surface.wheel(0, 500)
        random_delay(500, 1000)
        surface.wheel(0, -200)
        random_delay(500, 800)
        surface.scroll_to_bottom()
    except Exception as e:
        log.debug("smooth_scroll failed: %s", e)


def human_scroll(surface: Surface, steps: int = 5) -> None:
    """Half-viewport steps with reading pauses, then a slight scroll back up."""
    try:
        for _ in range(steps):
            surface.scroll_by()
            random_delay(500, 1500)
        surface.scroll_by(-200)
    except Exception as e:
        log.debug("human_scroll failed: %s", e)


def detect_challenge(title: str | None, frames: Iterable[FrameInfo] = ()) -> bool:
    """
    True when the page looks like an anti-bot interstitial. Advisory only.
    """
    t = title or ""
    if any(marker in t for marker in CHALLENGE_TITLE_MARKERS):
        return True
    for frame in frames:
        haystack = f"{frame.url} {frame.name}".lower()
        if any(marker in haystack for marker in CHALLENGE_FRAME_MARKERS):
            return True
    return False


def surface_challenged(surface: Surface) -> bool:
    try:
        return detect_challenge(surface.title(), surface.frames())
    except Exception as e:
        log.debug("challenge probe failed: %s", e)
        return False


def capture_screenshot(surface: Surface, screenshots_dir: str, name: str) -> str | None:
    """
    Full-page PNG at <screenshots_dir>/<name>_<YYYY-MM-DD_HH-MM-SS>.png.
    Returns the path, or None when the capture failed.
    """
    safe = re.sub(r"[^0-9A-Za-z_-]+", "_", name).strip("_") or "page"
    stamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    path = os.path.join(screenshots_dir, f"{safe}_{stamp}.png")
    try:
        os.makedirs(screenshots_dir, exist_ok=True)
        surface.screenshot(path)
    except Exception as e:
        log.warning("screenshot %s failed: %s", path, e)
        return None
    log.info("Saved screenshot %s", path)
    return path
