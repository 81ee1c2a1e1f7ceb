"""
Browsing-surface seam between the scrapers and the browser driver.

Scrapers and the evasion helpers only see the Surface/Element protocols, so
tests drive them with in-memory fakes. PlaywrightSurface adapts a Playwright
sync `Page`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

log = logging.getLogger(__name__)


# -----------------------------
# Exceptions
# -----------------------------
class NavigationError(Exception):
    """goto() failed (timeout, DNS, aborted)."""


class DeadlineExceeded(Exception):
    """The run's wall-clock budget is spent."""


# -----------------------------
# Budget / advisory steps
# -----------------------------
class Deadline:
    """
    Overall wall-clock budget for one run.

    Scrapers call check() before each search combination and clamp their
    navigation/wait timeouts with clamp_ms() so nothing outlives the budget.
    """

    def __init__(self, seconds: float) -> None:
        self.seconds = float(seconds)
        self._ends_at = time.monotonic() + self.seconds

    def remaining(self) -> float:
        return max(0.0, self._ends_at - time.monotonic())

    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def check(self) -> None:
        if self.expired():
            raise DeadlineExceeded(f"run budget of {self.seconds:.0f}s exhausted")

    def clamp_ms(self, timeout_ms: int) -> int:
        """Timeout bounded by the remaining budget; raises when nothing is left."""
        self.check()
        return max(1, min(int(timeout_ms), int(self.remaining() * 1000)))


@dataclass(frozen=True)
class StepStatus:
    """Outcome of a best-effort UI interaction (filter click, modal dismissal)."""

    step: str
    ok: bool
    detail: str = ""

    @classmethod
    def done(cls, step: str, detail: str = "") -> StepStatus:
        return cls(step=step, ok=True, detail=detail)

    @classmethod
    def failed(cls, step: str, detail: str) -> StepStatus:
        return cls(step=step, ok=False, detail=detail)


@dataclass(frozen=True)
class FrameInfo:
    url: str
    name: str


# -----------------------------
# Protocols
# -----------------------------
class Element(Protocol):
    def text(self) -> str: ...

    def attr(self, name: str) -> str | None: ...

    def html(self) -> str: ...

    def query(self, selector: str) -> list[Element]: ...

    def click(self, timeout_ms: int = 5000) -> None: ...

    def is_visible(self) -> bool: ...


class Surface(Protocol):
    @property
    def url(self) -> str: ...

    def goto(self, url: str, timeout_ms: int) -> None: ...

    def title(self) -> str: ...

    def query(self, selector: str) -> list[Element]: ...

    def wait_for(self, selector: str, timeout_ms: int) -> bool: ...

    def frames(self) -> list[FrameInfo]: ...

    def frame_query(self, frame_substring: str, selector: str) -> list[Element]: ...

    def viewport(self) -> tuple[int, int] | None: ...

    def mouse_move(self, x: float, y: float) -> None: ...

    def wheel(self, dx: float, dy: float) -> None: ...

    def scroll_by(self, dy: int | None = None) -> None: ...

    def scroll_to_bottom(self) -> None: ...

    def screenshot(self, path: str) -> None: ...

    def wait(self, ms: int) -> None: ...

    def set_headers(self, headers: dict[str, str]) -> None: ...

    def open_tab(self) -> Surface: ...

    def close(self) -> None: ...


# -----------------------------
# Playwright adapters
# -----------------------------
class PlaywrightElement:
    def __init__(self, handle: Any) -> None:
        self._h = handle

    def text(self) -> str:
        return (self._h.inner_text() or "").strip()

    def attr(self, name: str) -> str | None:
        return self._h.get_attribute(name)

    def html(self) -> str:
        return self._h.inner_html() or ""

    def query(self, selector: str) -> list[PlaywrightElement]:
        return [PlaywrightElement(h) for h in self._h.query_selector_all(selector)]

    def click(self, timeout_ms: int = 5000) -> None:
        self._h.scroll_into_view_if_needed(timeout=timeout_ms)
        self._h.click(timeout=timeout_ms)

    def is_visible(self) -> bool:
        return bool(self._h.is_visible())


class PlaywrightSurface:
    def __init__(self, page: Any) -> None:
        self.page = page

    @property
    def url(self) -> str:
        return self.page.url

    def goto(self, url: str, timeout_ms: int) -> None:
        try:
            self.page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except PlaywrightError as e:
            raise NavigationError(f"{url}: {e}") from e

    def title(self) -> str:
        try:
            return self.page.title() or ""
        except PlaywrightError:
            return ""

    def query(self, selector: str) -> list[PlaywrightElement]:
        return [PlaywrightElement(h) for h in self.page.query_selector_all(selector)]

    def wait_for(self, selector: str, timeout_ms: int) -> bool:
        try:
            self.page.wait_for_selector(selector, timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False

    def frames(self) -> list[FrameInfo]:
        return [FrameInfo(url=f.url or "", name=f.name or "") for f in self.page.frames]

    def frame_query(self, frame_substring: str, selector: str) -> list[PlaywrightElement]:
        needle = frame_substring.lower()
        out: list[PlaywrightElement] = []
        for f in self.page.frames:
            if needle in (f.url or "").lower() or needle in (f.name or "").lower():
                out.extend(PlaywrightElement(h) for h in f.query_selector_all(selector))
        return out

    def viewport(self) -> tuple[int, int] | None:
        size = self.page.viewport_size
        if not size:
            return None
        return int(size["width"]), int(size["height"])

    def mouse_move(self, x: float, y: float) -> None:
        self.page.mouse.move(x, y)

    def wheel(self, dx: float, dy: float) -> None:
        self.page.mouse.wheel(dx, dy)

    def scroll_by(self, dy: int | None = None) -> None:
        if dy is None:
            self.page.evaluate("window.scrollBy(0, window.innerHeight / 2)")
        else:
            self.page.evaluate("(dy) => window.scrollBy(0, dy)", dy)

    def scroll_to_bottom(self) -> None:
        self.page.evaluate("window.scrollTo(0, document.body.scrollHeight)")

    def screenshot(self, path: str) -> None:
        self.page.screenshot(path=path, full_page=True)

    def wait(self, ms: int) -> None:
        self.page.wait_for_timeout(ms)

    def set_headers(self, headers: dict[str, str]) -> None:
        self.page.set_extra_http_headers(headers)

    def open_tab(self) -> PlaywrightSurface:
        return PlaywrightSurface(self.page.context.new_page())

    def close(self) -> None:
        try:
            self.page.close()
        except PlaywrightError:
            log.debug("page already closed", exc_info=True)
