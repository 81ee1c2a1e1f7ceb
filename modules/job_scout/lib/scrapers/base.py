from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from .. import logging_bridge
from ..evasion import capture_screenshot, mouse_jiggle, surface_challenged
from ..models import Posting, ScrapeResult
from ..surface import Deadline, DeadlineExceeded, Element, NavigationError, StepStatus, Surface
from ..utils import canonical_url, clean_text, html_to_text, strip_diacritics

log = logging.getLogger(__name__)

TURNSTILE_CONTROLS = 'input[type="checkbox"], .ctp-checkbox-label, #challenge-stage'

# Terms pulled into Posting.tech_stack when a card carries no skill tags.
STACK_TERMS = (
    ("golang", "Go"),
    ("docker", "Docker"),
    ("kubernetes", "Kubernetes"),
    ("aws", "AWS"),
    ("gcp", "GCP"),
    ("grpc", "gRPC"),
    ("microservice", "Microservices"),
    ("rest api", "REST API"),
    ("postgres", "PostgreSQL"),
    ("mysql", "MySQL"),
    ("redis", "Redis"),
    ("kafka", "Kafka"),
    ("blockchain", "Blockchain"),
)


# -----------------------------
# Exceptions
# -----------------------------
class ScraperError(Exception):
    """Base exception for scraper failures that end a source's run."""


class ChallengeError(ScraperError):
    """An anti-bot challenge persisted after waiting (and one dismissal attempt)."""

    def __init__(self, message: str, screenshot: str | None = None) -> None:
        super().__init__(message)
        self.screenshot = screenshot


class LoginRequiredError(ScraperError):
    """The site needs a logged-in session and the cookies did not provide one."""


# -----------------------------
# Helpers
# -----------------------------
@dataclass(frozen=True)
class SearchTarget:
    """One (keyword, facet) combination and its search URL."""

    keyword: str
    facet: str
    url: str


def first_text(root: Element | Surface, selector: str) -> str:
    """Text of the first match, or "" (comma selectors act as fallbacks)."""
    found = root.query(selector)
    return clean_text(found[0].text()) if found else ""


def first_markup_text(root: Element | Surface, selector: str) -> str:
    """Like first_text, but from the element markup (descriptions keep list items apart)."""
    found = root.query(selector)
    return html_to_text(found[0].html()) if found else ""


def first_attr(root: Element | Surface, selector: str, name: str) -> str:
    found = root.query(selector)
    return (found[0].attr(name) or "").strip() if found else ""


def keyword_present(keyword: str, title: str, description: str = "") -> bool:
    """
    Extraction sanity check: the keyword phrase, or each of its words,
    appears in the title or description.
    """
    kw = strip_diacritics(keyword).strip()
    if not kw:
        return True
    text = strip_diacritics(f"{title} {description}")
    if kw in text:
        return True
    words = [w for w in re.split(r"\W+", kw) if w]
    return bool(words) and all(re.search(rf"\b{re.escape(w)}\b", text) for w in words)


def detect_stack(*texts: str) -> str:
    haystack = strip_diacritics(" ".join(texts))
    return ", ".join(label for needle, label in STACK_TERMS if needle in haystack)


def dedupe_by_url(postings: Iterable[Posting]) -> list[Posting]:
    """First occurrence wins; postings without a URL are dropped."""
    seen: set[str] = set()
    out: list[Posting] = []
    for p in postings:
        if not p.url or p.url in seen:
            continue
        seen.add(p.url)
        out.append(p)
    return out


# -----------------------------
# Base classes
# -----------------------------
class BaseScraper(ABC):
    """
    Abstract scraper interface.

    Contract:
      - run(surface, keywords, locations, deadline=...) returns ONE ScrapeResult.
      - Do NOT notify, print, or touch the seen cache (dedupe happens upstream).
      - Raise ScraperError only when the whole source is unusable.
    """

    # Concrete subclasses MUST set these, e.g. kind="itviec", name="ITViec"
    kind: str = ""
    name: str = ""
    # False for scrapers that never browse; the engine then skips launching chromium
    needs_surface: bool = True

    def __init__(
        self,
        params: dict[str, Any] | None = None,
        *,
        screenshots_dir: str = "logs/screenshots",
        exclude_keywords: Iterable[str] = (),
    ) -> None:
        self.params = dict(params or {})
        self.screenshots_dir = screenshots_dir
        self.exclude_keywords = [strip_diacritics(k) for k in exclude_keywords if k and k.strip()]

    @abstractmethod
    def run(self, surface: Surface, keywords: list[str], locations: list[str], *, deadline: Deadline) -> ScrapeResult:
        raise NotImplementedError


class BrowserScraper(BaseScraper):
    """
    Template for one job site driven through a Surface.

    run() walks every SearchTarget, navigates, clears challenges, applies the
    site's UI filters (advisory), enumerates cards and extracts postings.
    Subclasses implement search_targets(), list_cards() and extract(), and
    may override warm_up(), apply_filters(), is_empty() and
    dismiss_challenge().

    Contract:
      - Navigation failures skip the combination.
      - A persistent challenge raises ChallengeError (the source stops).
      - A failing card is skipped and recorded in ScrapeResult.errors.
      - An exhausted Deadline returns what was collected with timed_out=True.
      - No writes besides diagnostic screenshots; dedupe against the seen
        cache happens upstream.
    """

    base_url: str = ""
    max_cards: int = 15
    nav_timeout_ms: int = 30_000
    challenge_wait_ms: int = 5_000
    retry_wait_ms: int = 3_000

    def __init__(
        self,
        params: dict[str, Any] | None = None,
        *,
        screenshots_dir: str = "logs/screenshots",
        exclude_keywords: Iterable[str] = (),
    ) -> None:
        super().__init__(params, screenshots_dir=screenshots_dir, exclude_keywords=exclude_keywords)
        self.max_cards = int(self.params.get("max_cards", self.max_cards))

    # ---- hooks ----
    @abstractmethod
    def search_targets(self, keywords: list[str], locations: list[str]) -> Iterator[SearchTarget]:
        raise NotImplementedError

    @abstractmethod
    def list_cards(self, surface: Surface) -> list[Element]:
        raise NotImplementedError

    @abstractmethod
    def extract(self, surface: Surface, card: Element, target: SearchTarget, deadline: Deadline) -> Posting | None:
        """Build a Posting from one card; None skips it, exceptions count as card errors."""
        raise NotImplementedError

    def warm_up(self, surface: Surface, deadline: Deadline) -> None:
        return None

    def apply_filters(self, surface: Surface, target: SearchTarget, deadline: Deadline) -> StepStatus | None:
        return None

    def is_empty(self, surface: Surface) -> bool:
        return False

    def dismiss_challenge(self, surface: Surface) -> StepStatus:
        """
        One attempt at a clickable verification control (Cloudflare Turnstile
        checkbox), on the page or inside a challenge frame.
        """
        controls = surface.query(TURNSTILE_CONTROLS)
        for marker in ("cloudflare", "turnstile"):
            controls.extend(surface.frame_query(marker, TURNSTILE_CONTROLS))
        for control in controls:
            if control.is_visible():
                mouse_jiggle(surface)
                control.click()
                return StepStatus.done("dismiss_challenge", "clicked verification control")
        return StepStatus.failed("dismiss_challenge", "no visible verification control")

    # ---- template ----
    def run(self, surface: Surface, keywords: list[str], locations: list[str], *, deadline: Deadline) -> ScrapeResult:
        result = ScrapeResult(source=self.name)
        found: list[Posting] = []
        visited = 0
        try:
            self.warm_up(surface, deadline)
            for target in self.search_targets(keywords, locations):
                deadline.check()
                visited += 1
                try:
                    self._scrape_target(surface, target, deadline, found, result.errors)
                except (DeadlineExceeded, ScraperError):
                    raise
                except Exception as e:
                    # driver errors (detached context, closed page) cost one combination
                    result.errors.append(f"{target.url}: {e!r}")
                    log.warning("%s: combination %r (%s) failed: %s", self.name, target.keyword, target.facet, e)
        except DeadlineExceeded as e:
            result.timed_out = True
            log.warning("%s: stopping early: %s", self.name, e)

        result.items = dedupe_by_url(found)
        logging_bridge.activity({
            "component": "job_scout.scraper",
            "op": "run",
            "kind": self.kind,
            "combinations": visited,
            "found": len(result.items),
            "card_errors": len(result.errors),
            "timed_out": result.timed_out,
        })
        return result

    def _scrape_target(
        self,
        surface: Surface,
        target: SearchTarget,
        deadline: Deadline,
        found: list[Posting],
        errors: list[str],
    ) -> None:
        log.info("%s: searching %r (%s)", self.name, target.keyword, target.facet)
        if not self.open(surface, target.url, deadline):
            errors.append(f"navigation failed: {target.url}")
            return

        self.ensure_clear(surface, deadline)

        if self.is_empty(surface):
            log.info("%s: no results for %r (%s)", self.name, target.keyword, target.facet)
            return

        status = self.apply_filters(surface, target, deadline)
        if status is not None:
            self.log_step(status)

        cards = self.list_cards(surface)[: self.max_cards]
        log.info("%s: %d cards for %r (%s)", self.name, len(cards), target.keyword, target.facet)

        for idx, card in enumerate(cards):
            deadline.check()
            try:
                posting = self.extract(surface, card, target, deadline)
            except (DeadlineExceeded, ScraperError):
                raise
            except Exception as e:
                errors.append(f"{target.url} card {idx}: {e!r}")
                log.debug("%s: card %d failed: %s", self.name, idx, e)
                continue
            if posting is None:
                continue
            if self.is_excluded(posting):
                log.info("%s: excluded keyword in %r", self.name, posting.title)
                continue
            if not keyword_present(target.keyword, posting.title, posting.description):
                log.debug("%s: keyword %r missing from %r", self.name, target.keyword, posting.title)
                continue
            found.append(posting)

    # ---- building blocks ----
    def open(self, surface: Surface, url: str, deadline: Deadline) -> bool:
        """
        Navigate; False on a plain navigation failure. A failure that leaves a
        challenge page up gets one retry wait before ChallengeError.
        """
        try:
            surface.goto(url, deadline.clamp_ms(self.nav_timeout_ms))
            return True
        except NavigationError as e:
            if not surface_challenged(surface):
                log.warning("%s: navigation failed: %s", self.name, e)
                return False
        surface.wait(deadline.clamp_ms(self.retry_wait_ms))
        if surface_challenged(surface):
            raise self._challenge_error(surface, "challenge persisted after navigation failure")
        return True

    def ensure_clear(self, surface: Surface, deadline: Deadline) -> None:
        if not surface_challenged(surface):
            return
        log.warning("%s: challenge detected, waiting", self.name)
        surface.wait(deadline.clamp_ms(self.challenge_wait_ms))
        if surface_challenged(surface):
            status = self.attempt("dismiss_challenge", lambda: self.dismiss_challenge(surface))
            if status.ok:
                surface.wait(deadline.clamp_ms(self.challenge_wait_ms))
        if surface_challenged(surface):
            raise self._challenge_error(surface, "challenge persisted")
        log.info("%s: challenge cleared", self.name)

    def attempt(self, step: str, fn: Callable[[], StepStatus]) -> StepStatus:
        """
        Run a best-effort UI interaction. Exceptions become a failed status;
        the outcome is logged either way.
        """
        try:
            status = fn()
        except DeadlineExceeded:
            raise
        except Exception as e:
            status = StepStatus.failed(step, repr(e))
        self.log_step(status)
        return status

    def log_step(self, status: StepStatus) -> None:
        if status.ok:
            log.info("%s: %s ok %s", self.name, status.step, status.detail)
        else:
            log.warning("%s: %s skipped: %s", self.name, status.step, status.detail)

    def is_excluded(self, posting: Posting) -> bool:
        if not self.exclude_keywords:
            return False
        title = strip_diacritics(f"{posting.title} {posting.company}")
        return any(k in title for k in self.exclude_keywords)

    def make_posting(self, **fields: Any) -> Posting:
        """Posting with this source's name and a canonical URL."""
        fields["url"] = canonical_url(fields.get("url"), self.base_url or None)
        fields.setdefault("source", self.name)
        if not fields.get("salary"):
            fields.pop("salary", None)
        if not fields.get("tech_stack"):
            fields["tech_stack"] = detect_stack(fields.get("title", ""), fields.get("description", ""))
        return Posting(**fields)

    def _challenge_error(self, surface: Surface, message: str) -> ChallengeError:
        shot = capture_screenshot(surface, self.screenshots_dir, f"{self.kind}_challenge")
        return ChallengeError(f"{self.name}: {message}", shot)
