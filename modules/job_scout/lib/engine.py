"""
Engine for one job_scout pass: scrape every source, filter and score, drop
postings already seen, snapshot, notify.

Features:
  - One shared browsing surface, sources run sequentially
  - Overall wall-clock Deadline (settings.run_timeout_sec); partial results
    are still filtered and notified
  - Per-source failure policy (`on_source_error`: continue | abort)
  - Seen cache marking only for postings whose notification was attempted
  - Dependency injection for testability (`get_scraper`, `surface_factory`,
    `notifier`, `cache`)
  - Structured logging via `logging_bridge`
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from contextlib import AbstractContextManager, ExitStack
from dataclasses import replace

from . import logging_bridge, render
from .config import ScraperConfig, Settings
from .models import Posting, ScrapeResult
from .notifier import Notifier, NotifyError, from_settings
from .relevance import FilterRules, rank
from .scrapers.base import BaseScraper
from .seen_cache import SeenCache
from .snapshot import write_snapshot
from .surface import Deadline, Surface
from .utils import canonical_url

log = logging.getLogger(__name__)

SurfaceFactory = Callable[[Settings], AbstractContextManager[Surface]]


class RunAborted(RuntimeError):
    """A source failed while on_source_error="abort"."""


# =============================================================================
# DEFAULT COLLABORATORS (PRODUCTION)
# =============================================================================
def _default_get_scraper(kind: str) -> type[BaseScraper]:
    """Resolve scraper class from registry (importing the package registers all variants)."""
    from .scrapers import get as get_scraper_class

    return get_scraper_class(kind)


def _default_surface_factory(settings: Settings) -> AbstractContextManager[Surface]:
    from .browser import open_surface

    return open_surface(settings)


# =============================================================================
# MAIN ORCHESTRATOR
# =============================================================================
def run_once(
    settings: Settings,
    get_scraper: Callable[[str], type[BaseScraper]] | None = None,
    surface_factory: SurfaceFactory | None = None,
    notifier: Notifier | None = None,
    cache: SeenCache | None = None,
) -> dict:
    """
    Run one complete discovery cycle.

    Args:
        settings: Validated Settings.
        get_scraper: Optional override to resolve scraper classes (tests).
        surface_factory: Optional override returning a context manager that
            yields a Surface (tests pass an in-memory fake).
        notifier: Optional override; defaults to notifier.from_settings().
        cache: Optional SeenCache; defaults to one under settings.cache_dir.

    Returns:
        Summary meta dict (counts per stage, sent/failed, snapshot path, flags).

    Raises:
        RunAborted: a source failed and settings.on_source_error == "abort".
    """
    start_ns = time.perf_counter_ns()
    deadline = Deadline(settings.run_timeout_sec)
    rules = FilterRules.from_overrides(settings.filter_overrides)

    # -------------------------------------------------------------------------
    # SKIP NETWORK: no scrapers, no browser
    # -------------------------------------------------------------------------
    if settings.skip_network:
        logging_bridge.activity({
            "component": "job_scout.engine",
            "op": "skipped",
            "reason": "skip_network",
            "sources": [sc.source for sc in settings.sources],
        })
        return _meta(settings, found_by_source={}, admitted=0, unseen=0, sent=0, failed=0,
                     timed_out=False, snapshot=None, errors_by_source={}, start_ns=start_ns)

    if notifier is None:
        notifier = from_settings(settings)
    results = _scrape_all(settings, deadline, get_scraper or _default_get_scraper,
                          surface_factory or _default_surface_factory, notifier)
    timed_out = deadline.expired() or any(r.timed_out for _, r in results)

    # -------------------------------------------------------------------------
    # FILTER + SCORE per source, then collapse cross-source duplicates
    # -------------------------------------------------------------------------
    found_by_source: dict[str, int] = {}
    errors_by_source: dict[str, int] = {}
    admitted: list[Posting] = []
    for sc, res in results:
        found_by_source[sc.source] = len(res.items)
        errors_by_source[sc.source] = len(res.errors)
        admitted.extend(rank(res.items, rules))
    admitted = _dedupe(admitted)

    # -------------------------------------------------------------------------
    # DEDUPLICATE against the seen cache
    # -------------------------------------------------------------------------
    if cache is None:
        cache = SeenCache(settings.cache_dir)
    # URLs are canonical after _dedupe
    unseen = [p for p in admitted if not cache.is_seen(p.url)]

    snapshot = _write_snapshot(settings, unseen)

    # -------------------------------------------------------------------------
    # NOTIFY (throttled) and mark attempted URLs as seen
    # -------------------------------------------------------------------------
    to_send = unseen if settings.max_notify is None else unseen[: settings.max_notify]
    sent = failed = 0
    if settings.dry_run:
        logging_bridge.activity({
            "component": "job_scout.engine",
            "op": "dry_run",
            "would_notify": [p.url for p in to_send],
        })
    else:
        attempted: list[str] = []
        try:
            for i, posting in enumerate(to_send):
                if i:
                    time.sleep(settings.notify_delay_sec)
                attempted.append(posting.url)
                try:
                    notifier.send_posting(posting)
                    sent += 1
                except NotifyError as e:
                    failed += 1
                    logging_bridge.error({
                        "component": "job_scout.engine",
                        "op": "notify",
                        "url": posting.url,
                        "error": str(e),
                    })
        finally:
            added = cache.add(attempted)
            log.info("Marked %d postings as seen (%d new)", len(attempted), added)

    summary = render.run_summary(
        found_by_source, len(admitted), len(unseen), sent, failed,
        dry_run=settings.dry_run, timed_out=timed_out,
    )
    if not settings.dry_run:
        _send_best_effort(notifier.send_status, summary)

    meta = _meta(settings, found_by_source=found_by_source, admitted=len(admitted), unseen=len(unseen),
                 sent=sent, failed=failed, timed_out=timed_out, snapshot=snapshot,
                 errors_by_source=errors_by_source, start_ns=start_ns)
    meta["message"] = summary

    logging_bridge.activity({"component": "job_scout.engine", "op": "summary", **meta})
    return meta


# =============================================================================
# SCRAPING
# =============================================================================
def _scrape_all(
    settings: Settings,
    deadline: Deadline,
    get_scraper: Callable[[str], type[BaseScraper]],
    surface_factory: SurfaceFactory,
    notifier: Notifier,
) -> list[tuple[ScraperConfig, ScrapeResult]]:
    """
    Run sources in order on one shared surface, opened when the first
    source that needs a browser comes up. Returns (config, result) for
    every source that produced a result; failed and unknown sources are absent.
    """
    out: list[tuple[ScraperConfig, ScrapeResult]] = []
    surface: Surface | None = None
    with ExitStack() as stack:
        for sc in settings.sources:
            if deadline.expired():
                log.warning("Run budget exhausted; skipping remaining sources from %s", sc.source)
                break

            try:
                scraper_cls = get_scraper(sc.kind)
            except KeyError:
                logging_bridge.error({
                    "component": "job_scout.engine",
                    "op": "unknown_kind",
                    "kind": sc.kind,
                    "source": sc.source,
                })
                continue

            scraper = scraper_cls(
                sc.params,
                screenshots_dir=settings.screenshots_dir,
                exclude_keywords=settings.exclude_keywords,
            )
            if surface is None and scraper.needs_surface:
                surface = stack.enter_context(surface_factory(settings))
            t0 = time.perf_counter_ns()
            try:
                result = scraper.run(surface, settings.keywords, settings.locations, deadline=deadline)
            except Exception as e:
                # ScraperError or a driver error the scraper did not absorb
                _source_failed(settings, sc, e, notifier)
                continue

            logging_bridge.activity({
                "component": "job_scout.engine",
                "op": "scraper_run",
                "source": sc.source,
                "kind": sc.kind,
                "found": len(result.items),
                "errors": len(result.errors),
                "timed_out": result.timed_out,
                "duration_us": int((time.perf_counter_ns() - t0) // 1000),
            })
            out.append((sc, result))
    return out


def _source_failed(settings: Settings, sc: ScraperConfig, exc: Exception, notifier: Notifier) -> None:
    logging_bridge.error({
        "component": "job_scout.engine",
        "op": "scraper_run",
        "source": sc.source,
        "kind": sc.kind,
        "error": repr(exc),
        "screenshot": getattr(exc, "screenshot", None),
        "policy": settings.on_source_error,
    })
    if not settings.abort_on_source_error:
        return
    if not settings.dry_run:
        _send_best_effort(notifier.send_error, f"{sc.source}: {exc}")
    raise RunAborted(f"source {sc.source!r} failed: {exc}") from exc


# =============================================================================
# HELPERS
# =============================================================================
def _dedupe(postings: list[Posting]) -> list[Posting]:
    """
    Collapse cross-source duplicates by canonical URL; first (highest-ranked
    source order) wins. Survivors carry the canonical URL, the seen-cache key.
    """
    seen: set[str] = set()
    out: list[Posting] = []
    for p in postings:
        key = canonical_url(p.url)
        if key in seen:
            continue
        seen.add(key)
        out.append(p if p.url == key else replace(p, url=key))
    return out


def _write_snapshot(settings: Settings, postings: list[Posting]) -> str | None:
    try:
        return write_snapshot(settings.logs_dir, postings)
    except OSError as e:
        logging_bridge.error({
            "component": "job_scout.engine",
            "op": "snapshot",
            "logs_dir": settings.logs_dir,
            "error": repr(e),
        })
        return None


def _send_best_effort(send: Callable[[str], None], text: str) -> None:
    try:
        send(text)
    except NotifyError as e:
        log.warning("Status message not delivered: %s", e)


def _meta(
    settings: Settings,
    *,
    found_by_source: dict[str, int],
    admitted: int,
    unseen: int,
    sent: int,
    failed: int,
    timed_out: bool,
    snapshot: str | None,
    errors_by_source: dict[str, int],
    start_ns: int,
) -> dict:
    return {
        "found_by_source": found_by_source,
        "found_total": sum(found_by_source.values()),
        "errors_by_source": errors_by_source,
        "admitted_total": admitted,
        "unseen_total": unseen,
        "sent": sent,
        "failed": failed,
        "timed_out": timed_out,
        "snapshot": snapshot,
        "dry_run": settings.dry_run,
        "skip_network": settings.skip_network,
        "total_us": int((time.perf_counter_ns() - start_ns) // 1000),
    }
