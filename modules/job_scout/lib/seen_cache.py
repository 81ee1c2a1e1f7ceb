"""
Durable record of posting URLs that were already handed to the notifier.

File layout (<cache_dir>/seen_jobs.json):

    [
      {"url": "https://itviec.com/it-jobs/golang-dev-acme-1234", "timestamp": 1760659200000},
      ...
    ]

Entries older than 30 days are dropped while loading; the file is rewritten
on the next mutation. Callers pass canonical URLs (utils.canonical_url).
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterable

from . import logging_bridge
from .models import SeenRecord
from .utils import now_ms

log = logging.getLogger(__name__)

CACHE_FILENAME = "seen_jobs.json"
THIRTY_DAYS_MS = 30 * 24 * 60 * 60 * 1000


class SeenCache:
    """
    URL -> first-seen timestamp (epoch millis), guarded by a lock.

    The mapping itself is never handed out; `records()` returns copies.
    """

    def __init__(self, cache_dir: str, *, ttl_ms: int = THIRTY_DAYS_MS) -> None:
        self.path = os.path.join(cache_dir, CACHE_FILENAME)
        self.ttl_ms = int(ttl_ms)
        self._lock = threading.Lock()
        self._seen: dict[str, int] = self._load()

    # ---- queries ----
    def is_seen(self, url: str) -> bool:
        with self._lock:
            return url in self._seen

    def first_seen(self, url: str) -> int | None:
        with self._lock:
            return self._seen.get(url)

    def records(self) -> list[SeenRecord]:
        with self._lock:
            return [SeenRecord(url=u, timestamp=ts) for u, ts in self._seen.items()]

    def __contains__(self, url: object) -> bool:
        return isinstance(url, str) and self.is_seen(url)

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    # ---- mutation ----
    def add(self, urls: Iterable[str]) -> int:
        """
        Record first-seen time for URLs not already present.
        Persists once when anything changed. Returns the number of new URLs.
        """
        ts = now_ms()
        added = 0
        with self._lock:
            for url in urls:
                if not url or url in self._seen:
                    continue
                self._seen[url] = ts
                added += 1
            if added:
                self._save_locked()
        return added

    # ---- persistence ----
    def _load(self) -> dict[str, int]:
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logging_bridge.error({
                "component": "job_scout.seen_cache",
                "op": "load",
                "path": self.path,
                "error": repr(e),
            })
            return {}

        if not isinstance(raw, list):
            logging_bridge.error({
                "component": "job_scout.seen_cache",
                "op": "load",
                "path": self.path,
                "error": f"expected a JSON array, got {type(raw).__name__}",
            })
            return {}

        cutoff = now_ms() - self.ttl_ms
        seen: dict[str, int] = {}
        expired = 0
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            url = entry.get("url")
            ts = entry.get("timestamp")
            if not isinstance(url, str) or not url or isinstance(ts, bool) or not isinstance(ts, (int, float)):
                continue
            if ts <= cutoff:
                expired += 1
                continue
            # keep the earliest timestamp if the file somehow holds duplicates
            seen[url] = min(int(ts), seen.get(url, int(ts)))

        log.debug("Loaded %d seen URLs from %s (%d expired)", len(seen), self.path, expired)
        return seen

    def _save_locked(self) -> None:
        payload = [{"url": u, "timestamp": ts} for u, ts in self._seen.items()]
        directory = os.path.dirname(self.path) or "."
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".seen_jobs.", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            logging_bridge.error({
                "component": "job_scout.seen_cache",
                "op": "save",
                "path": self.path,
                "entries": len(payload),
                "error": repr(e),
            })
        finally:
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    log.debug("Could not remove temp file %s", tmp_path, exc_info=True)
