from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any

NEGOTIABLE = "Negotiable"


@dataclass(frozen=True)
class Posting:
    """
    A single job listing as extracted by a scraper.

    `url` is already canonical (see utils.canonical_url) and is the dedup key.
    `match_score` stays None until the relevance stage scores the posting.
    """

    title: str
    company: str
    url: str
    location: str = ""
    salary: str = NEGOTIABLE
    tech_stack: str = ""
    description: str = ""
    source: str = ""
    posted_date: str = ""
    match_score: int | None = None

    def with_score(self, score: int) -> Posting:
        return replace(self, match_score=int(score))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SeenRecord:
    """(canonical url, first-seen epoch millis)."""

    url: str
    timestamp: int


@dataclass
class ScrapeResult:
    """
    Result bundle produced by one scraper run.
    - items: admitted-by-scraper postings (keyword sanity check passed), deduped by URL.
    - errors: non-fatal issues (skipped cards, failed navigations).
    - timed_out: the run budget expired before all combinations were visited.
    """

    source: str
    items: list[Posting] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    timed_out: bool = False
