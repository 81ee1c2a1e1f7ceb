"""
Relevance filter and scorer.

All patterns live on an immutable FilterRules object built once (DEFAULT_RULES
at import, or FilterRules.build(...) from Settings) and passed by reference.

Score (0..10):
  +3 core technology keyword
  +3 entry-level keyword (fresher, junior, intern, ...)
  +2 primary location, else +1 secondary location
  +1 tech-stack keyword (docker, kubernetes, aws, ...)
  an explicit "N+ years" requirement at or above min_years forces 0
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from .models import Posting
from .utils import strip_diacritics

MAX_SCORE = 10
RECENT_SENTINELS = {"", "n/a", "recent"}

DEFAULT_KEYWORD_PATTERN = r"\b(?:golang|go\s+developer|go\s+backend|go|blockchain)\b"
DEFAULT_SENIORITY_PATTERN = r"senior|lead|manager|principal|staff|architect"
DEFAULT_INCLUDE_PATTERN = r"\b(?:fresher|intern|junior|entry[\s-]?level|graduate|trainee)\b"
DEFAULT_TECH_PATTERN = (
    r"\b(?:docker|kubernetes|aws|gcp|microservices|rest\s*api|grpc|backend|back-end|fullstack|full-stack)\b"
)

DEFAULT_PRIMARY_LOCATIONS = (
    "cần thơ",
    "can tho",
    "remote",
    "từ xa",
    "hồ chí minh",
    "ho chi minh",
    "hcm",
    "saigon",
    "tphcm",
)
DEFAULT_SECONDARY_LOCATIONS = ("hanoi", "hà nội", "worldwide", "global")

_ISO_PREFIX_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_DMY_RE = re.compile(r"\b(\d{1,2})\s*/\s*(\d{1,2})\s*/\s*(\d{4})\b")
_YEAR_RE = re.compile(r"\b(20\d{2})\b")
_RELATIVE_RE = re.compile(
    r"(\d+)\s*(minute|min|hour|hr|day|week|month|phut|gio|ngay|tuan|thang)s?\s*(?:ago|truoc)"
)
_RELATIVE_UNITS = {
    "minute": timedelta(minutes=1),
    "min": timedelta(minutes=1),
    "phut": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "hr": timedelta(hours=1),
    "gio": timedelta(hours=1),
    "day": timedelta(days=1),
    "ngay": timedelta(days=1),
    "week": timedelta(weeks=1),
    "tuan": timedelta(weeks=1),
    "month": timedelta(days=30),
    "thang": timedelta(days=30),
}


def _years_at_least(n: int) -> str:
    """
    Regex alternation for an integer >= n, e.g. 3 -> '[1-9]\\d{1,}|[3-9]'
    and 10 -> '[1-9]\\d{2,}|[2-9]\\d{1}|1[0-9]'.
    """
    if n < 1:
        raise ValueError(f"min_years must be >= 1 (got {n})")
    digits = str(n)
    width = len(digits)
    # more digits than n, then same width with a larger digit at position i
    alts = [rf"[1-9]\d{{{width},}}"]
    for i, ch in enumerate(digits):
        d = int(ch)
        rest = width - i - 1
        if rest == 0:
            alts.append(f"{digits[:i]}[{d}-9]")
        elif d < 9:
            alts.append(rf"{digits[:i]}[{d + 1}-9]\d{{{rest}}}")
    return "(?:" + "|".join(alts) + ")"


def _years_phrase(n: int) -> str:
    """'5 years', '3+ years', '4 plus years' for N >= n, and '(n-1)+ years'."""
    phrase = rf"{_years_at_least(n)}\s*(?:\+|plus)?\s*years?"
    if n > 1:
        phrase += rf"|{n - 1}\+\s*years?"
    return phrase


def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


# -----------------------------
# Rules
# -----------------------------
@dataclass(frozen=True)
class FilterRules:
    keyword: re.Pattern[str]
    exclude: re.Pattern[str]
    experience: re.Pattern[str]
    include: re.Pattern[str]
    tech: re.Pattern[str]
    primary_locations: tuple[str, ...]
    secondary_locations: tuple[str, ...]
    min_years: int = 3
    recency_days: int = 60
    future_days: int = 2

    @classmethod
    def build(
        cls,
        *,
        keyword_pattern: str = DEFAULT_KEYWORD_PATTERN,
        exclude_pattern: str | None = None,
        include_pattern: str = DEFAULT_INCLUDE_PATTERN,
        tech_pattern: str = DEFAULT_TECH_PATTERN,
        primary_locations: Iterable[str] = DEFAULT_PRIMARY_LOCATIONS,
        secondary_locations: Iterable[str] = DEFAULT_SECONDARY_LOCATIONS,
        min_years: int = 3,
        recency_days: int = 60,
        future_days: int = 2,
    ) -> FilterRules:
        """
        exclude_pattern replaces only the seniority words; the "N+ years"
        phrase derived from min_years is always part of the exclusion.
        """
        min_years = int(min_years)
        seniority = exclude_pattern or DEFAULT_SENIORITY_PATTERN
        return cls(
            keyword=_compile(keyword_pattern),
            exclude=_compile(rf"\b(?:{seniority}|{_years_phrase(min_years)})\b"),
            experience=_compile(
                rf"\b{_years_at_least(min_years)}\s*(?:\+|plus)?\s*(?:năm|nam|years?|yoe|yrs?)\b"
            ),
            include=_compile(include_pattern),
            tech=_compile(tech_pattern),
            primary_locations=tuple(strip_diacritics(s) for s in primary_locations if s),
            secondary_locations=tuple(strip_diacritics(s) for s in secondary_locations if s),
            min_years=min_years,
            recency_days=int(recency_days),
            future_days=int(future_days),
        )

    @classmethod
    def from_overrides(cls, overrides: Mapping[str, Any] | None) -> FilterRules:
        """Build from Settings.filter_overrides; an empty mapping yields the defaults."""
        if not overrides:
            return DEFAULT_RULES
        allowed = {
            "keyword_pattern",
            "exclude_pattern",
            "include_pattern",
            "tech_pattern",
            "primary_locations",
            "secondary_locations",
            "min_years",
            "recency_days",
            "future_days",
        }
        return cls.build(**{k: v for k, v in overrides.items() if k in allowed})


DEFAULT_RULES = FilterRules.build()


# -----------------------------
# Public API
# -----------------------------
def should_include(posting: Posting, rules: FilterRules = DEFAULT_RULES, *, now: datetime | None = None) -> bool:
    """
    Admit only if the text names the target technology, carries no seniority or
    years requirement, and the posted date is recent.
    """
    text = f"{posting.title} {posting.description}".lower()
    if not rules.keyword.search(text):
        return False
    if rules.exclude.search(text):
        return False
    if rules.experience.search(text):
        return False
    return is_recent(
        posting.posted_date,
        now=now,
        window_days=rules.recency_days,
        future_days=rules.future_days,
    )


def calculate_match_score(posting: Posting, rules: FilterRules = DEFAULT_RULES) -> int:
    text = strip_diacritics(f"{posting.title} {posting.description} {posting.company}")

    if rules.experience.search(text):
        return 0

    score = 0
    if rules.keyword.search(text):
        score += 3
    if rules.include.search(text):
        score += 3

    location = strip_diacritics(posting.location)
    if location:
        if any(loc in location for loc in rules.primary_locations):
            score += 2
        elif any(loc in location for loc in rules.secondary_locations):
            score += 1

    if rules.tech.search(text):
        score += 1

    return max(0, min(MAX_SCORE, score))


def rank(
    postings: Iterable[Posting],
    rules: FilterRules = DEFAULT_RULES,
    *,
    now: datetime | None = None,
) -> list[Posting]:
    """
    Filter, score, and sort by descending score. Ties keep discovery order.
    """
    admitted = [p.with_score(calculate_match_score(p, rules)) for p in postings if should_include(p, rules, now=now)]
    return sorted(admitted, key=lambda p: -(p.match_score or 0))


# -----------------------------
# Dates
# -----------------------------
def parse_posted_date(text: str | None, now: datetime | None = None) -> date | None:
    """
    Best-effort date for a posting's date text.

    Understands relative phrases ("3 days ago", "2 tuần trước", "today"),
    ISO "YYYY-MM-DD..." and "D/M/YYYY". Returns None when nothing matches.
    """
    now = now or datetime.now()
    raw = (text or "").strip()
    if not raw:
        return None

    folded = strip_diacritics(raw)
    if folded in {"today", "just now", "hom nay", "vua xong"}:
        return now.date()
    if folded in {"yesterday", "hom qua"}:
        return (now - timedelta(days=1)).date()
    m = _RELATIVE_RE.search(folded)
    if m:
        return (now - int(m.group(1)) * _RELATIVE_UNITS[m.group(2)]).date()

    m = _ISO_PREFIX_RE.match(raw)
    if m:
        try:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        except ValueError:
            pass

    m = _DMY_RE.search(raw)
    if m:
        try:
            return date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
        except ValueError:
            pass

    return None


def is_recent(
    text: str | None,
    *,
    now: datetime | None = None,
    window_days: int = 60,
    future_days: int = 2,
) -> bool:
    """
    Sentinels ("", "N/A", "Recent") and unrecognized text count as recent.
    A bare year token is accepted for the current and prior year only.
    """
    raw = (text or "").strip()
    if raw.lower() in RECENT_SENTINELS:
        return True

    now = now or datetime.now()
    posted = parse_posted_date(raw, now)
    if posted is not None:
        diff = now - datetime(posted.year, posted.month, posted.day)
        if diff > timedelta(days=window_days):
            return False
        if diff < -timedelta(days=future_days):
            return False
        return True

    m = _YEAR_RE.search(raw)
    if m:
        return int(m.group(1)) in (now.year, now.year - 1)

    return True
