from __future__ import annotations

import html
import re
import time
import unicodedata
from typing import Any
from urllib.parse import parse_qs, urlencode, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup


def esc(s: str | None) -> str:
    """
    Escape text for Telegram HTML parse mode (and attribute values).
    """
    if s is None:
        return ""
    return html.escape(str(s), quote=True)


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "on", "y", "t"}


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


# -----------------------------
# URLs / text
# -----------------------------
# Hosts that carry the job identity in the query string; everything else in
# the query is tracking noise.
IDENTITY_PARAMS: dict[str, tuple[str, ...]] = {"indeed.com": ("jk",)}


def canonical_url(url: str | None, base: str | None = None) -> str:
    """
    Dedup key for a posting URL.

    Resolves relative links against `base`, then drops the fragment and the
    query string. Sites append tracking parameters (?lab_source=..., ?refId=...)
    that differ between visits to the same listing. Hosts listed in
    IDENTITY_PARAMS keep only their identity parameters.
    """
    raw = (url or "").strip()
    if not raw:
        return ""
    if base:
        raw = urljoin(base, raw)
    parts = urlsplit(raw)
    if not parts.scheme or not parts.netloc:
        return raw.split("?", 1)[0].split("#", 1)[0]

    host = parts.netloc.lower()
    query = ""
    for suffix, names in IDENTITY_PARAMS.items():
        if host == suffix or host.endswith("." + suffix):
            params = parse_qs(parts.query)
            query = urlencode([(n, params[n][0]) for n in names if params.get(n)])
            break
    return urlunsplit((parts.scheme.lower(), host, parts.path, query, ""))


def slugify_keyword(keyword: str) -> str:
    """'Golang  Developer' -> 'golang-developer'."""
    return re.sub(r"\s+", "-", (keyword or "").strip().lower())


def strip_diacritics(text: str | None) -> str:
    """
    Lowercase and remove combining marks: 'Cần Thơ' -> 'can tho'.
    """
    decomposed = unicodedata.normalize("NFD", text or "")
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return unicodedata.normalize("NFC", stripped).lower()


def clean_text(text: str | None) -> str:
    """Collapse runs of whitespace."""
    return re.sub(r"\s+", " ", text or "").strip()


def html_to_text(markup: str | None) -> str:
    """
    Flatten a description fragment to plain text.
    """
    if not markup:
        return ""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return clean_text(soup.get_text(" ", strip=True))
