from __future__ import annotations

from collections.abc import Mapping

from . import utils
from .models import Posting

TELEGRAM_MAX_CHARS = 4096


def posting_message(p: Posting) -> str:
    """
    Telegram HTML for one posting:

        🔥 <b>Junior Golang Developer</b>
        🏢 Acme
        💰 Negotiable
        📍 Can Tho
        🛠 Docker, Kubernetes
        ⭐ Match Score: 9/10
        🌐 Source: ITViec
        🔗 <a href="...">Apply Now</a>
    """
    lines = [
        f"🔥 <b>{utils.esc(p.title or '(no title)')}</b>",
        f"🏢 {utils.esc(p.company or 'Unknown')}",
        f"💰 {utils.esc(p.salary)}",
        f"📍 {utils.esc(p.location or 'N/A')}",
    ]
    if p.tech_stack:
        lines.append(f"🛠 {utils.esc(p.tech_stack)}")
    if p.match_score is not None:
        lines.append(f"⭐ Match Score: {p.match_score}/10")
    if p.source:
        lines.append(f"🌐 Source: {utils.esc(p.source)}")
    lines.append(f'🔗 <a href="{utils.esc(p.url)}">Apply Now</a>')
    return _truncate("\n".join(lines))


def status_message(text: str) -> str:
    return _truncate(f"ℹ️ {utils.esc(text)}")


def error_message(text: str, *, title: str = "Job Scout Error") -> str:
    return _truncate(f"⚠️ <b>{utils.esc(title)}</b>:\n{utils.esc(text)}")


def run_summary(
    found_by_source: Mapping[str, int],
    admitted_total: int,
    unseen_total: int,
    sent: int,
    failed: int,
    *,
    dry_run: bool = False,
    timed_out: bool = False,
) -> str:
    """
    One-paragraph plain-text summary used for the status message, e.g.
    "Scan complete: 12 found (itviec 5, topcv 7), 4 relevant, 2 new, 2 sent."
    """
    found_total = sum(found_by_source.values())
    per_source = ", ".join(f"{src} {n}" for src, n in found_by_source.items())
    parts = [f"Scan complete: {found_total} found"]
    if per_source:
        parts[0] += f" ({per_source})"
    parts.append(f"{admitted_total} relevant")
    parts.append(f"{unseen_total} new")
    if dry_run:
        parts.append("dry run, nothing sent")
    else:
        parts.append(f"{sent} sent")
        if failed:
            parts.append(f"{failed} failed")
    text = ", ".join(parts) + "."
    if timed_out:
        text += " Run budget exhausted before all sources finished."
    return text


def _truncate(text: str) -> str:
    if len(text) <= TELEGRAM_MAX_CHARS:
        return text
    return text[: TELEGRAM_MAX_CHARS - 1] + "…"
