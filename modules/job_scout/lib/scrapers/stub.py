from __future__ import annotations

from typing import Any

from ..models import Posting, ScrapeResult
from ..surface import Deadline, Surface
from ..utils import canonical_url
from .base import BaseScraper, ScraperError
from .registry import register


@register
class StubScraper(BaseScraper):
    """
    A zero-network scraper used for tests and dry runs. The surface is never touched.

    params may contain:
      - items: list[dict]   # Posting fields; url REQUIRED, title/company default to placeholders
      - errors: list[str]   # OPTIONAL, copied to ScrapeResult.errors
      - fail: str           # OPTIONAL, raise ScraperError(fail) instead of returning
      - timed_out: bool     # OPTIONAL, mark the result as cut short by the budget
    """

    kind = "stub"
    name = "Stub"
    needs_surface = False

    def run(
        self, surface: Surface | None, keywords: list[str], locations: list[str], *, deadline: Deadline
    ) -> ScrapeResult:
        if self.params.get("fail"):
            raise ScraperError(str(self.params["fail"]))

        raw_items = self.params.get("items") or []
        if not isinstance(raw_items, list):
            raw_items = []

        postings: list[Posting] = []
        for item in raw_items:
            if not isinstance(item, dict):
                continue
            url = canonical_url(str(item.get("url") or ""))
            if not url:
                continue  # URL is the identity; nothing to do without one
            fields: dict[str, Any] = {k: v for k, v in item.items() if k in Posting.__dataclass_fields__}
            fields.update(
                url=url,
                title=str(item.get("title") or "").strip() or "(no title)",
                company=str(item.get("company") or "").strip() or "(unknown)",
                source=str(item.get("source") or self.name),
            )
            fields.pop("match_score", None)
            postings.append(Posting(**fields))

        errors = self.params.get("errors") or []
        if not isinstance(errors, list):
            errors = [str(errors)]

        return ScrapeResult(
            source=self.name,
            items=postings,
            errors=[str(e) for e in errors],
            timed_out=bool(self.params.get("timed_out")),
        )
