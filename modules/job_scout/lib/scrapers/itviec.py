from __future__ import annotations

import logging
from collections.abc import Iterator

from ..models import Posting
from ..surface import Deadline, Element, StepStatus, Surface
from ..utils import canonical_url, clean_text, slugify_keyword, strip_diacritics
from .base import BrowserScraper, SearchTarget, first_attr, first_text
from .registry import register

log = logging.getLogger(__name__)

LOCATION_SLUGS = {
    "ho chi minh": "ho-chi-minh-hcm",
    "can tho": "can-tho",
    "ha noi": "ha-noi",
    "da nang": "da-nang",
}

LEVEL_DROPDOWN = "#dropdown-job-level"
FRESHER_OPTION = 'input[value="Fresher"][name="job_level_names[]"]'
FRESHER_LABEL = 'label[for*="Fresher"]'
FILTER_BADGE = '[data-jobs--filter-target="filterCounter"]'
EMPTY_STATE = 'div[data-jobs--filter-target="searchNoInfo"]:not(.d-none)'
CARD = "div.job-card"
DETAIL_PANEL = "div.preview-job-content"


def location_slug(location: str) -> str:
    key = strip_diacritics(location).strip()
    return LOCATION_SLUGS.get(key) or slugify_keyword(key)


@register
class ITViecScraper(BrowserScraper):
    """
    itviec.com: one listing per (keyword, location) at /it-jobs/<keyword>/<location>.

    The listing is a master/detail page; clicking a card loads the description
    into a side panel and rewrites the page URL to the posting's URL.
    Sits behind Cloudflare, so the Turnstile checkbox gets one click.
    """

    kind = "itviec"
    name = "ITViec"
    base_url = "https://itviec.com"
    max_cards = 15

    def search_targets(self, keywords: list[str], locations: list[str]) -> Iterator[SearchTarget]:
        slugs = self.params.get("location_slugs") or {}
        for keyword in keywords:
            kw_slug = slugify_keyword(keyword)
            for loc in locations:
                slug = slugs.get(loc) or location_slug(loc)
                yield SearchTarget(keyword, loc, f"{self.base_url}/it-jobs/{kw_slug}/{slug}")

    def apply_filters(self, surface: Surface, target: SearchTarget, deadline: Deadline) -> StepStatus:
        return self.attempt("fresher_filter", lambda: self._fresher_filter(surface, deadline))

    def _fresher_filter(self, surface: Surface, deadline: Deadline) -> StepStatus:
        dropdown = [d for d in surface.query(LEVEL_DROPDOWN) if d.is_visible()]
        if not dropdown:
            return StepStatus.failed("fresher_filter", "level dropdown not found")
        dropdown[0].click()
        surface.wait(deadline.clamp_ms(1000))

        option = surface.query(FRESHER_OPTION) or surface.query(FRESHER_LABEL)
        if not option:
            return StepStatus.failed("fresher_filter", "Fresher option not found")
        option[0].click()
        surface.wait(deadline.clamp_ms(2000))

        # close the dropdown
        body = surface.query("body")
        if body:
            body[0].click()

        badge = surface.query(FILTER_BADGE)
        count = badge[0].text().strip() if badge and badge[0].is_visible() else ""
        if count != "1":
            return StepStatus.failed("fresher_filter", f"filter badge shows {count or 'nothing'}")
        return StepStatus.done("fresher_filter", "1 active filter")

    def is_empty(self, surface: Surface) -> bool:
        return any(e.is_visible() for e in surface.query(EMPTY_STATE))

    def list_cards(self, surface: Surface) -> list[Element]:
        surface.wait_for(CARD, 3000)
        return surface.query(CARD)

    def extract(self, surface: Surface, card: Element, target: SearchTarget, deadline: Deadline) -> Posting | None:
        title = first_text(card, "h3")
        if not title:
            return None
        company = first_text(card, "a.text-rich-grey, span.text-rich-grey")
        salary = first_text(card, "div.salary span.ips-2")
        places = card.query("div.text-rich-grey[title]")
        location = clean_text(places[-1].text()) if places else target.facet

        card.click(deadline.clamp_ms(5000))
        surface.wait(deadline.clamp_ms(500))
        url = canonical_url(surface.url)
        if url == canonical_url(target.url):
            # the panel did not take over the URL; fall back to the card link
            url = canonical_url(first_attr(card, "a[href]", "href"), self.base_url)
        if not url:
            raise ValueError(f"no posting URL for {title!r}")

        description = ""
        panel = surface.query(DETAIL_PANEL)
        if panel and panel[0].is_visible():
            parts = [first_text(panel[0], ".job-description"), first_text(panel[0], ".job-experiences")]
            description = "\n\n".join(p for p in parts if p)

        return self.make_posting(
            title=title,
            company=company,
            url=url,
            salary=salary,
            location=location,
            description=description,
            posted_date="Recent",
        )
