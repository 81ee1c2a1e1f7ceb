from __future__ import annotations

import logging
from collections.abc import Iterator
from urllib.parse import urlencode

from ..evasion import human_scroll, random_delay
from ..models import Posting
from ..surface import Deadline, Element, Surface
from .base import BrowserScraper, SearchTarget, first_attr, first_markup_text, first_text
from .registry import register

log = logging.getLogger(__name__)

DEFAULT_LOCATIONS = ("Vietnam", "Cần Thơ", "Remote")
CARD = ".job_seen_beacon, .resultContent"
TITLE = 'h2.jobTitle span[title], a[id^="job_"]'
LINK = 'h2.jobTitle a, a[id^="job_"]'
COMPANY = '[data-testid="company-name"], .companyName'
LOCATION = '[data-testid="text-location"], .companyLocation'
DESCRIPTION = "#jobDescriptionText, .jobsearch-JobComponent-description"
MIN_DESCRIPTION_CHARS = 50


@register
class IndeedScraper(BrowserScraper):
    """
    vn.indeed.com, newest first. The description only exists in the right-hand
    pane, so every card is clicked; cards whose description fails to load are dropped.
    """

    kind = "indeed"
    name = "Indeed"
    base_url = "https://vn.indeed.com"
    max_cards = 15

    def search_targets(self, keywords: list[str], locations: list[str]) -> Iterator[SearchTarget]:
        places = self.params.get("locations") or DEFAULT_LOCATIONS
        for keyword in keywords:
            for place in places:
                query = urlencode({"q": keyword, "l": place, "sort": "date"})
                yield SearchTarget(keyword, place, f"{self.base_url}/jobs?{query}")

    def list_cards(self, surface: Surface) -> list[Element]:
        random_delay(1000, 2000)
        human_scroll(surface)
        return surface.query(CARD)

    def extract(self, surface: Surface, card: Element, target: SearchTarget, deadline: Deadline) -> Posting | None:
        title = first_text(card, TITLE)
        jk = first_attr(card, LINK, "data-jk")
        href = f"{self.base_url}/viewjob?jk={jk}" if jk else first_attr(card, LINK, "href")
        if not title or not href:
            return None

        links = card.query(LINK)
        (links[0] if links else card).click(deadline.clamp_ms(3000))
        description = ""
        if surface.wait_for(DESCRIPTION, deadline.clamp_ms(5000)):
            description = first_markup_text(surface, DESCRIPTION)
        if len(description) < MIN_DESCRIPTION_CHARS:
            log.info("Indeed: description missing for %r, skipping", title)
            return None

        posting = self.make_posting(
            title=title,
            company=first_text(card, COMPANY) or "Unknown",
            url=href,
            location=first_text(card, LOCATION) or target.facet,
            description=description,
            posted_date="Recent",
        )
        random_delay(500, 1000)
        return posting
