from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterator
from urllib.parse import quote

from ..evasion import capture_screenshot, human_scroll, mouse_jiggle, random_delay
from ..models import Posting
from ..surface import Deadline, Element, NavigationError, Surface
from ..utils import canonical_url, clean_text, strip_diacritics
from .base import (
    BrowserScraper,
    LoginRequiredError,
    SearchTarget,
    first_attr,
    first_markup_text,
    first_text,
)
from .registry import register

log = logging.getLogger(__name__)

FEED_URL = "https://www.linkedin.com/feed/"
GLOBAL_NAV = "#global-nav"
# f_E=1,2,3 internship/entry/associate; f_TPR=r2592000 past month; f_WT=1,3 on-site/hybrid; geoId Vietnam
SEARCH_URL = (
    "https://www.linkedin.com/jobs/search/?f_E=1%2C2%2C3&f_TPR=r2592000&f_WT=1%2C3"
    "&geoId=104195383&keywords={q}&origin=JOB_SEARCH_PAGE_JOB_FILTER&refresh=true"
)
LIST_READY = "li.scaffold-layout__list-item, .job-card-container"
LIST_ITEM = "li.scaffold-layout__list-item, li.jobs-search-results__list-item"
ITEM_LINK = "a.job-card-container__link"

TOP_CARD = (
    ".job-details-jobs-unified-top-card__primary-description-container, "
    ".job-details-jobs-unified-top-card__job-title"
)
DETAIL_TITLE = ".job-details-jobs-unified-top-card__job-title, h1"
DETAIL_COMPANY = ".job-details-jobs-unified-top-card__company-name, .job-details-jobs-unified-top-card__subtitle"
PRIMARY_DESCRIPTION = ".job-details-jobs-unified-top-card__primary-description-container"
EXPAND_BUTTON = 'button[data-testid="expandable-text-button"]'
DESCRIPTION = '[data-testid="expandable-text-box"]'
DESCRIPTION_FALLBACK = "#job-details, .jobs-description__content"

POSTED_RE = re.compile(r"(\d+\s+(?:minute|hour|day|week|month)s?\s+ago)", re.IGNORECASE)
EXCLUDED_LOCATION_RE = re.compile(r"\b(?:hn|hanoi|ha noi|thu do)\b")
LOCATION_LABELS = (
    (re.compile(r"\b(?:hcm|ho chi minh|saigon|tphcm)\b"), "HCM"),
    (re.compile(r"\b(?:can tho|cantho)\b"), "Can Tho"),
    (re.compile(r"\bremote\b"), "Remote"),
)


def split_primary_description(text: str) -> tuple[str, str]:
    """
    "Ho Chi Minh City, Vietnam · 6 days ago · 16 people clicked apply"
    -> ("Ho Chi Minh City, Vietnam", "6 days ago"). Missing parts come back "".
    """
    parts = [p.strip() for p in (text or "").split("·")]
    location = parts[0] if parts else ""
    m = POSTED_RE.search(text or "")
    return location, (m.group(1) if m else "")


def label_location(location: str, description: str = "") -> str | None:
    """
    Short location label, or None when the posting is in an excluded city
    (the search is country-wide and Hanoi roles are not wanted).
    """
    haystack = strip_diacritics(f"{location} {description}")
    if EXCLUDED_LOCATION_RE.search(haystack):
        return None
    for pattern, label in LOCATION_LABELS:
        if pattern.search(haystack):
            return label
    return location or "Unknown"


@register
class LinkedInScraper(BrowserScraper):
    """
    linkedin.com jobs search. Needs a logged-in session (cookies-linkedin.json);
    detail pages are opened in a separate tab so the result list stays put.
    """

    kind = "linkedin"
    name = "LinkedIn"
    base_url = "https://www.linkedin.com"
    max_cards = 10

    def warm_up(self, surface: Surface, deadline: Deadline) -> None:
        try:
            surface.goto(FEED_URL, deadline.clamp_ms(self.nav_timeout_ms))
        except NavigationError as e:
            raise LoginRequiredError(f"LinkedIn feed unreachable: {e}") from e
        if not surface.wait_for(GLOBAL_NAV, deadline.clamp_ms(10_000)):
            shot = capture_screenshot(surface, self.screenshots_dir, "linkedin_login_failed")
            raise LoginRequiredError(f"LinkedIn login failed, navigation bar not found (screenshot: {shot})")
        log.info("LinkedIn: login confirmed")

        ends = time.monotonic() + float(self.params.get("warm_up_sec", 3.0))
        while time.monotonic() < ends and not deadline.expired():
            mouse_jiggle(surface)
            random_delay(1000, 2000)

    def search_targets(self, keywords: list[str], locations: list[str]) -> Iterator[SearchTarget]:
        for keyword in self.params.get("keywords") or keywords:
            yield SearchTarget(keyword, "Vietnam", SEARCH_URL.format(q=quote(keyword)))

    def list_cards(self, surface: Surface) -> list[Element]:
        if not surface.wait_for(LIST_READY, 15_000):
            log.warning("LinkedIn: job list not found on %s", surface.url)
            capture_screenshot(surface, self.screenshots_dir, "linkedin_job_list_missing")
            return []
        random_delay(2000, 3000)
        human_scroll(surface, steps=3)
        return surface.query(LIST_ITEM)

    def extract(self, surface: Surface, card: Element, target: SearchTarget, deadline: Deadline) -> Posting | None:
        url = canonical_url(first_attr(card, ITEM_LINK, "href"), self.base_url)
        if not url:
            return None

        tab = surface.open_tab()
        try:
            return self._read_detail(tab, url, deadline)
        finally:
            tab.close()

    def _read_detail(self, tab: Surface, url: str, deadline: Deadline) -> Posting | None:
        tab.goto(url, deadline.clamp_ms(self.nav_timeout_ms))
        if not tab.wait_for(TOP_CARD, deadline.clamp_ms(5000)):
            capture_screenshot(tab, self.screenshots_dir, "linkedin_job_load_fail")
            raise ValueError(f"job details did not load: {url}")

        title = first_text(tab, DETAIL_TITLE)
        if not title:
            return None
        location, posted = split_primary_description(first_text(tab, PRIMARY_DESCRIPTION))

        for button in tab.query(EXPAND_BUTTON)[:1]:
            if button.is_visible():
                button.click()
        description = first_markup_text(tab, DESCRIPTION) or first_markup_text(tab, DESCRIPTION_FALLBACK)

        label = label_location(location, description)
        if label is None:
            log.info("LinkedIn: skipping %r (excluded location %r)", title, clean_text(location))
            return None

        return self.make_posting(
            title=title,
            company=first_text(tab, DETAIL_COMPANY) or "Unknown",
            url=url,
            location=label,
            description=description,
            posted_date=posted or "Recent",
        )
