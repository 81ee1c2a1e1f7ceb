from __future__ import annotations

import logging
from collections.abc import Iterator
from urllib.parse import urlencode

from ..evasion import mouse_jiggle, random_delay, smooth_scroll
from ..models import Posting
from ..surface import Deadline, Element, NavigationError, StepStatus, Surface
from ..utils import slugify_keyword
from .base import BrowserScraper, SearchTarget, first_attr, first_text
from .registry import register

log = logging.getLogger(__name__)

HOME_URL = "https://www.topcv.vn/"

# exp facet: 1 = no experience, 2 = under one year, 3 = one year
DEFAULT_EXP_LEVELS = (1, 2, 3)
# l2 = Ho Chi Minh, l20 = Can Tho
DEFAULT_LOCATION_CODES = "l2_l20"

CAPTCHA = ".captcha, .recaptcha, [data-captcha]"
EMPTY_STATE = ".none-suitable-job"
CARD = ".job-item-search-result"
CARD_FALLBACK = ".job-item"
SURVEY_CANCEL = "#modal-survey-reliability .btn-cancel"
TITLE_LINK = "h3.title a, .title-block a, a.title"


@register
class TopCVScraper(BrowserScraper):
    """
    topcv.vn: one listing per (keyword, experience level), HCM and Can Tho at once.

    Only direct search results (.job-item-search-result) are taken; suggested
    jobs further down the page use other markup.
    """

    kind = "topcv"
    name = "TopCV"
    base_url = "https://www.topcv.vn"
    max_cards = 20
    challenge_wait_ms = 7_000

    def warm_up(self, surface: Surface, deadline: Deadline) -> None:
        try:
            surface.goto(HOME_URL, deadline.clamp_ms(self.nav_timeout_ms))
        except NavigationError as e:
            log.warning("TopCV: home page warm-up failed: %s", e)
            return
        random_delay(1000, 2000)
        surface.set_headers({"Referer": HOME_URL})

    def search_targets(self, keywords: list[str], locations: list[str]) -> Iterator[SearchTarget]:
        levels = self.params.get("exp_levels") or DEFAULT_EXP_LEVELS
        codes = self.params.get("location_codes") or DEFAULT_LOCATION_CODES
        for keyword in keywords:
            slug = slugify_keyword(keyword)
            for exp in levels:
                query = urlencode({
                    "exp": exp,
                    "sort": "new",
                    "type_keyword": 1,
                    "sba": 1,
                    "locations": codes,
                    "saturday_status": 0,
                })
                url = f"{self.base_url}/tim-viec-lam-{slug}-tai-ho-chi-minh-kl2?{query}"
                yield SearchTarget(keyword, f"exp={exp}", url)

    def is_empty(self, surface: Surface) -> bool:
        if surface.query(CAPTCHA):
            log.warning("TopCV: captcha on %s, skipping", surface.url)
            return True
        return any(e.is_visible() for e in surface.query(EMPTY_STATE))

    def apply_filters(self, surface: Surface, target: SearchTarget, deadline: Deadline) -> StepStatus:
        return self.attempt("dismiss_survey", lambda: self._dismiss_survey(surface))

    def _dismiss_survey(self, surface: Surface) -> StepStatus:
        buttons = [b for b in surface.query(SURVEY_CANCEL) if b.is_visible()]
        if not buttons:
            return StepStatus.done("dismiss_survey", "no survey modal")
        buttons[0].click()
        return StepStatus.done("dismiss_survey", "survey modal closed")

    def list_cards(self, surface: Surface) -> list[Element]:
        random_delay(1000, 3000)
        mouse_jiggle(surface)
        smooth_scroll(surface)
        cards = surface.query(CARD)
        if not cards:
            cards = surface.query(CARD_FALLBACK)
            if cards:
                log.info("TopCV: using fallback card selector (%d)", len(cards))
        return cards

    def extract(self, surface: Surface, card: Element, target: SearchTarget, deadline: Deadline) -> Posting | None:
        title = first_text(card, TITLE_LINK)
        href = first_attr(card, TITLE_LINK, "href")
        if not title or not href:
            return None
        return self.make_posting(
            title=title,
            company=first_text(card, ".company-name, .company-name a, .company a, .employer-name") or "Unknown",
            url=href,
            salary=first_text(card, ".title-salary, .salary"),
            location=first_text(card, ".address, .location, .label-address") or "Vietnam",
            posted_date="Recent",
        )
