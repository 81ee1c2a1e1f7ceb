import os

import pytest

from fakes import FakeElement, FakePage, FakeSurface
from modules.job_scout.lib.scrapers import (
    ChallengeError,
    LoginRequiredError,
    ScraperError,
    all_kinds,
    get,
    keyword_present,
    register,
)
from modules.job_scout.lib.scrapers import indeed, itviec, linkedin, topcv
from modules.job_scout.lib.scrapers.base import TURNSTILE_CONTROLS, BaseScraper, detect_stack
from modules.job_scout.lib.scrapers.stub import StubScraper
from modules.job_scout.lib.surface import Deadline


class TripwireDeadline(Deadline):
    """Deadline that expires once `trip()` has been called."""

    def __init__(self):
        super().__init__(600)
        self.tripped = False

    def trip(self):
        self.tripped = True

    def expired(self):
        return self.tripped or super().expired()


def _el(text="", **kw):
    return FakeElement(text, **kw)


# ---- Helpers / registry -----------------------------------------------------


@pytest.mark.parametrize(
    "keyword,title,description,expected",
    [
        ("golang", "Junior Golang Developer", "", True),
        ("golang developer", "Golang Backend Developer", "", True),
        ("go developer", "Developer (Go)", "", True),
        ("golang", "Java Developer", "We might use Golang later", True),
        ("golang", "Java Developer", "Spring Boot", False),
        ("lập trình", "Lap trinh vien Go", "", True),
        ("", "anything", "", True),
    ],
)
def test_keyword_present(keyword, title, description, expected):
    assert keyword_present(keyword, title, description) is expected


def test_detect_stack_lists_known_terms_in_order():
    assert detect_stack("Golang Developer", "Docker, Kubernetes and Redis") == "Go, Docker, Kubernetes, Redis"
    assert detect_stack("Office assistant") == ""


def test_registry_holds_every_site():
    kinds = all_kinds()
    assert {"itviec", "topcv", "linkedin", "indeed", "stub"} <= set(kinds)
    assert get("ITViec") is itviec.ITViecScraper
    with pytest.raises(KeyError):
        get("glassdoor")


def test_registry_rejects_a_second_class_for_a_kind():
    class Impostor(BaseScraper):
        kind = "itviec"

        def run(self, surface, keywords, locations, *, deadline):
            raise NotImplementedError

    with pytest.raises(ValueError):
        register(Impostor)
    assert register(itviec.ITViecScraper) is itviec.ITViecScraper


def test_registry_defaults_name_to_kind():
    @register
    class Quiet(BaseScraper):
        kind = "quiet-test"

        def run(self, surface, keywords, locations, *, deadline):
            raise NotImplementedError

    assert Quiet.name == "quiet-test"


# ---- Stub -------------------------------------------------------------------


def test_stub_builds_postings_from_params():
    scraper = StubScraper({
        "items": [
            {"title": "Golang Intern", "url": "https://x.example.com/1?utm=a", "match_score": 10},
            {"title": "no url"},
            "garbage",
        ],
        "errors": ["card 3 broke"],
    })
    res = scraper.run(FakeSurface(), ["golang"], [], deadline=Deadline(60))
    assert [p.url for p in res.items] == ["https://x.example.com/1"]
    assert res.items[0].company == "(unknown)"
    assert res.items[0].match_score is None
    assert res.errors == ["card 3 broke"]


def test_stub_fail_raises_scraper_error():
    with pytest.raises(ScraperError, match="blocked"):
        StubScraper({"fail": "blocked"}).run(FakeSurface(), [], [], deadline=Deadline(60))


# ---- ITViec -----------------------------------------------------------------

ITVIEC_TARGET = "https://itviec.com/it-jobs/golang/can-tho"
COMPANY_SEL = "a.text-rich-grey, span.text-rich-grey"


def _itviec_card(surface, title, detail_url, *, company="Acme", href=None, **kw):
    children = {
        "h3": [_el(title)],
        COMPANY_SEL: [_el(company)],
        "div.salary span.ips-2": [_el("1,000 - 1,500 USD")],
        "div.text-rich-grey[title]": [_el("At office"), _el("Can Tho")],
    }
    if href:
        children["a[href]"] = [_el(attrs={"href": href})]
    return _el(children=children, on_click=lambda: surface.set_url(detail_url), **kw)


def _itviec_surface(cards_for):
    panel = _el(children={
        ".job-description": [_el("Build Go services with Docker.")],
        ".job-experiences": [_el("Fresh graduates welcome.")],
    })
    page = FakePage({
        itviec.LEVEL_DROPDOWN: [_el()],
        itviec.FRESHER_OPTION: [_el()],
        "body": [_el()],
        itviec.FILTER_BADGE: [_el("1")],
        itviec.DETAIL_PANEL: [panel],
    })
    surface = FakeSurface()
    page.elements[itviec.CARD] = cards_for(surface)
    surface.pages[ITVIEC_TARGET] = page
    return surface, page


def _share_page(surface, page, *urls):
    # the panel rewrites the URL without leaving the listing page
    for u in urls:
        surface.pages[u] = page


def test_itviec_targets_use_location_slugs():
    scraper = itviec.ITViecScraper({"location_slugs": {"Remote": "remote"}})
    urls = [t.url for t in scraper.search_targets(["Golang Developer"], ["Hồ Chí Minh", "Cần Thơ", "Remote"])]
    assert urls == [
        "https://itviec.com/it-jobs/golang-developer/ho-chi-minh-hcm",
        "https://itviec.com/it-jobs/golang-developer/can-tho",
        "https://itviec.com/it-jobs/golang-developer/remote",
    ]


def test_itviec_extracts_cards_through_the_detail_panel(tmp_path):
    d1 = "https://itviec.com/it-jobs/junior-golang-developer-acme-1234?lab_source=search"
    d2 = "https://itviec.com/it-jobs/golang-intern-beta-99"
    surface, page = _itviec_surface(lambda s: [
        _itviec_card(s, "Junior Golang Developer", d1),
        _el(children={"h3": []}),  # ad slot without a title
        _itviec_card(s, "Golang Intern", d2, company="Beta"),
    ])
    _share_page(surface, page, d1, d2)

    res = itviec.ITViecScraper(screenshots_dir=str(tmp_path)).run(
        surface, ["golang"], ["Can Tho"], deadline=Deadline(600)
    )

    assert res.errors == [] and not res.timed_out
    assert [p.url for p in res.items] == [
        "https://itviec.com/it-jobs/junior-golang-developer-acme-1234",
        "https://itviec.com/it-jobs/golang-intern-beta-99",
    ]
    first = res.items[0]
    assert first.company == "Acme"
    assert first.salary == "1,000 - 1,500 USD"
    assert first.location == "Can Tho"
    assert first.description == "Build Go services with Docker.\n\nFresh graduates welcome."
    assert first.tech_stack == "Go, Docker"
    assert first.source == "ITViec"
    assert first.posted_date == "Recent"
    assert page.elements[itviec.LEVEL_DROPDOWN][0].clicks == 1
    assert page.elements[itviec.FRESHER_OPTION][0].clicks == 1


def test_itviec_falls_back_to_card_link_when_url_does_not_change(tmp_path):
    surface, page = _itviec_surface(lambda s: [
        _itviec_card(s, "Golang Developer", ITVIEC_TARGET, href="/it-jobs/golang-developer-gamma-77?x=1"),
    ])
    res = itviec.ITViecScraper(screenshots_dir=str(tmp_path)).run(
        surface, ["golang"], ["Can Tho"], deadline=Deadline(600)
    )
    assert [p.url for p in res.items] == ["https://itviec.com/it-jobs/golang-developer-gamma-77"]


def test_itviec_failing_card_is_recorded_and_skipped(tmp_path):
    d2 = "https://itviec.com/it-jobs/golang-2"
    surface, page = _itviec_surface(lambda s: [
        _itviec_card(s, "Golang Developer", "unused", fail_click=True),
        _itviec_card(s, "Golang Developer II", d2),
    ])
    _share_page(surface, page, d2)
    res = itviec.ITViecScraper(screenshots_dir=str(tmp_path)).run(
        surface, ["golang"], ["Can Tho"], deadline=Deadline(600)
    )
    assert len(res.items) == 1
    assert len(res.errors) == 1 and "card 0" in res.errors[0]


def test_itviec_filter_failure_is_advisory(tmp_path):
    d1 = "https://itviec.com/it-jobs/golang-1"
    surface, page = _itviec_surface(lambda s: [_itviec_card(s, "Golang Developer", d1)])
    _share_page(surface, page, d1)
    del page.elements[itviec.LEVEL_DROPDOWN]
    res = itviec.ITViecScraper(screenshots_dir=str(tmp_path)).run(
        surface, ["golang"], ["Can Tho"], deadline=Deadline(600)
    )
    assert len(res.items) == 1


def test_exclude_keywords_and_missing_keyword_drop_cards(tmp_path):
    d1, d2, d3 = (f"https://itviec.com/it-jobs/j-{i}" for i in range(3))
    surface, page = _itviec_surface(lambda s: [
        _itviec_card(s, "Golang Developer", d1, company="Outsourcing Co"),
        _itviec_card(s, "PHP Developer", d2),
        _itviec_card(s, "Golang Engineer", d3),
    ])
    page.elements[itviec.DETAIL_PANEL] = []
    _share_page(surface, page, d1, d2, d3)
    scraper = itviec.ITViecScraper(screenshots_dir=str(tmp_path), exclude_keywords=["outsourcing"])
    res = scraper.run(surface, ["golang"], ["Can Tho"], deadline=Deadline(600))
    assert [p.url for p in res.items] == [d3]


def test_navigation_failure_skips_the_combination(tmp_path):
    d1 = "https://itviec.com/it-jobs/golang-1"
    surface, page = _itviec_surface(lambda s: [_itviec_card(s, "Golang Developer", d1)])
    _share_page(surface, page, d1)
    surface.fail.add("https://itviec.com/it-jobs/golang/ho-chi-minh-hcm")

    res = itviec.ITViecScraper(screenshots_dir=str(tmp_path)).run(
        surface, ["golang"], ["Ho Chi Minh", "Can Tho"], deadline=Deadline(600)
    )
    assert res.errors == ["navigation failed: https://itviec.com/it-jobs/golang/ho-chi-minh-hcm"]
    assert len(res.items) == 1


class _DetachedListing(FakeSurface):
    """Listing queries on `broken_url` fail the way a navigated-away page does."""

    def __init__(self, broken_url, **kw):
        super().__init__(**kw)
        self.broken_url = broken_url

    def query(self, selector):
        if selector == itviec.CARD and self.current == self.broken_url:
            raise RuntimeError("Execution context was destroyed, most likely because of a navigation")
        return super().query(selector)


def test_driver_error_costs_only_its_combination(tmp_path):
    hcm = "https://itviec.com/it-jobs/golang/ho-chi-minh-hcm"
    d1 = "https://itviec.com/it-jobs/golang-1"
    surface = _DetachedListing(hcm)
    _, page = _itviec_surface(lambda s: [_itviec_card(surface, "Golang Developer", d1)])
    surface.pages[ITVIEC_TARGET] = page
    _share_page(surface, page, d1)

    res = itviec.ITViecScraper(screenshots_dir=str(tmp_path)).run(
        surface, ["golang"], ["Ho Chi Minh", "Can Tho"], deadline=Deadline(600)
    )
    assert len(res.errors) == 1
    assert res.errors[0].startswith(hcm) and "Execution context was destroyed" in res.errors[0]
    assert [p.url for p in res.items] == [d1]
    assert surface.visits[:2] == [hcm, ITVIEC_TARGET]


def test_empty_listing_is_skipped(tmp_path):
    surface, page = _itviec_surface(lambda s: [_itviec_card(s, "Golang Developer", "x")])
    page.elements[itviec.EMPTY_STATE] = [_el("No jobs")]
    res = itviec.ITViecScraper(screenshots_dir=str(tmp_path)).run(
        surface, ["golang"], ["Can Tho"], deadline=Deadline(600)
    )
    assert res.items == []
    assert page.elements[itviec.CARD][0].clicks == 0


def test_persistent_challenge_raises_with_screenshot(tmp_path):
    surface, page = _itviec_surface(lambda s: [])
    page.title = "Just a moment..."
    with pytest.raises(ChallengeError) as excinfo:
        itviec.ITViecScraper(screenshots_dir=str(tmp_path)).run(
            surface, ["golang"], ["Can Tho"], deadline=Deadline(600)
        )
    shot = excinfo.value.screenshot
    assert shot and os.path.basename(shot).startswith("itviec_challenge_")
    assert os.path.exists(shot)


def test_turnstile_click_clears_the_challenge(tmp_path):
    d1 = "https://itviec.com/it-jobs/golang-1"
    surface, page = _itviec_surface(lambda s: [_itviec_card(s, "Golang Developer", d1)])
    _share_page(surface, page, d1)
    page.title = "Just a moment..."
    page.elements[TURNSTILE_CONTROLS] = [_el(on_click=lambda: setattr(page, "title", "Việc làm IT"))]

    res = itviec.ITViecScraper(screenshots_dir=str(tmp_path)).run(
        surface, ["golang"], ["Can Tho"], deadline=Deadline(600)
    )
    assert len(res.items) == 1
    assert page.elements[TURNSTILE_CONTROLS][0].clicks == 1


def test_expired_budget_keeps_partial_results(tmp_path):
    deadline = TripwireDeadline()
    d1 = "https://itviec.com/it-jobs/golang-1"

    def _cards(s):
        second = _itviec_card(s, "Golang Developer II", "https://itviec.com/it-jobs/golang-2")
        second.on_click = deadline.trip
        return [_itviec_card(s, "Golang Developer", d1), second]

    surface, page = _itviec_surface(_cards)
    _share_page(surface, page, d1)
    res = itviec.ITViecScraper(screenshots_dir=str(tmp_path)).run(
        surface, ["golang"], ["Can Tho", "Ho Chi Minh"], deadline=deadline
    )
    assert res.timed_out
    assert [p.url for p in res.items] == [d1]
    assert "https://itviec.com/it-jobs/golang/ho-chi-minh-hcm" not in surface.visits


# ---- TopCV ------------------------------------------------------------------

TOPCV_COMPANY = ".company-name, .company-name a, .company a, .employer-name"


def _topcv_card(title, href, company="Acme"):
    return _el(children={
        topcv.TITLE_LINK: [_el(title, attrs={"href": href})],
        TOPCV_COMPANY: [_el(company)],
    })


def test_topcv_targets_cover_experience_levels():
    targets = list(topcv.TopCVScraper().search_targets(["Golang Developer"], []))
    assert [t.facet for t in targets] == ["exp=1", "exp=2", "exp=3"]
    assert targets[0].url == (
        "https://www.topcv.vn/tim-viec-lam-golang-developer-tai-ho-chi-minh-kl2"
        "?exp=1&sort=new&type_keyword=1&sba=1&locations=l2_l20&saturday_status=0"
    )


def test_topcv_warms_up_and_extracts(tmp_path):
    scraper = topcv.TopCVScraper({"exp_levels": [1, 2]}, screenshots_dir=str(tmp_path))
    t1, t2 = (t.url for t in scraper.search_targets(["golang"], []))
    survey = _el()
    surface = FakeSurface({
        t1: FakePage({
            topcv.SURVEY_CANCEL: [survey],
            topcv.CARD: [
                _topcv_card("Golang Developer (Fresher)", "https://www.topcv.vn/viec-lam/golang-dev/1.html?ta_source=x"),
                _topcv_card("Golang Developer (Fresher)", "https://www.topcv.vn/viec-lam/golang-dev/1.html"),
                _el(children={}),
            ],
        }),
        t2: FakePage({topcv.CAPTCHA: [_el()], topcv.CARD: [_topcv_card("Golang", "https://www.topcv.vn/x")]}),
    })

    res = scraper.run(surface, ["golang"], [], deadline=Deadline(600))

    assert surface.visits == [topcv.HOME_URL, t1, t2]
    assert surface.headers == {"Referer": topcv.HOME_URL}
    assert survey.clicks == 1
    assert len(res.items) == 1
    p = res.items[0]
    assert p.url == "https://www.topcv.vn/viec-lam/golang-dev/1.html"
    assert p.salary == "Negotiable"
    assert p.location == "Vietnam"
    assert p.source == "TopCV"


def test_topcv_uses_fallback_card_selector(tmp_path):
    scraper = topcv.TopCVScraper({"exp_levels": [1]}, screenshots_dir=str(tmp_path))
    (t1,) = (t.url for t in scraper.search_targets(["golang"], []))
    surface = FakeSurface({t1: FakePage({topcv.CARD_FALLBACK: [_topcv_card("Golang Intern", "/viec-lam/gi/2.html")]})})
    res = scraper.run(surface, ["golang"], [], deadline=Deadline(600))
    assert [p.url for p in res.items] == ["https://www.topcv.vn/viec-lam/gi/2.html"]


def test_topcv_warm_up_failure_is_not_fatal(tmp_path):
    scraper = topcv.TopCVScraper({"exp_levels": [1]}, screenshots_dir=str(tmp_path))
    surface = FakeSurface(fail={topcv.HOME_URL})
    res = scraper.run(surface, ["golang"], [], deadline=Deadline(600))
    assert res.items == []
    assert surface.headers == {}


# ---- LinkedIn ---------------------------------------------------------------


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Ho Chi Minh City, Vietnam · 6 days ago · 16 people clicked apply", ("Ho Chi Minh City, Vietnam", "6 days ago")),
        ("Can Tho, Vietnam", ("Can Tho, Vietnam", "")),
        ("", ("", "")),
    ],
)
def test_split_primary_description(text, expected):
    assert linkedin.split_primary_description(text) == expected


@pytest.mark.parametrize(
    "location,description,expected",
    [
        ("Ho Chi Minh City, Vietnam", "", "HCM"),
        ("Cần Thơ, Vietnam", "", "Can Tho"),
        ("Vietnam", "This role is fully remote", "Remote"),
        ("Hà Nội, Vietnam", "", None),
        ("Vietnam", "Office in Hanoi", None),
        ("Da Nang, Vietnam", "", "Da Nang, Vietnam"),
        ("", "", "Unknown"),
    ],
)
def test_label_location(location, description, expected):
    assert linkedin.label_location(location, description) == expected


def _linkedin_detail(title, primary, description="We build Go services on Kubernetes."):
    return FakePage({
        linkedin.TOP_CARD: [_el()],
        linkedin.DETAIL_TITLE: [_el(title)],
        linkedin.DETAIL_COMPANY: [_el("Acme")],
        linkedin.PRIMARY_DESCRIPTION: [_el(primary)],
        linkedin.EXPAND_BUTTON: [_el()],
        linkedin.DESCRIPTION: [_el(description)],
    })


def _linkedin_item(href):
    return _el(children={linkedin.ITEM_LINK: [_el(attrs={"href": href})]})


def test_linkedin_requires_a_logged_in_session(tmp_path):
    surface = FakeSurface({linkedin.FEED_URL: FakePage(title="LinkedIn Login")})
    with pytest.raises(LoginRequiredError):
        linkedin.LinkedInScraper({"warm_up_sec": 0}, screenshots_dir=str(tmp_path)).run(
            surface, ["golang"], [], deadline=Deadline(600)
        )
    assert any("linkedin_login_failed" in s for s in surface.screenshots)


def test_linkedin_reads_details_in_a_separate_tab(tmp_path):
    search = linkedin.SEARCH_URL.format(q="golang")
    surface = FakeSurface({
        linkedin.FEED_URL: FakePage({linkedin.GLOBAL_NAV: [_el()]}),
        search: FakePage({
            linkedin.LIST_READY: [_el()],
            linkedin.LIST_ITEM: [
                _linkedin_item("/jobs/view/111/?refId=abc&trackingId=x"),
                _linkedin_item("/jobs/view/222/"),
                _linkedin_item("/jobs/view/333/"),
                _el(),
            ],
        }),
        "https://www.linkedin.com/jobs/view/111/": _linkedin_detail(
            "Golang Developer", "Ho Chi Minh City, Vietnam · 3 days ago · 20 applicants"
        ),
        "https://www.linkedin.com/jobs/view/222/": _linkedin_detail("Golang Developer", "Hanoi, Vietnam · 1 day ago"),
        # 333 never renders its top card
    })

    res = linkedin.LinkedInScraper({"warm_up_sec": 0}, screenshots_dir=str(tmp_path)).run(
        surface, ["golang"], [], deadline=Deadline(600)
    )

    assert [p.url for p in res.items] == ["https://www.linkedin.com/jobs/view/111/"]
    p = res.items[0]
    assert (p.location, p.posted_date, p.company) == ("HCM", "3 days ago", "Acme")
    assert p.tech_stack == "Go, Kubernetes"
    assert len(res.errors) == 1 and "333" in res.errors[0]
    assert len(surface.tabs) == 3 and all(t.closed for t in surface.tabs)
    assert search in surface.visits


def test_linkedin_missing_list_yields_nothing(tmp_path):
    surface = FakeSurface({linkedin.FEED_URL: FakePage({linkedin.GLOBAL_NAV: [_el()]})})
    res = linkedin.LinkedInScraper({"warm_up_sec": 0, "keywords": ["go developer"]}, screenshots_dir=str(tmp_path)).run(
        surface, ["golang"], [], deadline=Deadline(600)
    )
    assert res.items == [] and res.errors == []
    assert linkedin.SEARCH_URL.format(q="go%20developer") in surface.visits


# ---- Indeed -----------------------------------------------------------------


def test_indeed_clicks_cards_for_descriptions(tmp_path):
    scraper = indeed.IndeedScraper({"locations": ["Cần Thơ"]}, screenshots_dir=str(tmp_path))
    (target,) = scraper.search_targets(["golang"], [])
    page = FakePage()
    long_text = "Golang backend developer, REST APIs, Docker. Fresh graduates are welcome to apply."

    def _show(text):
        return lambda: page.elements.__setitem__(indeed.DESCRIPTION, [_el(text)])

    page.elements[indeed.CARD] = [
        _el(children={
            indeed.TITLE: [_el("Golang Developer")],
            indeed.LINK: [_el(attrs={"data-jk": "abc123", "href": "/rc/clk?jk=abc123&from=serp"}, on_click=_show(long_text))],
            indeed.COMPANY: [_el("Acme")],
        }),
        _el(children={
            indeed.TITLE: [_el("Golang Intern")],
            indeed.LINK: [_el(attrs={"href": "/viewjob?jk=def456&from=serp"}, on_click=_show("Apply now"))],
        }),
    ]
    surface = FakeSurface({target.url: page})

    res = scraper.run(surface, ["golang"], [], deadline=Deadline(600))

    assert [p.url for p in res.items] == ["https://vn.indeed.com/viewjob?jk=abc123"]
    p = res.items[0]
    assert p.location == "Cần Thơ"
    assert p.description == long_text
    assert p.source == "Indeed"


def test_indeed_targets_sort_by_date():
    targets = list(indeed.IndeedScraper().search_targets(["golang"], []))
    assert [t.facet for t in targets] == list(indeed.DEFAULT_LOCATIONS)
    assert targets[0].url == "https://vn.indeed.com/jobs?q=golang&l=Vietnam&sort=date"
