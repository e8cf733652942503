import json

from bs4 import BeautifulSoup

from cexfeed.core.models.announcement import Category
from cexfeed.db.config.loader import WebSettings
from cexfeed.modules.parsers.web.scraper import (
    HtmlPageScraper,
    extract_hydration_payload,
    extract_state_variable,
    extract_title_elements,
    find_announcement_items,
)
from conftest import FakeClient, FakePlainClient, FakeResponse

FILLER = "<p>Stay up to date with the latest announcements and product news.</p>" * 20

APP_DATA_PAGE = """<html><head><script>
window.__APP_DATA__ = {"appState": {"articles": [
  {"code": "x1", "title": "Binance Will List ABC (ABC)", "releaseDate": 1704067200000},
  {"code": "x2", "title": "Binance Will Delist XYZ", "releaseDate": 1704063600000}
]}};
</script></head><body></body></html>"""

NEXT_DATA_PAGE = """<html><body>
<script id="__NEXT_DATA__" type="application/json">
{"props": {"pageProps": {"list": [{"id": "n1", "title": "OKX上线PORTAL现货交易"}]}}}
</script></body></html>"""

FRAGMENT_PAGE = """<html><body><script>
var cards = [{"id": 5, "title": "Binance Futures Will Launch ORDI Perpetual"}];
</script></body></html>"""

TITLE_PAGE = f"""<html><body>
<div class="article-title">Binance Will List ABC Token</div>
<div class="article-title">Scheduled System Maintenance</div>
<div class="article-title">Hi</div>
{FILLER}
</body></html>"""

EMPTY_PAGE = f"<html><body>{FILLER}</body></html>"


def make_scraper(exchanges, client, plain, sleep):
    return HtmlPageScraper(exchanges, client, plain, WebSettings(max_retries=2), sleep=sleep)


class TestExtractors:
    def test_find_items_prefers_known_keys(self):
        tree = {"meta": {"title": "page"}, "data": {"items": [{"title": "A"}, {"name": "B"}, "x"]}}

        assert find_announcement_items(tree) == [{"title": "A"}, {"name": "B"}]

    def test_find_items_nested_lists(self):
        tree = {"sections": [[], {"blocks": [{"articleTitle": "C"}]}]}

        assert find_announcement_items(tree) == [{"articleTitle": "C"}]

    def test_find_items_depth_limit(self):
        tree = {"a": {"b": {"c": [{"title": "deep"}]}}}

        assert find_announcement_items(tree, max_depth=1) == []

    def test_state_variable(self):
        soup = BeautifulSoup(APP_DATA_PAGE, "html.parser")

        data = extract_state_variable(soup, "__APP_DATA__")

        assert data["appState"]["articles"][0]["code"] == "x1"
        assert extract_state_variable(soup, "__MISSING__") is None

    def test_hydration_by_data_id(self):
        html = '<script data-id="__app_data_for_ssr__" type="application/json">{"appContext": {}}</script>'
        soup = BeautifulSoup(html, "html.parser")

        assert extract_hydration_payload(soup, "__app_data_for_ssr__") == {"appContext": {}}
        assert extract_hydration_payload(soup, "__NEXT_DATA__") is None

    def test_title_elements(self):
        soup = BeautifulSoup(TITLE_PAGE, "html.parser")

        assert extract_title_elements(soup) == ["Binance Will List ABC Token", "Scheduled System Maintenance"]


class TestParsePage:
    def test_state_variable_strategy(self, exchanges, binance_config, sleep):
        scraper = make_scraper(exchanges, FakeClient(), FakePlainClient(), sleep)

        first, second = scraper.parse_page(APP_DATA_PAGE, binance_config)

        assert first.id == "binance_app_x1"
        assert first.category == Category.NEW_LISTINGS
        assert first.publish_time == 1704067200000
        assert first.url == "https://www.binance.com/zh-CN/support/announcement/x1"
        assert second.category == Category.DELISTING
        assert not first.synthetic

    def test_hydration_strategy(self, exchanges, okx_config, sleep):
        scraper = make_scraper(exchanges, FakeClient(), FakePlainClient(), sleep)

        [ann] = scraper.parse_page(NEXT_DATA_PAGE, okx_config)

        assert ann.id == "okx_next_n1"
        assert ann.exchange == "okx"

    def test_json_fragment_strategy(self, exchanges, binance_config, sleep):
        scraper = make_scraper(exchanges, FakeClient(), FakePlainClient(), sleep)

        [ann] = scraper.parse_page(FRAGMENT_PAGE, binance_config)

        assert ann.id == "binance_regex_5"
        assert ann.category == Category.DERIVATIVES

    def test_title_element_strategy_has_stable_ids(self, exchanges, binance_config, sleep):
        scraper = make_scraper(exchanges, FakeClient(), FakePlainClient(), sleep)

        first_run = scraper.parse_page(TITLE_PAGE, binance_config)
        second_run = scraper.parse_page(TITLE_PAGE, binance_config)

        assert [a.title for a in first_run] == ["Binance Will List ABC Token", "Scheduled System Maintenance"]
        assert [a.id for a in first_run] == [a.id for a in second_run]
        assert first_run[0].id.startswith("binance_html_")
        assert first_run[0].id != first_run[1].id

    def test_examples_are_last_resort(self, exchanges, binance_config, sleep):
        scraper = make_scraper(exchanges, FakeClient(), FakePlainClient(), sleep)

        [ann] = scraper.parse_page(EMPTY_PAGE, binance_config)

        assert ann.id == "binance_web_example_1"
        assert ann.synthetic


class TestScrapeExchangeWeb:
    async def test_adaptive_client(self, exchanges, sleep):
        client = FakeClient({"https://binance.test/page": FakeResponse(200, APP_DATA_PAGE)})
        plain = FakePlainClient()
        scraper = make_scraper(exchanges, client, plain, sleep)

        announcements = await scraper.scrape_binance_web()

        assert len(announcements) == 2
        assert plain.calls == []

    async def test_live_page_with_robots_meta_and_account_nav(self, exchanges, sleep):
        page = APP_DATA_PAGE.replace(
            "<head>", '<head><meta name="robots" content="index,follow">'
        ).replace(
            "<body></body>", f"<body><nav>Identity Verification | Security</nav>{FILLER}</body>"
        )
        client = FakeClient({"https://binance.test/page": FakeResponse(200, page)})
        plain = FakePlainClient()
        scraper = make_scraper(exchanges, client, plain, sleep)

        announcements = await scraper.scrape_exchange_web("binance")

        assert len(announcements) == 2
        assert plain.calls == []
        assert sleep.calls == []

    async def test_plain_fallback_after_anti_bot_page(self, exchanges, sleep):
        blocked = "<html><title>Just a moment...</title>Checking your browser - Cloudflare</html>"
        client = FakeClient({"https://okx.test/page": FakeResponse(200, blocked)})
        plain = FakePlainClient({"https://okx.test/page": NEXT_DATA_PAGE})
        scraper = make_scraper(exchanges, client, plain, sleep)

        announcements = await scraper.scrape_okx_web()

        assert [a.id for a in announcements] == ["okx_next_n1"]
        assert plain.calls == ["https://okx.test/page"]

    async def test_retries_then_gives_up(self, exchanges, sleep):
        client = FakeClient()
        plain = FakePlainClient()
        scraper = make_scraper(exchanges, client, plain, sleep)

        assert await scraper.scrape_exchange_web("binance") == []
        assert len(plain.calls) == 3
        assert len(sleep.calls) == 2
        assert 2 <= sleep.calls[0] <= 4
        assert 4 <= sleep.calls[1] <= 8

    async def test_exchange_without_pages(self, exchanges, sleep):
        scraper = make_scraper(exchanges, FakeClient(), FakePlainClient(), sleep)

        assert await scraper.scrape_exchange_web("bybit") == []
