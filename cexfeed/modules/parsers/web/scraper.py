import asyncio
import hashlib
import json
import random
import re
from typing import Any, Callable, List, Mapping, Optional, Tuple

from bs4 import BeautifulSoup
from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt

from cexfeed.core.http_client import AntiDetectionClient, PlainHttpClient, is_anti_bot_response
from cexfeed.core.models.announcement import ScrapedAnnouncement, DEFAULT_CONTENT
from cexfeed.core.models.exceptions import AntiBotDetectedException
from cexfeed.db.config.loader import ExchangeConfig, WebConfig, WebSettings
from cexfeed.modules.parsers.sources.parsers import WebItemParser
from cexfeed.utils.classification import determine_importance, extract_tags, map_category
from cexfeed.utils.tools import Sleep, now_ms, truncate_content

PRIORITY_KEYS = ("list", "data", "announcements", "articles", "items")
TITLE_KEYS = ("title", "name", "articleTitle")

JSON_FRAGMENT_PATTERN = re.compile(r'\{[^{}]*"title"[^{}]*"[^"]*"[^{}]*\}')
TITLE_CLASS_PATTERN = re.compile("title")


def find_announcement_items(obj: Any, max_depth: int = 25) -> List[dict]:
    """
    Locate the first array of title-bearing objects in a JSON tree.

    Well-known container keys are searched before the rest of the object so
    the common layouts are found without walking the whole tree.
    """
    if max_depth < 0:
        return []

    if isinstance(obj, list):
        found = [item for item in obj if isinstance(item, dict) and any(item.get(k) for k in TITLE_KEYS)]
        if found:
            return found
        for item in obj:
            if isinstance(item, (dict, list)):
                if result := find_announcement_items(item, max_depth - 1):
                    return result
        return []

    if isinstance(obj, dict):
        for key in PRIORITY_KEYS:
            if obj.get(key):
                if result := find_announcement_items(obj[key], max_depth - 1):
                    return result
        for key, value in obj.items():
            if key in PRIORITY_KEYS or not isinstance(value, (dict, list)):
                continue
            if result := find_announcement_items(value, max_depth - 1):
                return result

    return []


def extract_state_variable(soup: BeautifulSoup, variable: str) -> Optional[Any]:
    """JSON assigned to a global like `window.__APP_DATA__ = {...}` inside a script tag"""
    assignment = re.compile(rf'(?:window\.)?{re.escape(variable)}\s*=\s*')
    decoder = json.JSONDecoder()

    for script in soup.find_all("script"):
        text = script.string
        if not text or variable not in text:
            continue
        for match in assignment.finditer(text):
            start = text.find("{", match.end())
            if start < 0:
                continue
            try:
                value, _ = decoder.raw_decode(text, start)
                return value
            except ValueError:
                continue
    return None


def extract_hydration_payload(soup: BeautifulSoup, tag_id: str) -> Optional[Any]:
    """Framework hydration blob stored in `<script id=...>` or `<script data-id=...>`"""
    script = soup.find("script", id=tag_id) or soup.find("script", attrs={"data-id": tag_id})
    if not script or not script.string:
        return None
    try:
        return json.loads(script.string.strip())
    except ValueError:
        return None


def extract_json_fragments(html: str) -> List[dict]:
    items = []
    for fragment in JSON_FRAGMENT_PATTERN.findall(html):
        try:
            data = json.loads(fragment)
        except ValueError:
            continue
        if isinstance(data, dict) and data.get("title"):
            items.append(data)
    return items


def extract_title_elements(soup: BeautifulSoup, limit: int = 10, min_length: int = 5) -> List[str]:
    titles = []
    for element in soup.find_all(class_=TITLE_CLASS_PATTERN, limit=limit):
        text = element.string
        if text is None:
            continue
        title = text.strip()
        if len(title) > min_length:
            titles.append(title)
    return titles


class HtmlPageScraper:
    """Recovers announcements from rendered exchange pages"""

    def __init__(
            self,
            exchanges: Mapping[str, ExchangeConfig],
            client: AntiDetectionClient,
            plain_client: PlainHttpClient,
            settings: Optional[WebSettings] = None,
            sleep: Sleep = asyncio.sleep,
    ):
        self._exchanges = exchanges
        self._client = client
        self._plain = plain_client
        self.settings = settings or WebSettings()
        self._sleep = sleep
        self._log = logger.bind(component="web")

    async def scrape_exchange_web(self, exchange: str) -> List[ScrapedAnnouncement]:
        """First candidate URL that yields anything wins; empty if every URL fails"""
        config = self._exchanges.get(exchange)
        if not config or not config.web or not config.web.urls:
            return []

        log = self._log.bind(exchange=exchange)

        for url in config.web.urls:
            try:
                log.info(f"Scraping page {url}")
                html = await self.fetch_page(url, exchange, config.web.referer)
                announcements = self.parse_page(html, config)
            except Exception as e:
                log.warning(f"Page failed {url}: {truncate_content(str(e), 200)}")
                continue

            if announcements:
                return announcements

        log.error("All page URLs failed")
        return []

    async def scrape_binance_web(self) -> List[ScrapedAnnouncement]:
        return await self.scrape_exchange_web("binance")

    async def scrape_okx_web(self) -> List[ScrapedAnnouncement]:
        return await self.scrape_exchange_web("okx")

    def _page_backoff(self, retry_state: RetryCallState) -> float:
        low, high = self.settings.retry_delay
        factor = 2 ** (retry_state.attempt_number - 1)
        return random.uniform(low * factor, high * factor)

    async def fetch_page(self, url: str, exchange: str, referer: str = "") -> str:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.max_retries + 1),
            wait=self._page_backoff,
            reraise=True,
            sleep=self._sleep,
            before_sleep=lambda retry_state: self._log.bind(exchange=exchange).warning(
                f"Page retry {retry_state.attempt_number}/{self.settings.max_retries}: {url}"
            ),
        )

        async for attempt in retrying:
            with attempt:
                return await self._fetch_once(url, exchange, referer)

    async def _fetch_once(self, url: str, exchange: str, referer: str) -> str:
        """Adaptive client first, plain GET as fallback; both validated as non-blocking pages"""
        log = self._log.bind(exchange=exchange)
        try:
            response = await self._client.smart_request(url, headers={"Referer": referer or url}, exchange=exchange)
            html = response.text
            if html and not is_anti_bot_response(html):
                log.debug(f"Adaptive fetch ok {url} ({len(html) // 1024}KB)")
                return html
            raise AntiBotDetectedException(url, status=response.status_code)
        except Exception as e:
            log.warning(f"Adaptive fetch failed, trying plain request: {truncate_content(str(e), 200)}")

        return await self._plain.get_text(url, referer or url)

    def parse_page(self, html: str, config: ExchangeConfig) -> List[ScrapedAnnouncement]:
        """
        Extraction cascade over one page, most structured first:
        global state variable, hydration payload, JSON fragments, title
        elements, and finally the configured example records.
        """
        web = config.web
        exchange = config.name
        log = self._log.bind(exchange=exchange)

        try:
            soup = BeautifulSoup(html, "html.parser")

            strategies: Tuple[Tuple[str, Callable[[], List[dict]]], ...] = (
                ("app", lambda: self._from_state_variables(soup, web)),
                ("next", lambda: self._from_hydration(soup, web)),
                ("regex", lambda: extract_json_fragments(html)),
            )
            for name, strategy in strategies:
                items = strategy()
                if items:
                    parser = WebItemParser(exchange, f"{exchange}_{name}", web.detail_url)
                    announcements = parser.build_many(items)
                    log.info(f"Extracted {len(announcements)} announcements ({name})")
                    return announcements

            titles = extract_title_elements(soup, self.settings.max_title_elements, self.settings.min_title_length)
            if titles:
                log.info(f"Extracted {len(titles)} titles from page elements")
                return [self._from_title(title, config) for title in titles]

        except Exception as e:
            log.error(f"Page parse failed: {e}")

        log.warning("Nothing extracted from page, serving example data")
        now = now_ms()
        return [record.to_announcement(exchange, now) for record in web.examples]

    @staticmethod
    def _from_state_variables(soup: BeautifulSoup, web: WebConfig) -> List[dict]:
        for variable in web.state_variables:
            data = extract_state_variable(soup, variable)
            if data is not None and (items := find_announcement_items(data)):
                return items
        return []

    @staticmethod
    def _from_hydration(soup: BeautifulSoup, web: WebConfig) -> List[dict]:
        for tag_id in web.hydration_ids:
            data = extract_hydration_payload(soup, tag_id)
            if data is not None and (items := find_announcement_items(data)):
                return items
        return []

    @staticmethod
    def _from_title(title: str, config: ExchangeConfig) -> ScrapedAnnouncement:
        # Title is the only stable handle a bare element offers
        digest = hashlib.md5(title.encode("utf-8")).hexdigest()[:12]
        return ScrapedAnnouncement(
            id=f"{config.name}_html_{digest}",
            exchange=config.name,
            title=title,
            content=DEFAULT_CONTENT,
            category=map_category(title),
            importance=determine_importance(title),
            publish_time=now_ms(),
            tags=extract_tags(title),
            url=config.web.detail_url or config.base_url,
        )
