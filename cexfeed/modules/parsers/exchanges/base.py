import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from loguru import logger

from cexfeed.core.http_client import AntiDetectionClient
from cexfeed.core.models.announcement import ScrapedAnnouncement
from cexfeed.db.config.loader import ExchangeConfig, AggregationSettings
from cexfeed.modules.parsers.sources.base import SourceParser
from cexfeed.modules.parsers.sources.registry import ApiSourceRegistry
from cexfeed.modules.parsers.web.scraper import HtmlPageScraper
from cexfeed.utils.tools import Sleep, human_delay, now_ms, truncate_content

Stage = Tuple[str, Callable[[], Awaitable[List[ScrapedAnnouncement]]]]


class ExchangeScraper(ABC):
    """
    Per-exchange strategy cascade:
    API registry -> legacy endpoints -> HTML scrape -> static fallback.

    Stages run strictly in that order and the first one producing at least
    one announcement ends the cascade. A stage that raises counts as empty.
    """

    def __init__(
            self,
            config: ExchangeConfig,
            client: AntiDetectionClient,
            registry: ApiSourceRegistry,
            web_scraper: HtmlPageScraper,
            aggregation: Optional[AggregationSettings] = None,
            sleep: Sleep = asyncio.sleep,
    ):
        self.config = config
        self.name = config.name
        self.client = client
        self.registry = registry
        self.web_scraper = web_scraper
        self.legacy_delay = (aggregation or AggregationSettings()).legacy_delay
        self._sleep = sleep

        self._log = logger.bind(component="scraper", exchange=self.name)

    @property
    def stages(self) -> Tuple[Stage, ...]:
        return (
            ("api_registry", self.try_api_registry),
            ("legacy_endpoints", self.try_legacy_endpoints),
            ("html_scrape", self.try_html_scrape),
        )

    async def scrape(self) -> List[ScrapedAnnouncement]:
        """Run the cascade; never raises and never returns empty while fallback data exists"""
        for stage, run in self.stages:
            try:
                announcements = await run()
            except Exception as e:
                self._log.error(f"{stage} failed: {truncate_content(str(e), 200)}")
                continue

            if announcements:
                self._log.info(f"{stage}: {len(announcements)} announcements")
                return announcements

            self._log.info(f"{stage} yielded nothing, escalating")

        self._log.warning("All strategies exhausted, serving static fallback data")
        return self.get_fallback_data()

    async def try_api_registry(self) -> List[ScrapedAnnouncement]:
        return await self.registry.fetch_announcements(self.name)

    async def try_legacy_endpoints(self) -> List[ScrapedAnnouncement]:
        """Named endpoint groups in order, paced by a human-like pause between attempts"""
        legacy = self.config.legacy
        if not legacy or not legacy.endpoints:
            return []

        parser = self.create_legacy_parser()

        for index, (group, url) in enumerate(legacy.endpoints):
            if index:
                await human_delay(*self.legacy_delay, sleep=self._sleep)

            try:
                response = await self.client.smart_request(
                    url,
                    params=dict(legacy.params) or None,
                    headers={"Referer": self.config.referer} if self.config.referer else None,
                    exchange=self.name,
                )
                data = json.loads(response.text)
            except Exception as e:
                self._log.warning(f"Legacy {group} endpoint failed: {truncate_content(str(e), 200)}")
                continue

            if not self.is_valid_response(data):
                self._log.warning(f"Legacy {group} endpoint returned an unusable payload")
                continue

            announcements = parser.parse_payload(data)
            if announcements:
                self._log.info(f"Legacy {group} endpoint: {len(announcements)} announcements")
                return announcements

        return []

    async def try_html_scrape(self) -> List[ScrapedAnnouncement]:
        return await self.web_scraper.scrape_exchange_web(self.name)

    def is_valid_response(self, data: Any) -> bool:
        """Must carry an array-bearing field and must not be an explicit error payload"""
        if isinstance(data, list):
            return True
        if not isinstance(data, dict):
            return False

        valid_keys = self.config.legacy.valid_keys if self.config.legacy else ("data", "list")
        has_items = any(data.get(key) for key in valid_keys)
        return has_items and data.get("success") is not False and data.get("code") != "error"

    def get_fallback_data(self) -> List[ScrapedAnnouncement]:
        now = now_ms()
        return [record.to_announcement(self.name, now) for record in self.config.fallback]

    def legacy_url_template(self) -> Optional[str]:
        legacy = self.config.legacy
        return f"{legacy.detail_url}{{ref}}" if legacy and legacy.detail_url else None

    @abstractmethod
    def create_legacy_parser(self) -> SourceParser:
        """Parser for this exchange's legacy endpoint payloads"""
        pass
