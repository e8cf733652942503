import asyncio
from typing import Dict, List, Mapping, Optional, Tuple

from loguru import logger

from cexfeed.core.http_client import AntiDetectionClient
from cexfeed.core.models.announcement import ScrapedAnnouncement
from cexfeed.db.config.loader import ExchangeConfig, ApiSourceConfig
from cexfeed.modules.parsers.sources.base import SourceParser
from cexfeed.modules.parsers.sources.parsers import create_parser


class ApiSourceRegistry:
    """
    Prioritized JSON/RSS endpoints per exchange.

    Sources are tried one at a time by descending priority and the first
    one whose parser yields anything wins. Failures are logged and skipped;
    when every source fails the result is simply empty.
    """

    def __init__(self, exchanges: Mapping[str, ExchangeConfig], client: AntiDetectionClient):
        self._exchanges = exchanges
        self._client = client
        self._parsers: Dict[Tuple[str, str], SourceParser] = {}
        self._log = logger.bind(component="registry")

        for name, exchange in exchanges.items():
            for source in exchange.sources:
                self._parsers[(name, source.name)] = create_parser(source.parser)

    def sources_for(self, exchange: str) -> Tuple[ApiSourceConfig, ...]:
        config = self._exchanges.get(exchange)
        return config.sorted_sources() if config else ()

    async def fetch_announcements(self, exchange: str) -> List[ScrapedAnnouncement]:
        config = self._exchanges.get(exchange)
        if not config or not config.enabled:
            self._log.debug(f"No sources configured for {exchange}")
            return []

        log = self._log.bind(exchange=exchange)

        for source in config.sorted_sources():
            try:
                announcements = await self.fetch_source(config, source)
            except Exception as e:
                log.warning(f"{source.name} failed: {e}")
                continue

            if announcements:
                log.info(f"{source.name}: {len(announcements)} announcements")
                return announcements

            log.debug(f"{source.name}: empty")

        log.warning("All API sources failed or returned nothing")
        return []

    async def fetch_source(self, config: ExchangeConfig, source: ApiSourceConfig) -> List[ScrapedAnnouncement]:
        headers = dict(source.headers)
        if config.referer:
            headers.setdefault("Referer", config.referer)

        response = await self._client.smart_request(
            source.url,
            params=dict(source.params) or None,
            headers=headers,
            exchange=config.name,
        )

        body = response.text
        if not body:
            return []

        return self._parsers[(config.name, source.name)].parse(body)

    async def fetch_binance_announcements(self) -> List[ScrapedAnnouncement]:
        return await self.fetch_announcements("binance")

    async def fetch_okx_announcements(self) -> List[ScrapedAnnouncement]:
        return await self.fetch_announcements("okx")

    async def fetch_other_exchange_announcements(
            self, exchanges: Optional[List[str]] = None
    ) -> List[ScrapedAnnouncement]:
        """Best-effort fan-out over the lower-tier exchanges; failures are only logged"""
        names = exchanges if exchanges is not None else [
            name for name, config in self._exchanges.items() if config.enabled and not config.is_primary
        ]
        if not names:
            return []

        results = await asyncio.gather(
            *(self.fetch_announcements(name) for name in names),
            return_exceptions=True
        )

        announcements: List[ScrapedAnnouncement] = []
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                self._log.bind(exchange=name).warning(f"Other exchange fetch failed: {result}")
                continue
            announcements.extend(result)

        return announcements
