import asyncio
from loguru import logger
from typing import Dict, List, Optional

from cexfeed.core.http_client import AntiDetectionClient, PlainHttpClient
from cexfeed.core.models.announcement import (
    ScrapedAnnouncement,
    AnnouncementFilter,
    Importance,
    apply_filter,
)
from cexfeed.core.proxy_manager import ExchangeProxyManager
from cexfeed.db.cache.redis_cache import RedisCache
from cexfeed.db.config.loader import AppConfig
from cexfeed.db.repository import AnnouncementRepository
from cexfeed.modules.parsers.exchanges.base import ExchangeScraper
from cexfeed.modules.parsers.exchanges.factory import ExchangeFactory
from cexfeed.modules.parsers.sources.registry import ApiSourceRegistry
from cexfeed.modules.parsers.web.scraper import HtmlPageScraper
from cexfeed.utils.tools import Sleep, random_delay, truncate_content


class Orchestrator:
    """
    Cross-exchange aggregator.

    Owns the request clients, the API source registry and the HTML scraper
    as sibling components and composes them into one cascade per primary
    exchange. Other exchanges are served best-effort from the registry.
    """

    def __init__(
            self,
            config: AppConfig,
            client: Optional[AntiDetectionClient] = None,
            plain_client: Optional[PlainHttpClient] = None,
            registry: Optional[ApiSourceRegistry] = None,
            web_scraper: Optional[HtmlPageScraper] = None,
            repo: Optional[AnnouncementRepository] = None,
            cache: Optional[RedisCache] = None,
            sleep: Sleep = asyncio.sleep,
    ):
        self.config = config
        self.client = client
        self.plain_client = plain_client
        self.registry = registry
        self.web_scraper = web_scraper
        self.repo = repo
        self.cache = cache
        self.scrapers: Dict[str, ExchangeScraper] = {}

        self._sleep = sleep
        self._log = logger.bind(component="orchestrator")
        self._tasks: List[asyncio.Task] = []
        self._running = True
        self._stats: Dict[str, Dict[str, int]] = {}

    async def initialize_components(self):
        """Initialize all components that were not injected"""
        self._init_proxy_manager()
        self._init_http_clients()
        await self._init_storage()
        self._init_scrapers()

    def _init_proxy_manager(self):
        """Initialize proxy manager with per-exchange pools"""
        self.proxy_manager = ExchangeProxyManager()
        self.proxy_manager.register_from_config(self.config.exchanges)

        pools = " | ".join(f"{name.capitalize()} ({size})" for name, size in self.proxy_manager.pool_sizes().items())
        if pools:
            self._log.info(f"Registered exchanges proxies: {pools}")

    def _init_http_clients(self):
        request = self.config.request
        if self.client is None:
            self.client = AntiDetectionClient(
                proxy_manager=self.proxy_manager,
                origins={name: exc.base_url for name, exc in self.config.exchanges.items() if exc.base_url},
                timeout=request.timeout,
                max_retries=request.max_retries,
                challenge_delay=request.challenge_delay,
                rate_limit_default=request.rate_limit_default,
                backoff_max=request.backoff_max,
                sleep=self._sleep,
            )
        if self.plain_client is None:
            self.plain_client = PlainHttpClient(timeout=self.config.web.timeout)

        if self.registry is None:
            self.registry = ApiSourceRegistry(self.config.exchanges, self.client)
        if self.web_scraper is None:
            self.web_scraper = HtmlPageScraper(
                self.config.exchanges,
                self.client,
                self.plain_client,
                self.config.web,
                sleep=self._sleep,
            )

    async def _init_storage(self):
        storage = self.config.storage
        if self.cache is None:
            self.cache = RedisCache(
                storage.redis_url,
                storage.use_fakeredis,
                batch_ttl=self.config.aggregation.cache_ttl,
            )
        if self.repo is None:
            self.repo = AnnouncementRepository(storage.db_path, self.cache)
        await self.repo.init()

    def _init_scrapers(self):
        """One strategy cascade per enabled primary exchange"""
        for exc_config in self.config.primary_exchanges:
            name = exc_config.name
            self._stats[name] = {'runs': 0, 'announcements': 0, 'errors': 0, 'fallbacks': 0}

            if name in self.scrapers:
                continue
            if not ExchangeFactory.supports(name):
                self._log.warning(f"No cascade for primary exchange {name}, registry only")
                continue

            self.scrapers[name] = ExchangeFactory.create(
                exc_config,
                self.client,
                self.registry,
                self.web_scraper,
                aggregation=self.config.aggregation,
                sleep=self._sleep,
            )

        self._log.info(f"Initialized scrapers: {', '.join(self.scrapers) or '-'}")

    async def scrape_exchange(self, name: str) -> List[ScrapedAnnouncement]:
        scraper = self.scrapers.get(name)
        if scraper is None:
            return await self.registry.fetch_announcements(name)
        return await scraper.scrape()

    async def scrape_binance_announcements(self) -> List[ScrapedAnnouncement]:
        return await self.scrape_exchange("binance")

    async def scrape_okx_announcements(self) -> List[ScrapedAnnouncement]:
        return await self.scrape_exchange("okx")

    async def fetch_binance_announcements(self) -> List[ScrapedAnnouncement]:
        """Registry-only Binance fetch, without the scraping stages"""
        return await self.registry.fetch_binance_announcements()

    async def scrape_all_exchanges(self, persist: bool = True) -> List[ScrapedAnnouncement]:
        """
        Scrape every exchange concurrently and merge the results.

        A failing exchange is logged and skipped. The merged list is sorted
        newest first, deduplicated by title prefix and, unless `persist` is
        False, upserted into the repository and cached as the latest batch.
        """
        names = [exc.name for exc in self.config.primary_exchanges]

        primary_results, others = await asyncio.gather(
            asyncio.gather(*(self.scrape_exchange(name) for name in names), return_exceptions=True),
            self._scrape_other_exchanges(),
        )

        merged: List[ScrapedAnnouncement] = []
        for name, result in zip(names, primary_results):
            stats = self._stats.setdefault(name, {'runs': 0, 'announcements': 0, 'errors': 0, 'fallbacks': 0})
            stats['runs'] += 1

            if isinstance(result, Exception):
                stats['errors'] += 1
                self._log.bind(exchange=name).error(f"Scrape failed: {truncate_content(str(result), 200)}")
                continue

            stats['announcements'] += len(result)
            if result and all(ann.synthetic for ann in result):
                stats['fallbacks'] += 1
            merged.extend(result)

        merged.extend(others)

        merged.sort(key=lambda ann: ann.publish_time, reverse=True)
        announcements = self.remove_duplicate_announcements(merged)

        self._log.info(f"Aggregated {len(announcements)} announcements ({len(merged)} before dedup)")

        if persist and announcements:
            await self._persist(announcements)

        return announcements

    async def _scrape_other_exchanges(self) -> List[ScrapedAnnouncement]:
        if not self.config.other_exchanges:
            return []
        try:
            return await self.registry.fetch_other_exchange_announcements(
                [exc.name for exc in self.config.other_exchanges]
            )
        except Exception as e:
            self._log.warning(f"Other exchanges failed: {truncate_content(str(e), 200)}")
            return []

    @staticmethod
    def remove_duplicate_announcements(announcements: List[ScrapedAnnouncement]) -> List[ScrapedAnnouncement]:
        """Keep the first announcement per normalized title prefix"""
        seen = set()
        unique = []
        for ann in announcements:
            key = ann.dedup_key
            if key in seen:
                continue
            seen.add(key)
            unique.append(ann)
        return unique

    async def _persist(self, announcements: List[ScrapedAnnouncement]):
        try:
            await self.repo.upsert_many(announcements)
        except Exception as e:
            self._log.error(f"Failed to persist announcements: {e}")

        if self.cache:
            try:
                await self.cache.set_batch(announcements)
            except Exception as e:
                self._log.warning(f"Failed to cache batch: {e}")

    async def health_check(self) -> Dict[str, bool]:
        """
        Probe the API registry and the web scraper of every primary exchange.

        A web probe that only produced example data counts as unreachable.
        """
        checks: Dict[str, bool] = {}

        for exc_config in self.config.primary_exchanges:
            name = exc_config.name
            api_result, web_result = await asyncio.gather(
                self.registry.fetch_announcements(name),
                self.web_scraper.scrape_exchange_web(name),
                return_exceptions=True,
            )

            checks[f"{name}_api"] = isinstance(api_result, list) and len(api_result) > 0
            checks[f"{name}_web"] = (
                    isinstance(web_result, list)
                    and any(not ann.synthetic for ann in web_result)
            )

        self._log.info(f"Health check: {checks}")
        return checks

    async def get_announcements(self, use_cache: bool = True,
                                flt: Optional[AnnouncementFilter] = None) -> List[ScrapedAnnouncement]:
        """Latest batch from the cache while it is fresh, otherwise a new scrape"""
        announcements = None
        if use_cache and self.cache:
            try:
                announcements = await self.cache.get_batch()
            except Exception as e:
                self._log.warning(f"Cache read failed: {e}")

        if announcements is None:
            announcements = await self.scrape_all_exchanges()
        else:
            self._log.debug(f"Serving {len(announcements)} cached announcements")

        return apply_filter(announcements, flt) if flt else announcements

    async def get_token_related_announcements(self, symbol: str) -> List[ScrapedAnnouncement]:
        symbol = symbol.upper()
        return [
            ann for ann in await self.get_announcements()
            if symbol in ann.title.upper() or symbol in ann.content.upper() or symbol in ann.tags
        ]

    async def get_high_priority_announcements(self) -> List[ScrapedAnnouncement]:
        return await self.get_announcements(flt=AnnouncementFilter(
            importance=Importance.HIGH.value,
            limit=self.config.aggregation.high_priority_limit,
        ))

    async def run(self):
        """Main run loop - periodic aggregation plus stats reporting"""
        await self.initialize_components()
        self._log.info("System initialized, starting aggregation loop")

        self._tasks = [
            asyncio.create_task(self._aggregation_loop(), name="aggregation"),
            asyncio.create_task(self._stats_reporter(), name="stats"),
        ]

        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _aggregation_loop(self):
        poll_interval = self.config.aggregation.poll_interval
        self._log.info(f"Starting aggregation loop with {poll_interval}s interval")

        while self._running:
            try:
                start_time = asyncio.get_running_loop().time()
                announcements = await self.scrape_all_exchanges()
                process_time = asyncio.get_running_loop().time() - start_time
                self._log.info(f"✅ {len(announcements)} announcements / {process_time:.2f}s")
            except Exception as e:
                self._log.error(f"❌ Aggregation cycle error: {e}")

            await random_delay(poll_interval, sleep=self._sleep)

    async def _stats_reporter(self):
        """Periodically report statistics"""
        report_interval = 60

        while self._running:
            await self._sleep(report_interval)

            summary = []
            for name, stats in self._stats.items():
                status = f"📊{name.capitalize()}: [{stats['announcements']} / {stats['runs']}]"
                if stats['fallbacks'] > 0:
                    status += f", {stats['fallbacks']} fallbacks"
                if stats['errors'] > 0:
                    status += f", {stats['errors']} errors"
                summary.append(status)

                for key in stats:
                    stats[key] = 0

            if summary:
                self._log.info(" | ".join(summary))

    async def cleanup(self):
        """Cleanup resources"""
        self._running = False

        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                self._log.debug(f"Cancelled {task.get_name()} task")

        if self.client:
            await self.client.close()
        if self.plain_client:
            await self.plain_client.close()
        if self.cache:
            await self.cache.close()

        self._log.info("Cleanup complete")
