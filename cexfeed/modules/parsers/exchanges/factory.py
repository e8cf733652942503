from typing import Dict, Type

from cexfeed.db.config.loader import ExchangeConfig
from . import BinanceScraper, OkxScraper, ExchangeScraper


class ExchangeFactory:
    """Factory for creating exchange scrapers"""

    _registry: Dict[str, Type[ExchangeScraper]] = {
        'binance': BinanceScraper,
        'okx': OkxScraper,
    }

    @classmethod
    def create(
            cls,
            config: ExchangeConfig,
            client,
            registry,
            web_scraper,
            **kwargs
    ) -> ExchangeScraper:
        """Create scraper for exchange"""
        scraper_class = cls._registry.get(config.name.lower())
        if not scraper_class:
            raise ValueError(f"Unknown exchange: {config.name}")

        return scraper_class(config, client, registry, web_scraper, **kwargs)

    @classmethod
    def supports(cls, name: str) -> bool:
        return name.lower() in cls._registry

    @classmethod
    def register(cls, name: str, scraper_class: Type[ExchangeScraper]):
        """Register new exchange scraper"""
        cls._registry[name.lower()] = scraper_class
