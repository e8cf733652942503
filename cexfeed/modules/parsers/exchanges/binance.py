from cexfeed.modules.parsers.exchanges.base import ExchangeScraper
from cexfeed.modules.parsers.sources.parsers import BinanceLegacyParser


class BinanceScraper(ExchangeScraper):
    """Binance cascade; legacy bapi payloads are categorized by catalog id"""

    def create_legacy_parser(self) -> BinanceLegacyParser:
        legacy = self.config.legacy
        return BinanceLegacyParser(
            url_template=self.legacy_url_template(),
            category_map=legacy.catalog_categories if legacy else None,
        )
