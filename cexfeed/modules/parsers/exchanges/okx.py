from cexfeed.modules.parsers.exchanges.base import ExchangeScraper
from cexfeed.modules.parsers.sources.parsers import OkxLegacyParser


class OkxScraper(ExchangeScraper):
    """OKX cascade; legacy v5 payloads carry a free-text category"""

    def create_legacy_parser(self) -> OkxLegacyParser:
        return OkxLegacyParser(url_template=self.legacy_url_template())
