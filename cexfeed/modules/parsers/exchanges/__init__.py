from .base import ExchangeScraper

from .binance import BinanceScraper
from .okx import OkxScraper
