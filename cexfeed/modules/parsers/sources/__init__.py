from .base import SourceParser
from .parsers import (
    PARSERS,
    create_parser,
    BinanceCmsParser,
    BinanceSupportParser,
    BinanceNewsParser,
    BinanceRssParser,
    OkxSupportParser,
    OkxHelpParser,
    OkxNewsParser,
    BybitParser,
    HtxParser,
    BinanceLegacyParser,
    OkxLegacyParser,
    WebItemParser,
)
from .registry import ApiSourceRegistry
