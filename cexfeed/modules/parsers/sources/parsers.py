from typing import Any, Dict, List, Optional, Type

import feedparser

from cexfeed.core.models.announcement import ScrapedAnnouncement
from cexfeed.modules.parsers.sources.base import SourceParser, first_value
from cexfeed.utils.envelope import DecodeResult, Err, Ok
from cexfeed.utils.tools import now_ms

BINANCE_ANNOUNCEMENT_URL = "https://www.binance.com/zh-CN/support/announcement/{ref}"
OKX_ANNOUNCEMENT_URL = "https://www.okx.com/zh-hans/help/announcements/{ref}"


class BinanceCmsParser(SourceParser):
    exchange = "binance"
    prefix = "binance_cms"
    envelopes = (("data", "articles"), ("articles",))
    category_keys = ("catalogName", "categoryName")
    time_keys = ("releaseDate", "publishDate")
    url_keys = ("code", "id")
    url_template = BINANCE_ANNOUNCEMENT_URL


class BinanceSupportParser(SourceParser):
    exchange = "binance"
    prefix = "binance_support"
    envelopes = (("data", "catalogDetail", "articles"), ("data", "catalogDetail", "list"))
    content_keys = ("content", "summary")
    category_keys = ("type", "catalogName")
    time_keys = ("publishDate", "releaseDate")
    url_keys = ("code", "id")
    url_template = BINANCE_ANNOUNCEMENT_URL


class BinanceNewsParser(SourceParser):
    exchange = "binance"
    prefix = "binance_news"
    envelopes = (("data",), ("list",))
    id_keys = ("articleId", "id")
    category_keys = ("catalogName",)
    time_keys = ("releaseDate",)
    url_keys = ("code", "articleId")
    url_template = BINANCE_ANNOUNCEMENT_URL


class BinanceRssParser(SourceParser):
    """RSS feed, the least structured source: no category and no provider ids"""
    exchange = "binance"
    prefix = "binance_rss"
    default_url = "https://www.binance.com/zh-CN/support/announcement/"

    def load(self, body: str) -> Any:
        return feedparser.parse(body)

    def decode(self, payload: Any) -> DecodeResult:
        entries = list(getattr(payload, "entries", None) or [])
        if not entries:
            reason = getattr(payload, "bozo_exception", None) or "feed has no entries"
            return Err(str(reason))
        return Ok([dict(entry) for entry in entries], ("entries",))

    def extract_source_id(self, item: Dict) -> Optional[str]:
        guid = item.get("id") or item.get("link")
        if not guid:
            return None
        return str(guid).rstrip("/").rsplit("/", 1)[-1]

    def extract_content(self, item: Dict) -> str:
        return super().extract_content({"summary": item.get("summary") or item.get("description")})

    def extract_category(self, item: Dict) -> Optional[str]:
        return None

    def extract_timestamp(self, item: Dict) -> Optional[int]:
        return super().extract_timestamp({"publishTime": item.get("published") or item.get("updated")})

    def build_url(self, item: Dict) -> str:
        return item.get("link") or self.default_url


class OkxSupportParser(SourceParser):
    exchange = "okx"
    prefix = "okx_support"
    envelopes = (("data",), ("list",))
    category_keys = ("category", "type")
    time_keys = ("publishTime", "createdAt")
    url_template = OKX_ANNOUNCEMENT_URL
    use_item_url = True


class OkxHelpParser(SourceParser):
    exchange = "okx"
    prefix = "okx_help"
    envelopes = (("data", "announcements"), ("announcements",))
    content_keys = ("summary", "description")
    time_keys = ("publishTime",)
    url_keys = ("slug", "id")
    url_template = OKX_ANNOUNCEMENT_URL


class OkxNewsParser(SourceParser):
    exchange = "okx"
    prefix = "okx_news"
    envelopes = (("data", "news"), ("news",))
    time_keys = ("publishedAt", "createdAt")
    url_keys = ("slug", "id")
    url_template = "https://www.okx.com/zh-hans/news/{ref}"
    use_item_url = True


class BybitParser(SourceParser):
    exchange = "bybit"
    prefix = "bybit"
    envelopes = (("result", "list"), ("list",))
    content_keys = ("summary", "description")
    time_keys = ("publishTime", "createdAt")
    url_template = "https://announcements.bybit.com/zh-CN/article/{ref}"


class HtxParser(SourceParser):
    """Help-center (zendesk style) article listing"""
    exchange = "htx"
    prefix = "htx"
    envelopes = (("articles",), ("data", "list"), ("data",))
    content_keys = ("body", "summary")
    category_keys = ("label_names", "section_name")
    time_keys = ("created_at", "edited_at", "updated_at")
    url_template = "https://www.htx.com/support/zh-cn/detail/{ref}"
    use_item_url = True

    def extract_category(self, item: Dict) -> Optional[str]:
        value = first_value(item, self.category_keys)
        if isinstance(value, list):
            return " ".join(str(v) for v in value)
        return str(value) if value is not None else None

    def build_url(self, item: Dict) -> str:
        if html_url := item.get("html_url"):
            return str(html_url)
        return super().build_url(item)


class BinanceLegacyParser(SourceParser):
    """Older bapi endpoints; category comes from the numeric catalog id"""
    exchange = "binance"
    prefix = "binance"
    envelopes = (("data",), ("articles",), ("list",), ("data", "articles"), ("data", "list"), ())
    id_keys = ("id", "articleId")
    title_keys = ("title", "name")
    content_keys = ("content", "summary", "description")
    category_keys = ("catalogId", "categoryId")
    time_keys = ("publishDate", "releaseDate", "createTime")
    url_keys = ("id", "articleId")
    url_template = BINANCE_ANNOUNCEMENT_URL


class OkxLegacyParser(SourceParser):
    exchange = "okx"
    prefix = "okx"
    envelopes = (("data",), ("list",), ("data", "list"), ())
    id_keys = ("id", "slug")
    title_keys = ("title", "name")
    content_keys = ("content", "summary", "description")
    category_keys = ("category", "type")
    time_keys = ("publishTime", "createdAt", "publishDate")
    url_keys = ("id", "slug")
    url_template = OKX_ANNOUNCEMENT_URL


class WebItemParser(SourceParser):
    """
    Items recovered from a rendered page. Field names vary between page
    builds, so every known spelling is tried; category is taken from the
    title since pages rarely carry one.
    """
    envelopes = ((),)
    id_keys = ("id", "code", "slug")
    title_keys = ("title", "name", "articleTitle")
    content_keys = ("content", "summary", "description")
    category_keys = ()
    time_keys = ("publishTime", "createTime", "releaseDate", "publishDate")
    url_keys = ("code", "id", "slug")
    use_item_url = True

    def __init__(self, exchange: str, prefix: str, detail_url: str = ""):
        self.exchange = exchange
        self.prefix = prefix
        super().__init__(url_template=f"{detail_url}{{ref}}" if detail_url else None)

    def build_many(self, items: List[Dict[str, Any]]) -> List[ScrapedAnnouncement]:
        now = now_ms()
        return [self.build(item, index, now) for index, item in enumerate(items)]


PARSERS: Dict[str, Type[SourceParser]] = {
    "binance_cms": BinanceCmsParser,
    "binance_support": BinanceSupportParser,
    "binance_news": BinanceNewsParser,
    "binance_rss": BinanceRssParser,
    "okx_support": OkxSupportParser,
    "okx_help": OkxHelpParser,
    "okx_news": OkxNewsParser,
    "bybit": BybitParser,
    "htx": HtxParser,
    "binance_legacy": BinanceLegacyParser,
    "okx_legacy": OkxLegacyParser,
}


def create_parser(name: str, **kwargs) -> SourceParser:
    parser_class = PARSERS.get(name)
    if not parser_class:
        raise ValueError(f"Unknown parser: {name}")
    return parser_class(**kwargs)
