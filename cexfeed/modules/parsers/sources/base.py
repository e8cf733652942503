import json
from typing import Any, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from cexfeed.core.models.announcement import ScrapedAnnouncement, DEFAULT_TITLE
from cexfeed.utils.classification import classify_category, determine_importance, extract_tags
from cexfeed.utils.envelope import DecodeResult, Err, Path, decode_first, dict_items
from cexfeed.utils.tools import now_ms, parse_time_ms, strip_html


def first_value(item: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
    """Value of the first key holding something truthy"""
    for key in keys:
        value = item.get(key)
        if value not in (None, "", 0):
            return value
    return None


class SourceParser:
    """
    Turns one provider response into announcements.

    Subclasses only declare where things live: the envelope paths that may
    hold the item array and, per field, the keys to try in order. Missing
    fields fall back to defaults; nothing here raises on an unexpected item.
    """

    exchange: str = ""
    prefix: str = ""
    envelopes: Tuple[Path, ...] = (("data",), ("list",))

    id_keys: Tuple[str, ...] = ("id",)
    title_keys: Tuple[str, ...] = ("title",)
    content_keys: Tuple[str, ...] = ("summary", "content")
    category_keys: Tuple[str, ...] = ("category",)
    time_keys: Tuple[str, ...] = ("publishTime", "createdAt")
    url_keys: Tuple[str, ...] = ("id",)

    # Formatted with {ref}, the first present url_keys value
    url_template: str = ""
    use_item_url: bool = False

    def __init__(self, url_template: Optional[str] = None, category_map: Optional[Mapping[str, str]] = None):
        if url_template:
            self.url_template = url_template
        self.category_map = dict(category_map or {})
        self._log = logger.bind(component="parser", exchange=self.exchange)

    def load(self, body: str) -> Any:
        return json.loads(body)

    def decode(self, payload: Any) -> DecodeResult:
        return decode_first(payload, self.envelopes)

    def parse(self, body: str) -> List[ScrapedAnnouncement]:
        return self.parse_payload(self.load(body))

    def parse_payload(self, payload: Any) -> List[ScrapedAnnouncement]:
        result = self.decode(payload)
        if isinstance(result, Err):
            self._log.debug(f"{self.prefix}: no items ({result.reason})")
            return []

        now = now_ms()
        return [self.build(item, index, now) for index, item in enumerate(dict_items(result.value))]

    def build(self, item: Dict[str, Any], index: int, now: int) -> ScrapedAnnouncement:
        title = self.extract_title(item)
        content = self.extract_content(item)

        return ScrapedAnnouncement(
            id=f"{self.prefix}_{self.extract_source_id(item) or now + index}",
            exchange=self.exchange,
            title=title,
            content=content,
            category=classify_category(self.extract_category(item), title, self.category_map),
            importance=determine_importance(title, content),
            publish_time=self.extract_timestamp(item) or now,
            tags=extract_tags(title, content),
            url=self.build_url(item),
        )

    def extract_source_id(self, item: Dict) -> Optional[str]:
        value = first_value(item, self.id_keys)
        return str(value) if value is not None else None

    def extract_title(self, item: Dict) -> str:
        return strip_html(str(first_value(item, self.title_keys) or "")) or DEFAULT_TITLE

    def extract_content(self, item: Dict) -> str:
        return strip_html(str(first_value(item, self.content_keys) or ""))

    def extract_category(self, item: Dict) -> Optional[str]:
        value = first_value(item, self.category_keys)
        return str(value) if value is not None else None

    def extract_timestamp(self, item: Dict) -> Optional[int]:
        return parse_time_ms(first_value(item, self.time_keys))

    def build_url(self, item: Dict) -> str:
        if self.use_item_url and (url := item.get("url")):
            return str(url)
        ref = first_value(item, self.url_keys)
        if not self.url_template:
            return ""
        return self.url_template.format(ref=ref if ref is not None else "")
