import re
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple

# Placeholders used when a provider omits a field
DEFAULT_TITLE = "未知标题"
DEFAULT_CONTENT = "详细信息请查看原文"
GENERIC_TAG = "公告"

DEDUP_PREFIX_LENGTH = 50


class Category(str, Enum):
    """Unified announcement categories across all exchanges"""
    NEW_LISTINGS = "new-listings"
    DELISTING = "delisting"
    DERIVATIVES = "derivatives"
    MARGIN_TRADING = "margin-trading"
    API_UPDATES = "api-updates"
    MAINTENANCE = "maintenance"
    EARN = "earn"
    WALLET = "wallet"
    PROMOTION = "promotion"
    GENERAL = "general"


class Importance(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class ScrapedAnnouncement:
    id: str
    exchange: str
    title: str
    content: str
    category: Category
    importance: Importance
    publish_time: int
    tags: List[str] = field(default_factory=list)
    url: str = ""
    synthetic: bool = False

    def __post_init__(self):
        if not self.content:
            self.content = DEFAULT_CONTENT
        if not self.title:
            self.title = DEFAULT_TITLE
        if not self.tags:
            self.tags = [GENERIC_TAG]

    def __hash__(self):
        return hash(self.natural_key)

    @property
    def natural_key(self) -> Tuple[str, str]:
        return self.exchange, self.id

    @property
    def dedup_key(self) -> str:
        return re.sub(r"\s+", "", self.title[:DEDUP_PREFIX_LENGTH].lower())

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = Category(self.category).value
        data["importance"] = Importance(self.importance).value
        data["publishTime"] = data.pop("publish_time")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScrapedAnnouncement":
        return cls(
            id=data["id"],
            exchange=data["exchange"],
            title=data.get("title", ""),
            content=data.get("content", ""),
            category=Category(data.get("category", Category.GENERAL)),
            importance=Importance(data.get("importance", Importance.LOW)),
            publish_time=int(data.get("publishTime", 0)),
            tags=list(data.get("tags") or []),
            url=data.get("url", ""),
            synthetic=bool(data.get("synthetic", False)),
        )


@dataclass(frozen=True)
class AnnouncementFilter:
    """Read-side filter over a batch of announcements"""
    exchange: Optional[str] = None
    category: Optional[str] = None
    importance: Optional[str] = None
    tags: Tuple[str, ...] = ()
    date_from: Optional[int] = None
    date_to: Optional[int] = None
    limit: Optional[int] = None


def apply_filter(announcements: List[ScrapedAnnouncement],
                 flt: AnnouncementFilter) -> List[ScrapedAnnouncement]:
    filtered = announcements

    if flt.exchange:
        filtered = [a for a in filtered if a.exchange == flt.exchange]
    if flt.category:
        filtered = [a for a in filtered if a.category == flt.category]
    if flt.importance:
        filtered = [a for a in filtered if a.importance == flt.importance]
    if flt.tags:
        filtered = [a for a in filtered if any(tag in a.tags for tag in flt.tags)]
    if flt.date_from:
        filtered = [a for a in filtered if a.publish_time >= flt.date_from]
    if flt.date_to:
        filtered = [a for a in filtered if a.publish_time <= flt.date_to]
    if flt.limit:
        filtered = filtered[:flt.limit]

    return filtered
