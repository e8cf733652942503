import copy
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from loguru import logger

from cexfeed.core.models.announcement import (
    ScrapedAnnouncement,
    Category,
    Importance,
)
from cexfeed.utils.classification import determine_importance, extract_tags, map_category

PRIMARY_TIER = "primary"
OTHER_TIER = "other"

_log = logger.bind(component="config")


def _frozen(mapping: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


def _pair(value: Any, default: Tuple[float, float]) -> Tuple[float, float]:
    if not value:
        return default
    low, high = value
    return float(low), float(high)


@dataclass(frozen=True)
class StaticRecord:
    """A hardcoded announcement; `age_hours` is resolved against the fetch time"""
    id: str
    title: str
    content: str = ""
    category: Optional[str] = None
    importance: Optional[str] = None
    age_hours: float = 0
    tags: Tuple[str, ...] = ()
    url: str = ""

    def to_announcement(self, exchange: str, now_ms: int) -> ScrapedAnnouncement:
        category = Category(self.category) if self.category else map_category(self.title)
        importance = (Importance(self.importance) if self.importance
                      else determine_importance(self.title, self.content))
        return ScrapedAnnouncement(
            id=self.id,
            exchange=exchange,
            title=self.title,
            content=self.content,
            category=category,
            importance=importance,
            publish_time=now_ms - int(self.age_hours * 3_600_000),
            tags=list(self.tags) or extract_tags(self.title, self.content),
            url=self.url,
            synthetic=True,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StaticRecord":
        return cls(
            id=str(data["id"]),
            title=data["title"],
            content=data.get("content", ""),
            category=data.get("category"),
            importance=data.get("importance"),
            age_hours=float(data.get("age_hours", 0)),
            tags=tuple(data.get("tags") or ()),
            url=data.get("url", ""),
        )


@dataclass(frozen=True)
class ApiSourceConfig:
    """One prioritized endpoint of the API source registry"""
    name: str
    url: str
    parser: str
    priority: int = 0
    params: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ApiSourceConfig":
        return cls(
            name=data["name"],
            url=data["url"],
            parser=data.get("parser", data["name"]),
            priority=int(data.get("priority", 0)),
            params=_frozen(data.get("params")),
            headers=_frozen(data.get("headers")),
        )


@dataclass(frozen=True)
class LegacyConfig:
    """Named endpoint groups tried in order with a shared parameter shape"""
    endpoints: Tuple[Tuple[str, str], ...]
    params: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    valid_keys: Tuple[str, ...] = ("data", "list")
    catalog_categories: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    detail_url: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LegacyConfig":
        return cls(
            endpoints=tuple((str(k), str(v)) for k, v in (data.get("endpoints") or {}).items()),
            params=_frozen(data.get("params")),
            valid_keys=tuple(data.get("valid_keys") or ("data", "list")),
            catalog_categories=_frozen({str(k): v for k, v in (data.get("catalog_categories") or {}).items()}),
            detail_url=data.get("detail_url", ""),
        )


@dataclass(frozen=True)
class WebConfig:
    """Rendered pages to scrape and where their embedded state lives"""
    urls: Tuple[str, ...]
    referer: str = ""
    state_variables: Tuple[str, ...] = ()
    hydration_ids: Tuple[str, ...] = ("__NEXT_DATA__",)
    detail_url: str = ""
    examples: Tuple[StaticRecord, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WebConfig":
        return cls(
            urls=tuple(data.get("urls") or ()),
            referer=data.get("referer", ""),
            state_variables=tuple(data.get("state_variables") or ()),
            hydration_ids=tuple(data.get("hydration_ids") or ("__NEXT_DATA__",)),
            detail_url=data.get("detail_url", ""),
            examples=tuple(StaticRecord.from_dict(r) for r in data.get("examples") or ()),
        )


@dataclass(frozen=True)
class ExchangeConfig:
    """Configuration for a single exchange"""
    name: str
    enabled: bool = True
    tier: str = OTHER_TIER
    base_url: str = ""
    referer: str = ""
    proxies: Tuple[str, ...] = ()
    sources: Tuple[ApiSourceConfig, ...] = ()
    legacy: Optional[LegacyConfig] = None
    web: Optional[WebConfig] = None
    fallback: Tuple[StaticRecord, ...] = ()

    @property
    def is_primary(self) -> bool:
        return self.tier == PRIMARY_TIER

    @property
    def has_proxy(self) -> bool:
        return bool(self.proxies)

    def sorted_sources(self) -> Tuple[ApiSourceConfig, ...]:
        """Sources by descending priority; ties keep declaration order"""
        return tuple(sorted(self.sources, key=lambda s: -s.priority))


@dataclass(frozen=True)
class RequestSettings:
    timeout: float = 30
    max_retries: int = 3
    backoff_max: float = 30
    challenge_delay: Tuple[float, float] = (5, 10)
    rate_limit_default: float = 60


@dataclass(frozen=True)
class WebSettings:
    timeout: float = 20
    max_retries: int = 2
    retry_delay: Tuple[float, float] = (2, 4)
    max_title_elements: int = 10
    min_title_length: int = 5


@dataclass(frozen=True)
class AggregationSettings:
    poll_interval: float = 300
    legacy_delay: Tuple[float, float] = (2, 4)
    cache_ttl: int = 300
    high_priority_limit: int = 50


@dataclass(frozen=True)
class StorageSettings:
    db_path: str = "announcements.db"
    redis_url: str = "redis://localhost:6379"
    use_fakeredis: bool = True


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration, built once at start-up"""
    exchanges: Mapping[str, ExchangeConfig]
    request: RequestSettings = field(default_factory=RequestSettings)
    web: WebSettings = field(default_factory=WebSettings)
    aggregation: AggregationSettings = field(default_factory=AggregationSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)

    @property
    def primary_exchanges(self) -> Tuple[ExchangeConfig, ...]:
        return tuple(e for e in self.exchanges.values() if e.enabled and e.is_primary)

    @property
    def other_exchanges(self) -> Tuple[ExchangeConfig, ...]:
        return tuple(e for e in self.exchanges.values() if e.enabled and not e.is_primary)

    @classmethod
    def load(cls, config_dir: str = "config") -> 'AppConfig':
        """Load all configuration files"""
        config_path = Path(config_dir)

        proxy_pools = cls._load_yaml(config_path / "shared" / "proxies.yaml").get("pools", {})
        defaults = cls._load_yaml(config_path / "exchanges" / "defaults.yaml")
        exchanges = cls._load_exchanges(config_path, defaults, proxy_pools)

        general = cls._load_yaml(config_path / "general.yaml")

        return cls(
            exchanges=_frozen(exchanges),
            request=cls._parse_request(general.get("request", {})),
            web=cls._parse_web(general.get("web", {})),
            aggregation=cls._parse_aggregation(general.get("aggregation", {})),
            storage=cls._parse_storage(general.get("storage", {})),
        )

    @classmethod
    def _load_exchanges(cls, config_path: Path, defaults: Dict, proxy_pools: Dict) -> Dict[str, ExchangeConfig]:
        """Load all exchange configurations"""
        exchanges = {}

        for yaml_file in sorted((config_path / "exchanges").glob("*.yaml")):
            if yaml_file.name == "defaults.yaml":
                continue

            exchange_name = yaml_file.stem
            exchange_data = cls._load_yaml(yaml_file)

            # Skip if empty or invalid
            if not exchange_data or exchange_name not in exchange_data:
                continue

            merged_config = cls._merge_configs(defaults.get("defaults", {}), exchange_data[exchange_name])
            exchange_config = cls._parse_exchange_config(exchange_name, merged_config, proxy_pools)

            if exchange_config:
                exchanges[exchange_name] = exchange_config

        return exchanges

    @classmethod
    def _parse_exchange_config(cls, name: str, config: Dict, proxy_pools: Dict) -> Optional[ExchangeConfig]:
        """Parse individual exchange configuration"""
        try:
            proxies = ()
            pool_name = config.get("proxy_pool")
            if pool_name and pool_name in proxy_pools:
                proxies = tuple(proxy_pools[pool_name].get("proxies", []))

            legacy = config.get("legacy")
            web = config.get("web")

            return ExchangeConfig(
                name=name,
                enabled=bool(config.get("enabled", False)),
                tier=config.get("tier", OTHER_TIER),
                base_url=config.get("base_url", ""),
                referer=config.get("referer", ""),
                proxies=proxies,
                sources=tuple(ApiSourceConfig.from_dict(s) for s in config.get("sources") or ()),
                legacy=LegacyConfig.from_dict(legacy) if legacy else None,
                web=WebConfig.from_dict(web) if web else None,
                fallback=tuple(StaticRecord.from_dict(r) for r in config.get("fallback") or ()),
            )

        except (KeyError, TypeError, ValueError) as e:
            _log.error(f"Error parsing config for {name}: {e}")
            return None

    @staticmethod
    def _parse_request(data: Dict) -> RequestSettings:
        return RequestSettings(
            timeout=float(data.get("timeout", 30)),
            max_retries=int(data.get("max_retries", 3)),
            backoff_max=float(data.get("backoff_max", 30)),
            challenge_delay=_pair(data.get("challenge_delay"), (5, 10)),
            rate_limit_default=float(data.get("rate_limit_default", 60)),
        )

    @staticmethod
    def _parse_web(data: Dict) -> WebSettings:
        return WebSettings(
            timeout=float(data.get("timeout", 20)),
            max_retries=int(data.get("max_retries", 2)),
            retry_delay=_pair(data.get("retry_delay"), (2, 4)),
            max_title_elements=int(data.get("max_title_elements", 10)),
            min_title_length=int(data.get("min_title_length", 5)),
        )

    @staticmethod
    def _parse_aggregation(data: Dict) -> AggregationSettings:
        return AggregationSettings(
            poll_interval=float(data.get("poll_interval", 300)),
            legacy_delay=_pair(data.get("legacy_delay"), (2, 4)),
            cache_ttl=int(data.get("cache_ttl", 300)),
            high_priority_limit=int(data.get("high_priority_limit", 50)),
        )

    @staticmethod
    def _parse_storage(data: Dict) -> StorageSettings:
        redis_cfg = data.get("redis", {})
        return StorageSettings(
            db_path=data.get("db_path", "announcements.db"),
            redis_url=redis_cfg.get("url", "redis://localhost:6379"),
            use_fakeredis=bool(redis_cfg.get("use_fake", True)),
        )

    @classmethod
    def _merge_configs(cls, defaults: Dict, specific: Dict) -> Dict:
        """Deep merge defaults with specific config"""
        result = copy.deepcopy(defaults)

        for key, value in specific.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = cls._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    @staticmethod
    def _load_yaml(path: Path) -> Dict:
        """Load a YAML file"""
        if not path.exists():
            return {}

        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
