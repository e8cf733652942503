import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from cexfeed.core.models.announcement import Category, Importance, ScrapedAnnouncement
from cexfeed.db.cache.redis_cache import RedisCache
from cexfeed.db.repository import AnnouncementRepository
from cexfeed.db.config.loader import (
    ApiSourceConfig,
    ExchangeConfig,
    LegacyConfig,
    StaticRecord,
    WebConfig,
    PRIMARY_TIER,
)

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "", headers: Optional[Dict[str, str]] = None):
        self.status_code = status_code
        self.text = text
        self.headers = headers or {}


def json_response(payload: Any, status_code: int = 200) -> FakeResponse:
    return FakeResponse(status_code, json.dumps(payload))


class FakeSession:
    """curl_cffi session stand-in; replays responses in order, the last one repeats"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    async def request(self, method: str, url: str, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        pass


class FakeClient:
    """
    URL-level stand-in for AntiDetectionClient.

    `routes` maps a URL to a FakeResponse, an exception instance, or a list
    of those consumed in order.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes = dict(routes or {})
        self.calls: List[str] = []

    async def smart_request(self, url, params=None, headers=None, exchange=None, max_retries=None):
        self.calls.append(url)
        route = self.routes.get(url)
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if route is None:
            raise ConnectionError(f"no route for {url}")
        if isinstance(route, Exception):
            raise route
        return route

    async def close(self):
        pass


class FakePlainClient:
    def __init__(self, pages: Optional[Dict[str, str]] = None):
        self.pages = dict(pages or {})
        self.calls: List[str] = []

    async def get_text(self, url, referer=None):
        self.calls.append(url)
        if url not in self.pages:
            raise ConnectionError(f"no page for {url}")
        return self.pages[url]

    async def close(self):
        pass


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


@pytest.fixture
def sleep():
    return SleepRecorder()


def make_binance_config(**overrides) -> ExchangeConfig:
    values = dict(
        name="binance",
        tier=PRIMARY_TIER,
        base_url="https://www.binance.com",
        referer="https://www.binance.com/zh-CN/support/announcement/",
        sources=(
            ApiSourceConfig("binance-cms-api", "https://binance.test/cms", "binance_cms", priority=10),
            ApiSourceConfig("binance-support-api", "https://binance.test/support", "binance_support", priority=8),
            ApiSourceConfig("binance-rss", "https://binance.test/rss", "binance_rss", priority=4),
        ),
        legacy=LegacyConfig(
            endpoints=(("primary", "https://binance.test/legacy"), ("fallback", "https://binance.test/legacy2")),
            valid_keys=("data", "articles", "list"),
            catalog_categories={"49": "new-listings"},
            detail_url="https://www.binance.com/zh-CN/support/announcement/",
        ),
        web=WebConfig(
            urls=("https://binance.test/page",),
            state_variables=("__APP_DATA__",),
            hydration_ids=("__NEXT_DATA__",),
            detail_url="https://www.binance.com/zh-CN/support/announcement/",
            examples=(StaticRecord("binance_web_example_1", "币安将上线Portal代币(PORTAL)现货交易",
                                   category="new-listings", importance="high", age_hours=1),),
        ),
        fallback=(
            StaticRecord("binance_fallback_1", "Binance上线ORDI永续合约", category="derivatives",
                         importance="high", age_hours=1, tags=("ORDI", "合约")),
            StaticRecord("binance_fallback_2", "新增SATS现货交易对", category="new-listings",
                         importance="medium", age_hours=2),
        ),
    )
    values.update(overrides)
    return ExchangeConfig(**values)


def make_okx_config(**overrides) -> ExchangeConfig:
    values = dict(
        name="okx",
        tier=PRIMARY_TIER,
        base_url="https://www.okx.com",
        referer="https://www.okx.com/zh-hans/help/",
        sources=(
            ApiSourceConfig("okx-support-api", "https://okx.test/support", "okx_support", priority=10),
        ),
        legacy=LegacyConfig(
            endpoints=(("primary", "https://okx.test/legacy"),),
            detail_url="https://www.okx.com/zh-hans/help/announcements/",
        ),
        web=WebConfig(urls=("https://okx.test/page",), hydration_ids=("__NEXT_DATA__",)),
        fallback=(StaticRecord("okx_fallback_1", "OKX上线Portal代币现货交易", age_hours=1),),
    )
    values.update(overrides)
    return ExchangeConfig(**values)


@pytest.fixture
def binance_config():
    return make_binance_config()


@pytest.fixture
def okx_config():
    return make_okx_config()


@pytest.fixture
def exchanges(binance_config, okx_config):
    return {"binance": binance_config, "okx": okx_config}


def make_announcement(id_, exchange="binance", title="Binance Will List ABC", publish_time=1704067200000, **kwargs):
    values = dict(
        id=id_,
        exchange=exchange,
        title=title,
        content="details",
        category=Category.NEW_LISTINGS,
        importance=Importance.HIGH,
        publish_time=publish_time,
        tags=["ABC", "新币上线"],
        url=f"https://example.test/{id_}",
    )
    values.update(kwargs)
    return ScrapedAnnouncement(**values)


@pytest.fixture
async def cache():
    cache = RedisCache(use_fakeredis=True, batch_ttl=300)
    # fakeredis instances with the same connection parameters share one server
    await cache._redis.flushall()
    yield cache
    await cache.close()


@pytest.fixture
async def repo(tmp_path, cache):
    repo = AnnouncementRepository(str(tmp_path / "announcements.db"), cache)
    await repo.init()
    return repo
