import pytest

from cexfeed.core.models.exceptions import AccessBlockedException
from cexfeed.db.config.loader import ApiSourceConfig, ExchangeConfig
from cexfeed.modules.parsers.sources.registry import ApiSourceRegistry
from conftest import FakeClient, FakeResponse, json_response

CMS_PAYLOAD = {"data": {"articles": [{"id": "1", "title": "Binance Will List ABC (ABC)"}]}}
SUPPORT_PAYLOAD = {"data": {"catalogDetail": {"articles": [{"id": "2", "title": "Binance Will Delist XYZ"}]}}}


@pytest.fixture
def other_exchanges():
    return {
        "bybit": ExchangeConfig(
            name="bybit",
            sources=(ApiSourceConfig("bybit-announcements", "https://bybit.test/list", "bybit", priority=5),),
        ),
        "htx": ExchangeConfig(
            name="htx",
            sources=(ApiSourceConfig("htx-announcements", "https://htx.test/articles", "htx", priority=5),),
        ),
    }


def test_sources_sorted_by_priority(exchanges):
    registry = ApiSourceRegistry(exchanges, FakeClient())

    assert [s.priority for s in registry.sources_for("binance")] == [10, 8, 4]
    assert registry.sources_for("unknown") == ()


async def test_first_source_short_circuits(exchanges):
    client = FakeClient({
        "https://binance.test/cms": json_response(CMS_PAYLOAD),
        "https://binance.test/support": json_response(SUPPORT_PAYLOAD),
    })
    registry = ApiSourceRegistry(exchanges, client)

    announcements = await registry.fetch_binance_announcements()

    assert [a.id for a in announcements] == ["binance_cms_1"]
    assert client.calls == ["https://binance.test/cms"]


async def test_failed_source_falls_through(exchanges):
    client = FakeClient({
        "https://binance.test/cms": AccessBlockedException("https://binance.test/cms"),
        "https://binance.test/support": json_response(SUPPORT_PAYLOAD),
    })
    registry = ApiSourceRegistry(exchanges, client)

    announcements = await registry.fetch_announcements("binance")

    assert [a.id for a in announcements] == ["binance_support_2"]
    assert client.calls == ["https://binance.test/cms", "https://binance.test/support"]


async def test_empty_and_unparseable_sources_fall_through(exchanges):
    client = FakeClient({
        "https://binance.test/cms": json_response({"data": {"articles": []}}),
        "https://binance.test/support": FakeResponse(200, "<html>not json</html>"),
        "https://binance.test/rss": FakeResponse(200, ""),
    })
    registry = ApiSourceRegistry(exchanges, client)

    assert await registry.fetch_announcements("binance") == []
    assert len(client.calls) == 3


async def test_unknown_or_disabled_exchange(exchanges):
    registry = ApiSourceRegistry(exchanges, FakeClient())

    assert await registry.fetch_announcements("kraken") == []


async def test_okx_sources(exchanges):
    client = FakeClient({
        "https://okx.test/support": json_response(
            {"data": [{"id": "a1", "title": "OKX上线PORTAL现货交易", "url": "https://www.okx.com/help/a1"}]}
        ),
    })
    registry = ApiSourceRegistry(exchanges, client)

    [ann] = await registry.fetch_okx_announcements()

    assert ann.id == "okx_support_a1"
    assert ann.url == "https://www.okx.com/help/a1"


async def test_other_exchanges_best_effort(other_exchanges):
    client = FakeClient({
        "https://bybit.test/list": json_response(
            {"result": {"list": [{"id": 11, "title": "New Listing: ABC", "publishTime": 1704067200000}]}}
        ),
    })
    registry = ApiSourceRegistry(other_exchanges, client)

    announcements = await registry.fetch_other_exchange_announcements()

    assert [a.id for a in announcements] == ["bybit_11"]
    assert announcements[0].url == "https://announcements.bybit.com/zh-CN/article/11"
    assert set(client.calls) == {"https://bybit.test/list", "https://htx.test/articles"}
