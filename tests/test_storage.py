from dataclasses import replace

from cexfeed.core.models.announcement import Category, Importance, ScrapedAnnouncement
from conftest import make_announcement


class TestRepository:
    async def test_upsert_is_idempotent(self, repo):
        batch = [make_announcement("binance_cms_1"), make_announcement("binance_cms_2", title="Other")]

        await repo.upsert_many(batch)
        await repo.upsert_many(batch)

        assert await repo.count() == 2

    async def test_last_write_wins(self, repo):
        await repo.upsert_many([make_announcement("binance_cms_1")])
        await repo.upsert_many([make_announcement("binance_cms_1", title="Binance Will List ABC (updated)",
                                                  importance=Importance.MEDIUM, tags=["ABC"])])

        [stored] = await repo.get_announcements()

        assert await repo.count() == 1
        assert stored.title == "Binance Will List ABC (updated)"
        assert stored.importance == Importance.MEDIUM
        assert stored.tags == ["ABC"]

    async def test_same_id_on_different_exchanges(self, repo):
        await repo.upsert_many([make_announcement("1"), make_announcement("1", exchange="okx")])

        assert await repo.count() == 2
        assert await repo.count("okx") == 1

    async def test_filters_and_order(self, repo):
        await repo.upsert_many([
            make_announcement("a", publish_time=1),
            make_announcement("b", publish_time=3, category=Category.MAINTENANCE, importance=Importance.MEDIUM),
            make_announcement("c", exchange="okx", publish_time=2, synthetic=True),
        ])

        assert [a.id for a in await repo.get_announcements()] == ["b", "c", "a"]
        assert [a.id for a in await repo.get_announcements(exchange="okx")] == ["c"]
        assert [a.id for a in await repo.get_announcements(category="maintenance")] == ["b"]
        assert [a.id for a in await repo.get_announcements(importance="high", limit=1)] == ["c"]
        assert [a.id for a in await repo.get_announcements(limit=1, offset=1)] == ["c"]
        assert (await repo.get_announcements(exchange="okx"))[0].synthetic

    async def test_latest_published(self, repo, cache):
        await repo.upsert_many([make_announcement("a", publish_time=5), make_announcement("b", publish_time=9)])

        assert await cache.get_latest_ms("binance") == 9
        assert await repo.get_latest_published_ms("binance") == 9
        assert await repo.get_latest_published_ms("okx") is None

    async def test_empty_batch(self, repo):
        assert await repo.upsert_many([]) == 0


class TestRedisCache:
    async def test_batch_round_trip(self, cache):
        batch = [make_announcement("a", synthetic=True), make_announcement("b", exchange="okx")]

        await cache.set_batch(batch)

        assert await cache.get_batch() == batch

    async def test_missing_batch(self, cache):
        assert await cache.get_batch() is None

    async def test_unreadable_batch_is_dropped(self, cache):
        await cache._redis.set("announcements:latest_batch", "not json")

        assert await cache.get_batch() is None
        assert await cache._redis.get("announcements:latest_batch") is None

    async def test_latest_only_moves_forward(self, cache):
        await cache.set_latest_ms("binance", 10)
        await cache.set_latest_ms("binance", 5)

        assert await cache.get_latest_ms("binance") == 10


def test_announcement_serialization():
    ann = make_announcement("a")

    data = ann.to_dict()

    assert data["publishTime"] == 1704067200000
    assert data["category"] == "new-listings"
    assert ScrapedAnnouncement.from_dict(data) == ann
    assert replace(ann, content="").content != ""
