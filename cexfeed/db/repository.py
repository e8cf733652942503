"""cexfeed/db/repository.py"""
from __future__ import annotations

import hashlib
import json
import time
from typing import Optional, List

import aiosqlite
from loguru import logger

from cexfeed.core.models.announcement import ScrapedAnnouncement, Category, Importance
from cexfeed.db.cache.redis_cache import RedisCache

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS announcements (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  exchange TEXT NOT NULL,
  exchange_id TEXT NOT NULL,
  title TEXT NOT NULL,
  content TEXT NOT NULL,
  category TEXT NOT NULL,
  importance TEXT NOT NULL,
  publish_time INTEGER NOT NULL,
  tags TEXT NOT NULL,
  url TEXT NOT NULL,
  content_hash TEXT NOT NULL,
  synthetic INTEGER NOT NULL DEFAULT 0,
  created_at_ms INTEGER NOT NULL,
  updated_at_ms INTEGER NOT NULL,
  UNIQUE (exchange, exchange_id)
);
CREATE INDEX IF NOT EXISTS idx_announcements_publish_time ON announcements (publish_time DESC);
"""

UPSERT_SQL = """
INSERT INTO announcements (
  exchange, exchange_id, title, content, category, importance, publish_time,
  tags, url, content_hash, synthetic, created_at_ms, updated_at_ms
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (exchange, exchange_id) DO UPDATE SET
  title = excluded.title,
  content = excluded.content,
  category = excluded.category,
  importance = excluded.importance,
  publish_time = excluded.publish_time,
  tags = excluded.tags,
  url = excluded.url,
  content_hash = excluded.content_hash,
  synthetic = excluded.synthetic,
  updated_at_ms = excluded.updated_at_ms
"""

COLUMNS = "exchange_id, exchange, title, content, category, importance, publish_time, tags, url, synthetic"


def content_hash(ann: ScrapedAnnouncement) -> str:
    return hashlib.md5(f"{ann.title}|{ann.content}".encode("utf-8")).hexdigest()


class AnnouncementRepository:
    """Announcement store keyed by (exchange, exchange_id)"""

    def __init__(self, db_path: str, cache: Optional[RedisCache] = None):
        self._db_path = db_path
        self._cache = cache

        self._log = logger.bind(component="db")

    async def init(self) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.executescript(SCHEMA_SQL)
            await db.commit()

    async def upsert_many(self, announcements: List[ScrapedAnnouncement]) -> int:
        """
        Insert new announcements and overwrite the mutable fields of known
        ones in a single transaction. Returns the number of rows written.
        """
        if not announcements:
            return 0

        now = int(time.time() * 1000)
        rows = [
            (
                ann.exchange,
                ann.id,
                ann.title,
                ann.content,
                Category(ann.category).value,
                Importance(ann.importance).value,
                ann.publish_time,
                json.dumps(ann.tags, ensure_ascii=False),
                ann.url,
                content_hash(ann),
                int(ann.synthetic),
                now,
                now,
            )
            for ann in announcements
        ]

        async with aiosqlite.connect(self._db_path) as db:
            await db.executemany(UPSERT_SQL, rows)
            await db.commit()

        if self._cache:
            latest = {}
            for ann in announcements:
                latest[ann.exchange] = max(latest.get(ann.exchange, 0), ann.publish_time)
            for exchange, published_ms in latest.items():
                await self._cache.set_latest_ms(exchange, published_ms)

        self._log.info(f"Upserted {len(rows)} announcements")
        return len(rows)

    async def get_announcements(
            self,
            exchange: Optional[str] = None,
            category: Optional[str] = None,
            importance: Optional[str] = None,
            limit: int = 50,
            offset: int = 0,
    ) -> List[ScrapedAnnouncement]:
        clauses, params = [], []
        if exchange:
            clauses.append("exchange = ?")
            params.append(exchange)
        if category:
            clauses.append("category = ?")
            params.append(category)
        if importance:
            clauses.append("importance = ?")
            params.append(importance)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"""
            SELECT {COLUMNS}
            FROM announcements
            {where}
            ORDER BY publish_time DESC
            LIMIT ? OFFSET ?
        """
        params.extend([limit, offset])

        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute(query, params) as cur:
                rows = await cur.fetchall()

        return [self._row_to_announcement(row) for row in rows]

    async def count(self, exchange: Optional[str] = None) -> int:
        query = "SELECT COUNT(*) FROM announcements"
        params = ()
        if exchange:
            query += " WHERE exchange = ?"
            params = (exchange,)

        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute(query, params) as cur:
                row = await cur.fetchone()
                return int(row[0]) if row else 0

    async def get_latest_published_ms(self, exchange: str) -> Optional[int]:
        if self._cache:
            if latest := await self._cache.get_latest_ms(exchange):
                return latest

        async with aiosqlite.connect(self._db_path) as db:
            try:
                async with db.execute(
                        "SELECT MAX(publish_time) FROM announcements WHERE exchange = ?", (exchange,)
                ) as cur:
                    row = await cur.fetchone()
            except aiosqlite.OperationalError:  # Table might not exist yet
                return None

        result = int(row[0]) if row and row[0] is not None else None
        if result and self._cache:
            await self._cache.set_latest_ms(exchange, result)
        return result

    @staticmethod
    def _row_to_announcement(row) -> ScrapedAnnouncement:
        exchange_id, exchange, title, content, category, importance, publish_time, tags, url, synthetic = row
        return ScrapedAnnouncement(
            id=exchange_id,
            exchange=exchange,
            title=title,
            content=content,
            category=Category(category),
            importance=Importance(importance),
            publish_time=int(publish_time),
            tags=json.loads(tags),
            url=url,
            synthetic=bool(synthetic),
        )
