import json
import aiosqlite
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Dict, List, Optional, Any, Tuple
import logging

from core.entities import DeduplicationResult

logger = logging.getLogger(__name__)

# SQLite caps the number of bound parameters per statement
_MAX_PARAMS = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Database:
    def __init__(self, path: str):
        self.path = path

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = await aiosqlite.connect(self.path)
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA foreign_keys=ON;")
        try:
            yield conn
        finally:
            await conn.close()

    async def execute(self, query: str, params: tuple = ()) -> None:
        async with self.connect() as conn:
            await conn.execute(query, params)
            await conn.commit()

    async def init_tables(self) -> None:
        """Initialize tables for the embedding cache and dedup metrics."""
        async with self.connect() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS embedding_cache (
                    content_hash TEXT NOT NULL,
                    model TEXT NOT NULL,
                    embedding TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (content_hash, model)
                )
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_embedding_cache_created ON embedding_cache(created_at)
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS deduplication_metrics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    original_count INTEGER NOT NULL,
                    unique_stories INTEGER NOT NULL,
                    duplicates_removed INTEGER NOT NULL,
                    reduction_rate REAL,
                    embeddings_time_ms INTEGER,
                    clustering_time_ms INTEGER,
                    arbitration_time_ms INTEGER,
                    total_time_ms INTEGER,
                    average_cluster_size REAL,
                    largest_cluster INTEGER,
                    cluster_count INTEGER,
                    sources_before TEXT,
                    sources_after TEXT,
                    sources_represented TEXT,
                    borderline_pairs INTEGER DEFAULT 0,
                    arbitrations INTEGER DEFAULT 0,
                    clusters_merged INTEGER DEFAULT 0,
                    cached_embeddings INTEGER DEFAULT 0,
                    degraded BOOLEAN DEFAULT 0,
                    error_message TEXT
                )
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_dedup_metrics_created ON deduplication_metrics(created_at)
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_dedup_metrics_session ON deduplication_metrics(session_id)
            """)
            await conn.commit()
            logger.info("Database tables initialized")

    # ----------------------------
    # Embedding cache
    # ----------------------------
    async def get_cached_embeddings(
        self,
        hashes: List[str],
        model: str,
        ttl_days: int = 7,
    ) -> Dict[str, List[float]]:
        """Return unexpired vectors for the given content hashes."""
        if not hashes:
            return {}

        cutoff = (_utcnow() - timedelta(days=ttl_days)).isoformat()
        found: Dict[str, List[float]] = {}

        async with self.connect() as conn:
            for start in range(0, len(hashes), _MAX_PARAMS):
                chunk = hashes[start:start + _MAX_PARAMS]
                placeholders = ",".join("?" for _ in chunk)
                cursor = await conn.execute(
                    f"""SELECT content_hash, embedding FROM embedding_cache
                        WHERE model = ? AND created_at > ? AND content_hash IN ({placeholders})""",
                    (model, cutoff, *chunk)
                )
                for content_hash, embedding in await cursor.fetchall():
                    found[content_hash] = json.loads(embedding)

        return found

    async def put_cached_embeddings(
        self,
        entries: List[Tuple[str, List[float]]],
        model: str,
    ) -> None:
        """Upsert vectors keyed by content hash."""
        if not entries:
            return

        now = _utcnow().isoformat()
        async with self.connect() as conn:
            await conn.executemany(
                """
                INSERT OR REPLACE INTO embedding_cache
                (content_hash, model, embedding, created_at)
                VALUES (?, ?, ?, ?)
                """,
                [(content_hash, model, json.dumps(vector), now) for content_hash, vector in entries]
            )
            await conn.commit()

    async def purge_expired_embeddings(self, ttl_days: int = 7) -> int:
        """Remove cache rows older than the TTL."""
        cutoff = (_utcnow() - timedelta(days=ttl_days)).isoformat()
        async with self.connect() as conn:
            cursor = await conn.execute(
                "DELETE FROM embedding_cache WHERE created_at <= ?",
                (cutoff,)
            )
            await conn.commit()
            return cursor.rowcount

    # ----------------------------
    # Deduplication metrics
    # ----------------------------
    async def add_dedup_metrics(self, session_id: str, result: DeduplicationResult) -> int:
        """Record the statistics of one deduplication run."""
        stats = result.stats
        async with self.connect() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO deduplication_metrics
                (session_id, created_at, original_count, unique_stories, duplicates_removed,
                 reduction_rate, embeddings_time_ms, clustering_time_ms, arbitration_time_ms,
                 total_time_ms, average_cluster_size, largest_cluster, cluster_count,
                 sources_before, sources_after, sources_represented, borderline_pairs,
                 arbitrations, clusters_merged, cached_embeddings, degraded, error_message)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    _utcnow().isoformat(),
                    stats.original_count,
                    stats.unique_stories,
                    result.duplicates_removed,
                    stats.reduction_rate,
                    stats.embeddings_time_ms,
                    stats.clustering_time_ms,
                    stats.arbitration_time_ms,
                    stats.total_time_ms,
                    stats.average_cluster_size,
                    stats.largest_cluster,
                    len(result.clusters),
                    json.dumps(stats.sources_before),
                    json.dumps(stats.sources_after),
                    json.dumps(stats.sources_represented),
                    stats.borderline_pairs,
                    stats.arbitrations,
                    stats.clusters_merged,
                    stats.cached_embeddings,
                    result.degraded,
                    result.error,
                )
            )
            await conn.commit()
            return cursor.lastrowid

    async def get_recent_dedup_metrics(self, hours: int = 24) -> List[Dict[str, Any]]:
        """Get metrics rows recorded within the specified hours, newest first."""
        cutoff = (_utcnow() - timedelta(hours=hours)).isoformat()
        async with self.connect() as conn:
            conn.row_factory = aiosqlite.Row
            cursor = await conn.execute(
                """SELECT * FROM deduplication_metrics
                   WHERE created_at > ?
                   ORDER BY created_at DESC, id DESC""",
                (cutoff,)
            )
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def cleanup_old_metrics(self, days: int = 30) -> int:
        """Remove metrics older than specified days."""
        cutoff = (_utcnow() - timedelta(days=days)).isoformat()
        async with self.connect() as conn:
            cursor = await conn.execute(
                "DELETE FROM deduplication_metrics WHERE created_at < ?",
                (cutoff,)
            )
            await conn.commit()
            return cursor.rowcount
