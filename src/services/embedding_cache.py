"""
EmbeddingCache - SQLite-backed vector cache keyed by content hash.
Entries expire after a time-to-live; every storage error surfaces as CacheUnavailable.
"""
import logging
import sqlite3
from typing import Dict, List, Tuple

from core.errors import CacheUnavailable
from services.database import Database

logger = logging.getLogger(__name__)


class EmbeddingCache:
    """
    Best-effort cache of embedding vectors for one embedding model.
    """

    def __init__(
        self,
        database: Database,
        model: str,
        ttl_days: int = 7,
    ):
        self.db = database
        self.model = model
        self.ttl_days = ttl_days
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the database tables."""
        if not self._initialized:
            await self.db.init_tables()
            self._initialized = True

    async def get(self, hashes: List[str]) -> Dict[str, List[float]]:
        try:
            await self.initialize()
            return await self.db.get_cached_embeddings(hashes, self.model, ttl_days=self.ttl_days)
        except (sqlite3.Error, OSError, ValueError) as e:
            raise CacheUnavailable(f"Embedding cache read failed: {e}") from e

    async def put(self, entries: List[Tuple[str, List[float]]]) -> None:
        try:
            await self.initialize()
            await self.db.put_cached_embeddings(entries, self.model)
            logger.debug(f"Cached {len(entries)} embeddings")
        except (sqlite3.Error, OSError) as e:
            raise CacheUnavailable(f"Embedding cache write failed: {e}") from e

    async def purge_expired(self) -> int:
        try:
            await self.initialize()
            count = await self.db.purge_expired_embeddings(ttl_days=self.ttl_days)
        except (sqlite3.Error, OSError) as e:
            raise CacheUnavailable(f"Embedding cache purge failed: {e}") from e
        logger.info(f"Purged {count} expired cache entries")
        return count
