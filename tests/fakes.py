"""Test doubles shared by the deduplication tests."""

import asyncio
import math
from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, List, Optional, Tuple

from core.entities import CandidateArticle
from core.errors import ArbitrationUnavailable, CacheUnavailable

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def unit(dim: int, index: int) -> List[float]:
    vector = [0.0] * dim
    vector[index] = 1.0
    return vector


def blend(dim: int, base: int, other: int, similarity: float) -> List[float]:
    """Unit vector whose cosine similarity with unit(dim, base) is `similarity`."""
    vector = [0.0] * dim
    vector[base] = similarity
    vector[other] = math.sqrt(1.0 - similarity ** 2)
    return vector


class FakeBackend:
    """Looks up vectors by normalized text; records every batch it receives."""

    def __init__(self, vectors: Dict[str, List[float]], error: Optional[Exception] = None):
        self.vectors = vectors
        self.error = error
        self.calls: List[List[str]] = []

    async def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [self.vectors[text] for text in texts]


class FakeArbitrator:
    """Answers SAME for the configured id pairs; optionally fails for others."""

    def __init__(
        self,
        same: Optional[List[Tuple[str, str]]] = None,
        failing: Optional[List[Tuple[str, str]]] = None,
    ):
        self.same: set[FrozenSet[str]] = {frozenset(p) for p in same or []}
        self.failing: set[FrozenSet[str]] = {frozenset(p) for p in failing or []}
        self.calls: List[Tuple[str, str]] = []

    async def is_same_story(self, article_a: CandidateArticle, article_b: CandidateArticle) -> bool:
        key = frozenset((article_a.id, article_b.id))
        self.calls.append((article_a.id, article_b.id))
        if key in self.failing:
            raise ArbitrationUnavailable("arbitrator offline")
        return key in self.same


class MemoryCache:
    def __init__(self, fail_get: bool = False, fail_put: bool = False):
        self.store: Dict[str, List[float]] = {}
        self.fail_get = fail_get
        self.fail_put = fail_put
        self.get_calls: List[List[str]] = []

    async def get(self, hashes: List[str]) -> Dict[str, List[float]]:
        self.get_calls.append(list(hashes))
        if self.fail_get:
            raise CacheUnavailable("cache down")
        return {h: self.store[h] for h in hashes if h in self.store}

    async def put(self, entries: List[Tuple[str, List[float]]]) -> None:
        if self.fail_put:
            raise CacheUnavailable("cache read-only")
        self.store.update(dict(entries))


def make_article(
    article_id: str,
    *,
    title: Optional[str] = None,
    source: str = "HK01",
    created_at: Optional[datetime] = None,
    **fields,
) -> CandidateArticle:
    return CandidateArticle(
        id=article_id,
        title=title if title is not None else article_id,
        source=source,
        created_at=created_at or NOW - timedelta(hours=10),
        **fields,
    )


class HangingCache:
    """Cache whose calls never complete."""

    async def get(self, hashes: List[str]) -> Dict[str, List[float]]:
        await asyncio.sleep(3600)
        return {}

    async def put(self, entries: List[Tuple[str, List[float]]]) -> None:
        await asyncio.sleep(3600)
