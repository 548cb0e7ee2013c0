"""
Interfaces of the external collaborators used by the deduplicator.
"""
from typing import Dict, List, Protocol, Tuple, runtime_checkable

from core.entities import CandidateArticle


@runtime_checkable
class EmbeddingBackend(Protocol):
    """
    Converts texts to fixed-length vectors, one per text, in order.
    Must raise EmbeddingGenerationFailed on failure.
    """

    async def embed(self, texts: List[str]) -> List[List[float]]:
        ...


@runtime_checkable
class StoryArbitrator(Protocol):
    """
    Decides whether two articles report the same event.
    Raises ArbitrationUnavailable only for transport/availability failures.
    """

    async def is_same_story(self, article_a: CandidateArticle, article_b: CandidateArticle) -> bool:
        ...


@runtime_checkable
class EmbeddingCacheProtocol(Protocol):
    """
    Best-effort vector cache keyed by content hash.
    put() takes (hash, vector) tuples; get() returns only the hashes it holds.
    """

    async def get(self, hashes: List[str]) -> Dict[str, List[float]]:
        ...

    async def put(self, entries: List[Tuple[str, List[float]]]) -> None:
        ...
