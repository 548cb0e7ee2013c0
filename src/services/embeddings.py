"""
Embedding provider for story deduplication.

Texts are normalized (title + summary or content preview, lowercased,
whitespace collapsed) and hashed; cached vectors are reused and only the
misses are sent to the embedding backend, in a single batched call.
"""
import asyncio
import hashlib
import logging
import re
from typing import Dict, List, Optional, Tuple

from langchain_ollama import OllamaEmbeddings

from core.entities import CandidateArticle, EmbeddingResult
from core.errors import EmbeddingGenerationFailed
from core.interfaces import EmbeddingBackend, EmbeddingCacheProtocol
from services.background import BackgroundWriter
from services.llm import invoke_with_retry, normalize_ollama_url

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_article_text(article: CandidateArticle, preview_chars: int = 200) -> str:
    """
    Text that gets embedded for an article; also the cache key material.
    """
    preview = article.summary or (article.content or "")[:preview_chars]
    combined = f"{article.title} {preview}"
    return _WHITESPACE.sub(" ", combined.lower()).strip()


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class OllamaEmbeddingClient:
    """
    Embedding backend using Ollama through LangChain.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = 60.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
    ):
        self.base_url = normalize_ollama_url(base_url)
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.embeddings = OllamaEmbeddings(base_url=self.base_url, model=model)

    async def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        try:
            vectors = await invoke_with_retry(
                lambda: self.embeddings.aembed_documents(texts),
                timeout=self.timeout,
                max_retries=self.max_retries,
                retry_delay=self.retry_delay,
                label=f"Embeddings {self.model}",
            )
        except Exception as e:
            raise EmbeddingGenerationFailed(f"Failed to generate embeddings: {e}") from e

        if len(vectors) != len(texts):
            raise EmbeddingGenerationFailed(
                f"Embedding service returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return [list(vector) for vector in vectors]


class EmbeddingProvider:
    """
    Produces one EmbeddingResult per article, in input order.
    The cache is optional and never affects correctness.
    """

    def __init__(
        self,
        backend: EmbeddingBackend,
        cache: Optional[EmbeddingCacheProtocol] = None,
        writer: Optional[BackgroundWriter] = None,
        preview_chars: int = 200,
        cache_timeout: float = 5.0,
    ):
        self.backend = backend
        self.cache = cache
        self.writer = writer or BackgroundWriter()
        self.preview_chars = preview_chars
        self.cache_timeout = cache_timeout

    async def _cache_lookup(self, hashes: List[str]) -> Dict[str, List[float]]:
        if self.cache is None:
            return {}
        try:
            return await asyncio.wait_for(self.cache.get(hashes), timeout=self.cache_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Embedding cache read timed out after {self.cache_timeout}s, treating as miss")
            return {}
        except Exception as e:
            logger.warning(f"Embedding cache read failed, treating as miss: {e}")
            return {}

    def _schedule_cache_write(self, computed: Dict[str, List[float]]) -> None:
        if self.cache is None or not computed:
            return
        self.writer.submit(self._cache_write(list(computed.items())), name="embedding_cache_put")

    async def _cache_write(self, entries: List[Tuple[str, List[float]]]) -> None:
        await asyncio.wait_for(self.cache.put(entries), timeout=self.cache_timeout)

    async def embed(self, articles: List[CandidateArticle]) -> List[EmbeddingResult]:
        results, _ = await self.embed_with_stats(articles)
        return results

    async def embed_with_stats(
        self,
        articles: List[CandidateArticle],
    ) -> Tuple[List[EmbeddingResult], int]:
        """
        Same as embed(), also returning how many vectors came from the cache.
        """
        if not articles:
            return [], 0

        texts = [normalize_article_text(a, self.preview_chars) for a in articles]
        hashes = [content_hash(t) for t in texts]

        cached = await self._cache_lookup(list(dict.fromkeys(hashes)))

        # Each distinct uncached text is sent once
        missing: Dict[str, str] = {}
        for text, text_hash in zip(texts, hashes):
            if text_hash not in cached and text_hash not in missing:
                missing[text_hash] = text

        computed: Dict[str, List[float]] = {}
        if missing:
            logger.info(
                f"Generating embeddings for {len(missing)} texts "
                f"({len(articles) - len(missing)} served from cache)"
            )
            try:
                vectors = await self.backend.embed(list(missing.values()))
            except EmbeddingGenerationFailed:
                raise
            except Exception as e:
                raise EmbeddingGenerationFailed(f"Failed to generate embeddings: {e}") from e

            if len(vectors) != len(missing):
                raise EmbeddingGenerationFailed(
                    f"Embedding backend returned {len(vectors)} vectors for {len(missing)} texts"
                )
            computed = dict(zip(missing.keys(), vectors))

        vectors_by_hash = {**cached, **computed}
        results = [
            EmbeddingResult(article_id=article.id, embedding=list(vectors_by_hash[text_hash]), text=text)
            for article, text, text_hash in zip(articles, texts, hashes)
        ]

        dimensions = {len(result.embedding) for result in results}
        if len(dimensions) > 1:
            raise EmbeddingGenerationFailed(f"Inconsistent embedding dimensions: {sorted(dimensions)}")

        cache_hits = sum(1 for text_hash in hashes if text_hash in cached)
        self._schedule_cache_write(computed)

        logger.info(f"Generated {len(results)} embeddings ({cache_hits} cached)")
        return results, cache_hits
