"""
Story deduplication orchestrator.

embed -> cluster (high threshold) -> find borderline pairs -> arbitrate/merge
-> select one representative per cluster -> statistics.

Any stage failure degrades the run to a pass-through (every article its own
cluster) flagged with degraded=True; the orchestrator never raises.
"""
import logging
import time
from collections import Counter
from typing import List, Optional

from core.entities import CandidateArticle, DeduplicationResult, StoryCluster
from core.interfaces import StoryArbitrator
from core.schemas import DeduplicationStats
from core.scoring import build_reliability_table, select_best_from_cluster
from processing.arbitration import find_borderline_pairs, verify_and_merge
from processing.clustering import cluster_by_similarity
from services.config import DeduplicationSettings
from services.embeddings import EmbeddingProvider

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _source_counts(articles: List[CandidateArticle]) -> dict[str, int]:
    return dict(Counter(article.source for article in articles))


def build_stats(
    candidates: List[CandidateArticle],
    unique_articles: List[CandidateArticle],
    clusters: List[StoryCluster],
) -> DeduplicationStats:
    """Counts, cluster size distribution and source coverage for a run."""
    original_count = len(candidates)
    duplicates_removed = original_count - len(unique_articles)
    sizes = [cluster.size for cluster in clusters]

    return DeduplicationStats(
        original_count=original_count,
        unique_stories=len(unique_articles),
        duplicates_removed=duplicates_removed,
        reduction_rate=round(duplicates_removed / original_count * 100, 2) if original_count else 0.0,
        average_cluster_size=sum(sizes) / len(sizes) if sizes else 0.0,
        largest_cluster=max(sizes, default=0),
        sources_represented=list(dict.fromkeys(a.source for a in unique_articles)),
        sources_before=_source_counts(candidates),
        sources_after=_source_counts(unique_articles),
    )


def passthrough_result(
    candidates: List[CandidateArticle],
    *,
    degraded: bool = False,
    error: Optional[str] = None,
) -> DeduplicationResult:
    """Every article as its own singleton cluster."""
    clusters = [
        StoryCluster(cluster_id=article.id, articles=[article], average_similarity=1.0)
        for article in candidates
    ]
    unique_articles = list(candidates)
    return DeduplicationResult(
        unique_articles=unique_articles,
        clusters=clusters,
        duplicates_removed=0,
        stats=build_stats(candidates, unique_articles, clusters),
        degraded=degraded,
        error=error,
    )


class StoryDeduplicator:
    """
    Identifies clusters of articles covering the same story and keeps one
    representative per cluster.
    """

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        arbitrator: StoryArbitrator,
        settings: Optional[DeduplicationSettings] = None,
    ):
        self.embedding_provider = embedding_provider
        self.arbitrator = arbitrator
        self.settings = settings or DeduplicationSettings()
        self.reliability = build_reliability_table(self.settings.source_reliability)

    async def deduplicate_stories(self, candidates: List[CandidateArticle]) -> DeduplicationResult:
        if not candidates:
            return DeduplicationResult(
                unique_articles=[],
                clusters=[],
                duplicates_removed=0,
                stats=DeduplicationStats(),
            )

        logger.info(f"Starting story deduplication for {len(candidates)} articles")
        started = time.perf_counter()

        try:
            result = await self._run(candidates)
        except Exception as e:
            logger.exception(f"Story deduplication failed, falling back to original articles: {e}")
            result = passthrough_result(candidates, degraded=True, error=f"{type(e).__name__}: {e}")

        result.stats.total_time_ms = _elapsed_ms(started)
        return result

    async def _run(self, candidates: List[CandidateArticle]) -> DeduplicationResult:
        settings = self.settings

        stage = time.perf_counter()
        embeddings, cache_hits = await self.embedding_provider.embed_with_stats(candidates)
        embeddings_time_ms = _elapsed_ms(stage)

        stage = time.perf_counter()
        clusters = cluster_by_similarity(candidates, embeddings, settings.similarity_threshold)
        pairs = find_borderline_pairs(embeddings, settings.borderline_lower, settings.borderline_upper)
        clustering_time_ms = _elapsed_ms(stage)

        arbitrations = merges = 0
        stage = time.perf_counter()
        if pairs:
            logger.info(
                f"Arbitrating up to {settings.max_arbitrations} of {len(pairs)} borderline pairs"
            )
            outcome = await verify_and_merge(
                clusters,
                pairs,
                candidates,
                self.arbitrator,
                max_pairs=settings.max_arbitrations,
            )
            clusters = outcome.clusters
            arbitrations, merges = outcome.arbitrations, outcome.merges
        arbitration_time_ms = _elapsed_ms(stage)

        unique_articles: List[CandidateArticle] = []
        for cluster in clusters:
            best = select_best_from_cluster(cluster.articles, reliability=self.reliability)
            unique_articles.append(best)

            if cluster.size > 1:
                logger.info(
                    f"Selected \"{best.title[:50]}...\" from {best.source} "
                    f"(chose from {cluster.size} duplicates: {', '.join(cluster.sources)})"
                )

        stats = build_stats(candidates, unique_articles, clusters)
        stats.borderline_pairs = len(pairs)
        stats.arbitrations = arbitrations
        stats.clusters_merged = merges
        stats.cached_embeddings = cache_hits
        stats.embeddings_time_ms = embeddings_time_ms
        stats.clustering_time_ms = clustering_time_ms
        stats.arbitration_time_ms = arbitration_time_ms

        logger.info(
            f"Deduplication complete: {stats.original_count} articles -> "
            f"{stats.unique_stories} stories, {stats.duplicates_removed} duplicates removed "
            f"({stats.reduction_rate:.0f}%), sources: {', '.join(stats.sources_represented)}"
        )

        return DeduplicationResult(
            unique_articles=unique_articles,
            clusters=clusters,
            duplicates_removed=stats.duplicates_removed,
            stats=stats,
        )


async def deduplicate_stories(
    candidates: List[CandidateArticle],
    *,
    provider: EmbeddingProvider,
    arbitrator: StoryArbitrator,
    settings: Optional[DeduplicationSettings] = None,
) -> DeduplicationResult:
    """Convenience wrapper around StoryDeduplicator."""
    deduplicator = StoryDeduplicator(provider, arbitrator, settings)
    return await deduplicator.deduplicate_stories(candidates)
