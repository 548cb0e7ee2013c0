"""
Greedy threshold clustering of articles into stories.

Membership is decided against the seed article only, not against members
added later, so this is not a transitive closure: an article close to a
non-seed member but not to the seed opens its own cluster. The borderline
arbitration stage exists to merge such clusters afterwards.
"""
import logging
from typing import Dict, List

from core.entities import CandidateArticle, EmbeddingResult, StoryCluster
from processing.similarity import cosine_similarity

logger = logging.getLogger(__name__)

DEFAULT_CLUSTER_THRESHOLD = 0.85


def cluster_by_similarity(
    articles: List[CandidateArticle],
    embeddings: List[EmbeddingResult],
    threshold: float = DEFAULT_CLUSTER_THRESHOLD,
) -> List[StoryCluster]:
    """
    Single pass over articles in input order; each unassigned article seeds a
    cluster and absorbs every remaining unassigned article with
    similarity(seed, other) >= threshold.
    """
    if not articles:
        return []

    embedding_map: Dict[str, EmbeddingResult] = {e.article_id: e for e in embeddings}

    clusters: List[StoryCluster] = []
    assigned: set[str] = set()

    for article in articles:
        if article.id in assigned:
            continue

        seed = embedding_map.get(article.id)
        if seed is None:
            logger.warning(f"No embedding for article {article.id}, skipping")
            continue

        assigned.add(article.id)
        members = [article]
        similarity_sum = 0.0
        similarity_count = 0

        for other in articles:
            if other.id in assigned:
                continue

            other_embedding = embedding_map.get(other.id)
            if other_embedding is None:
                continue

            similarity = cosine_similarity(seed.embedding, other_embedding.embedding)
            if similarity >= threshold:
                members.append(other)
                assigned.add(other.id)
                similarity_sum += similarity
                similarity_count += 1

        average = similarity_sum / similarity_count if similarity_count else 1.0

        clusters.append(
            StoryCluster(
                cluster_id=f"cluster_{len(clusters) + 1}_{article.id[:8]}",
                articles=members,
                average_similarity=average,
            )
        )

    logger.info(
        f"Clustering: {len(articles)} articles -> {len(clusters)} clusters "
        f"(threshold={threshold})"
    )
    for cluster in clusters:
        if cluster.size > 1:
            logger.debug(
                f"{cluster.cluster_id}: {cluster.size} articles from "
                f"{', '.join(cluster.sources)} (avg similarity {cluster.average_similarity:.1%})"
            )

    return clusters
