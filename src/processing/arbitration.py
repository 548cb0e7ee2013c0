"""
Borderline arbitration: pairs that are similar but below the clustering
threshold are judged by a language model and their clusters merged when the
model says they report the same event.
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, List

from pydantic import ValidationError

from core.entities import BorderlinePair, CandidateArticle, EmbeddingResult, StoryCluster
from core.errors import ArbitrationUnavailable
from core.interfaces import StoryArbitrator
from core.schemas import SameStoryVerdict
from processing.similarity import similarity_matrix
from services.llm import OllamaClient

logger = logging.getLogger(__name__)

DEFAULT_BORDERLINE_LOWER = 0.70
DEFAULT_BORDERLINE_UPPER = 0.85
DEFAULT_MAX_ARBITRATIONS = 10
EXCERPT_CHARS = 200


def find_borderline_pairs(
    embeddings: List[EmbeddingResult],
    lower_threshold: float = DEFAULT_BORDERLINE_LOWER,
    upper_threshold: float = DEFAULT_BORDERLINE_UPPER,
) -> List[BorderlinePair]:
    """
    All pairs i < j with lower_threshold <= similarity < upper_threshold,
    in ascending index order.
    """
    matrix = similarity_matrix(embeddings)
    pairs: List[BorderlinePair] = []

    for i in range(len(embeddings)):
        for j in range(i + 1, len(embeddings)):
            similarity = float(matrix[i, j])
            if lower_threshold <= similarity < upper_threshold:
                pairs.append(
                    BorderlinePair(
                        article1_id=embeddings[i].article_id,
                        article2_id=embeddings[j].article_id,
                        similarity=similarity,
                    )
                )

    logger.info(f"Found {len(pairs)} borderline pairs for arbitration")
    return pairs


@dataclass
class MergeOutcome:
    clusters: List[StoryCluster]
    arbitrations: int = 0
    merges: int = 0


async def verify_and_merge(
    clusters: List[StoryCluster],
    pairs: List[BorderlinePair],
    articles: List[CandidateArticle],
    arbitrator: StoryArbitrator,
    max_pairs: int = DEFAULT_MAX_ARBITRATIONS,
) -> MergeOutcome:
    """
    Arbitrate the first max_pairs borderline pairs and merge the clusters of
    every pair judged to be the same story. Pairs beyond the cap stay unmerged.
    """
    clusters = list(clusters)
    article_map: Dict[str, CandidateArticle] = {a.id: a for a in articles}
    cluster_of: Dict[str, StoryCluster] = {}
    for cluster in clusters:
        for article in cluster.articles:
            cluster_of[article.id] = cluster

    outcome = MergeOutcome(clusters=clusters)

    for pair in pairs[:max_pairs]:
        article1 = article_map.get(pair.article1_id)
        article2 = article_map.get(pair.article2_id)
        if article1 is None or article2 is None:
            continue

        cluster1 = cluster_of.get(pair.article1_id)
        cluster2 = cluster_of.get(pair.article2_id)
        if cluster1 is None or cluster2 is None or cluster1 is cluster2:
            continue

        outcome.arbitrations += 1
        try:
            same = await arbitrator.is_same_story(article1, article2)
        except Exception as e:
            logger.warning(
                f"Arbitration failed for {pair.article1_id}/{pair.article2_id}, "
                f"treating as different: {e}"
            )
            same = False

        if not same:
            continue

        logger.info(
            f"Merging clusters: \"{article1.title[:30]}...\" and \"{article2.title[:30]}...\" "
            f"(similarity {pair.similarity:.3f})"
        )
        cluster1.articles.extend(cluster2.articles)
        for article in cluster2.articles:
            cluster_of[article.id] = cluster1
        clusters.remove(cluster2)
        outcome.merges += 1

    return outcome


def _excerpt(article: CandidateArticle) -> str:
    return article.summary or (article.content or "")[:EXCERPT_CHARS]


def build_comparison_prompt(article_a: CandidateArticle, article_b: CandidateArticle) -> str:
    return f"""Compare these two news articles and determine if they report the SAME news event:

Article 1: "{article_a.title}"
Source: {article_a.source}
Summary: {_excerpt(article_a)}

Article 2: "{article_b.title}"
Source: {article_b.source}
Summary: {_excerpt(article_b)}

Consider:
- Are they about the same specific event/announcement?
- Do they share the same key facts (who, what, when, where)?
- Are the main entities/numbers/dates the same?

Respond with only: SAME or DIFFERENT"""


def parse_verdict(content: str) -> bool:
    """
    True only for an unambiguous SAME reply; anything unparseable is DIFFERENT.
    """
    cleaned = re.sub(r"[^A-Za-z]", "", content or "").upper()
    try:
        verdict = SameStoryVerdict(verdict=cleaned)
    except ValidationError:
        logger.warning(f"Unparseable arbitration reply, treating as different: {content!r}")
        return False
    return verdict.is_same


class LLMStoryArbitrator:
    """
    Same-story judgment backed by the Ollama chat model.
    """

    def __init__(self, llm: OllamaClient):
        self.llm = llm

    async def is_same_story(self, article_a: CandidateArticle, article_b: CandidateArticle) -> bool:
        prompt = build_comparison_prompt(article_a, article_b)
        try:
            response = await self.llm.evaluate(prompt)
        except Exception as e:
            raise ArbitrationUnavailable(f"Same-story check failed: {e}") from e

        logger.debug(f"Arbitration reply in {response['latency_ms']}ms: {response['content']!r}")
        return parse_verdict(str(response["content"]))
