"""
Module to score articles and pick the representative of every story cluster
"""
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Tuple

from core.entities import CandidateArticle

# Editorial trust per outlet (higher = more reliable)
SOURCE_RELIABILITY_SCORES: Dict[str, int] = {
    "scmp": 9,
    "HKFP": 8,
    "RTHK": 8,
    "bloomberg": 9,
    "TheStandard": 7,
    "SingTao": 6,
    "HK01": 6,
    "on.cc": 5,
    "am730": 5,
    "AM730": 5,
    "bastillepost": 4,
    "BastillePost": 4,
}

DEFAULT_RELIABILITY = 5
MAX_CONTENT_CHARS = 2000
IMAGE_BONUS = 20
SUMMARY_BONUS = 10
MIN_SUMMARY_CHARS = 50

# (max hours ago, bonus), checked in order
RECENCY_BONUSES: Tuple[Tuple[int, int], ...] = ((2, 30), (4, 20), (6, 10))


def hours_ago(timestamp: datetime, now: Optional[datetime] = None) -> int:
    """Whole hours elapsed since timestamp."""
    now = now or datetime.now(timezone.utc)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return int((now - timestamp).total_seconds() // 3600)


def content_length_of(article: CandidateArticle) -> int:
    if article.content_length:
        return article.content_length
    return len(article.content or "")


def score_article(
    article: CandidateArticle,
    *,
    reliability: Optional[Mapping[str, int]] = None,
    now: Optional[datetime] = None,
) -> float:
    """
    Quality score used to rank members of a cluster.
    Content depth + source reliability + image + recency + summary.
    """
    reliability = SOURCE_RELIABILITY_SCORES if reliability is None else reliability
    score = 0.0

    score += min(content_length_of(article), MAX_CONTENT_CHARS) * 0.01

    score += reliability.get(article.source, DEFAULT_RELIABILITY) * 10

    if article.has_image or article.image_url:
        score += IMAGE_BONUS

    age = hours_ago(article.created_at, now)
    for max_hours, bonus in RECENCY_BONUSES:
        if age < max_hours:
            score += bonus
            break

    if article.summary and len(article.summary) > MIN_SUMMARY_CHARS:
        score += SUMMARY_BONUS

    return score


def select_best_from_cluster(
    cluster: List[CandidateArticle],
    *,
    reliability: Optional[Mapping[str, int]] = None,
    now: Optional[datetime] = None,
) -> CandidateArticle:
    """
    Returns the highest scoring article. Ties keep cluster order.
    """
    if not cluster:
        raise ValueError("Cannot select a representative from an empty cluster")

    if len(cluster) == 1:
        return cluster[0]

    now = now or datetime.now(timezone.utc)
    scored = [
        (score_article(article, reliability=reliability, now=now), article)
        for article in cluster
    ]
    # sorted() is stable, so equal scores retain cluster order
    scored = sorted(scored, key=lambda pair: pair[0], reverse=True)
    return scored[0][1]


def build_reliability_table(overrides: Optional[Mapping[str, int]] = None) -> Dict[str, int]:
    """Default reliability table extended with configured overrides."""
    table = dict(SOURCE_RELIABILITY_SCORES)
    if overrides:
        table.update(overrides)
    return table
