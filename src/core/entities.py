from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any

from core.schemas import DeduplicationStats


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware datetime.
    Naive values are assumed to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class CandidateArticle:
    """
    A scraped article waiting to be deduplicated.
    """
    id: str
    title: str
    source: str
    created_at: datetime
    summary: Optional[str] = None
    content: Optional[str] = None
    content_length: Optional[int] = None
    has_image: bool = False
    image_url: Optional[str] = None
    category: Optional[str] = None
    url: Optional[str] = None
    published_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateArticle":
        """Build an article from a storage record (snake_case keys)."""
        created_at = parse_timestamp(data.get("created_at")) or datetime.now(timezone.utc)
        content_length = data.get("content_length")
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            source=data.get("source") or "",
            created_at=created_at,
            summary=data.get("summary"),
            content=data.get("content"),
            content_length=int(content_length) if content_length is not None else None,
            has_image=bool(data.get("has_image", False)),
            image_url=data.get("image_url"),
            category=data.get("category"),
            url=data.get("url"),
            published_at=parse_timestamp(data.get("published_at")),
        )


@dataclass(frozen=True)
class EmbeddingResult:
    """
    Vector for one article, plus the exact normalized text that was embedded.
    """
    article_id: str
    embedding: List[float]
    text: str


@dataclass(frozen=True)
class BorderlinePair:
    article1_id: str
    article2_id: str
    similarity: float


@dataclass(eq=False)
class StoryCluster:
    """
    Group of articles believed to report the same event.
    """
    cluster_id: str
    articles: List[CandidateArticle] = field(default_factory=list)
    average_similarity: float = 1.0

    @property
    def size(self) -> int:
        return len(self.articles)

    @property
    def sources(self) -> List[str]:
        return [article.source for article in self.articles]


@dataclass
class DeduplicationResult:
    """
    Output of one deduplication run.
    """
    unique_articles: List[CandidateArticle]
    clusters: List[StoryCluster]
    duplicates_removed: int
    stats: DeduplicationStats
    degraded: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unique_article_ids": [article.id for article in self.unique_articles],
            "unique_articles": [
                {
                    "id": article.id,
                    "title": article.title,
                    "source": article.source,
                    "url": article.url,
                    "published_at": article.published_at.isoformat() if article.published_at else None,
                }
                for article in self.unique_articles
            ],
            "clusters": [
                {
                    "cluster_id": cluster.cluster_id,
                    "article_ids": [article.id for article in cluster.articles],
                    "sources": cluster.sources,
                    "average_similarity": cluster.average_similarity,
                }
                for cluster in self.clusters
            ],
            "duplicates_removed": self.duplicates_removed,
            "stats": self.stats.model_dump(),
            "degraded": self.degraded,
            "error": self.error,
        }
