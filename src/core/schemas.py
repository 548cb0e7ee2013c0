"""
Pydantic schemas for LLM replies and run statistics
"""
from typing import Dict, List, Literal

from pydantic import BaseModel, Field


class SameStoryVerdict(BaseModel):
    """
    Pydantic schema for the same-story arbitration reply
    """
    verdict: Literal["SAME", "DIFFERENT"]

    @property
    def is_same(self) -> bool:
        return self.verdict == "SAME"


class DeduplicationStats(BaseModel):
    """
    Statistics for one deduplication run
    """
    original_count: int = 0
    unique_stories: int = 0
    duplicates_removed: int = 0
    reduction_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    average_cluster_size: float = 0.0
    largest_cluster: int = 0
    sources_represented: List[str] = []
    sources_before: Dict[str, int] = {}
    sources_after: Dict[str, int] = {}

    borderline_pairs: int = 0
    arbitrations: int = 0
    clusters_merged: int = 0
    cached_embeddings: int = 0

    embeddings_time_ms: int = 0
    clustering_time_ms: int = 0
    arbitration_time_ms: int = 0
    total_time_ms: int = 0
