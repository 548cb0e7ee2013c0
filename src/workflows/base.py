"""
Contains base class for candidate-batch pipelines
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from core.entities import CandidateArticle, DeduplicationResult


class CandidatePipeline(ABC):
    """
    Processes one batch of candidate articles.
    """

    name: str

    @abstractmethod
    async def run(
        self,
        candidates: List[CandidateArticle],
        session_id: Optional[str] = None,
    ) -> DeduplicationResult:
        """
        Execute the pipeline for one batch.
        Must never raise uncaught exceptions.
        """
        raise NotImplementedError
