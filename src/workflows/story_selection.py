# src/workflows/story_selection.py
import logging
import uuid
from typing import List, Optional

from core.entities import CandidateArticle, DeduplicationResult
from processing.deduplicator import StoryDeduplicator, passthrough_result
from services.config import DeduplicationSettings
from services.database import Database
from workflows.base import CandidatePipeline

logger = logging.getLogger(__name__)


class StorySelectionPipeline(CandidatePipeline):
    """
    Cross-source story deduplication step of article selection.
    Small batches and disabled configs pass through unchanged.
    """
    name = "story_selection"

    def __init__(
        self,
        deduplicator: StoryDeduplicator,
        database: Optional[Database] = None,
        settings: Optional[DeduplicationSettings] = None,
    ):
        self.deduplicator = deduplicator
        self.db = database
        self.settings = settings or deduplicator.settings
        self._tables_ready = False

    async def run(
        self,
        candidates: List[CandidateArticle],
        session_id: Optional[str] = None,
    ) -> DeduplicationResult:
        session_id = session_id or uuid.uuid4().hex

        if not self.settings.enabled:
            logger.info(f"[{session_id}] Cross-source deduplication disabled")
            return passthrough_result(candidates)

        if len(candidates) <= self.settings.min_batch_size:
            logger.info(
                f"[{session_id}] Skipping cross-source deduplication "
                f"(too few articles: {len(candidates)})"
            )
            return passthrough_result(candidates)

        result = await self.deduplicator.deduplicate_stories(candidates)

        if result.degraded:
            logger.error(f"[{session_id}] Deduplication degraded: {result.error}")
        elif result.duplicates_removed > 0:
            logger.info(
                f"[{session_id}] Removed {result.duplicates_removed} duplicates "
                f"(avg cluster {result.stats.average_cluster_size:.1f}, "
                f"largest {result.stats.largest_cluster})"
            )
        else:
            logger.info(f"[{session_id}] No cross-source duplicates found")

        await self._record_metrics(session_id, result)
        return result

    async def _record_metrics(self, session_id: str, result: DeduplicationResult) -> None:
        if self.db is None:
            return
        try:
            if not self._tables_ready:
                await self.db.init_tables()
                self._tables_ready = True
            await self.db.add_dedup_metrics(session_id, result)
        except Exception as e:
            logger.warning(f"[{session_id}] Failed to record deduplication metrics: {e}")
