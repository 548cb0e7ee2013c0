"""
Workflows module - Pipeline orchestration for candidate batches.
"""
from workflows.base import CandidatePipeline
from workflows.story_selection import StorySelectionPipeline

__all__ = [
    "CandidatePipeline",
    "StorySelectionPipeline",
]
