"""
Error taxonomy for the deduplication pipeline.
"""


class DeduplicationError(Exception):
    """Base class for all deduplication errors."""


class EmbeddingGenerationFailed(DeduplicationError):
    """
    The embedding service was unreachable or rejected the batch.
    Fatal to the current invocation.
    """


class DimensionMismatch(DeduplicationError, ValueError):
    """Two vectors of different lengths were compared."""

    def __init__(self, left: int, right: int):
        super().__init__(f"Vectors must have the same dimensions ({left} != {right})")
        self.left = left
        self.right = right


class ArbitrationUnavailable(DeduplicationError):
    """The same-story judgment could not be obtained for a pair."""


class CacheUnavailable(DeduplicationError):
    """The embedding cache could not be read or written."""
