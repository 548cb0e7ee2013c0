from typing import List, Sequence

import numpy as np

from core.entities import EmbeddingResult
from core.errors import DimensionMismatch


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """
    Cosine similarity in [-1, 1]. Returns 0.0 when either vector has zero norm.
    """
    if len(vec_a) != len(vec_b):
        raise DimensionMismatch(len(vec_a), len(vec_b))

    a = np.asarray(vec_a, dtype="float64")
    b = np.asarray(vec_b, dtype="float64")

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    # rounding can push identical vectors just past 1
    return max(-1.0, min(1.0, similarity))


def similarity_matrix(embeddings: List[EmbeddingResult]) -> np.ndarray:
    """
    Symmetric n x n similarity matrix with 1.0 on the diagonal.
    """
    n = len(embeddings)
    matrix = np.eye(n, dtype="float64")

    for i in range(n):
        for j in range(i + 1, n):
            similarity = cosine_similarity(embeddings[i].embedding, embeddings[j].embedding)
            matrix[i, j] = similarity
            matrix[j, i] = similarity

    return matrix
