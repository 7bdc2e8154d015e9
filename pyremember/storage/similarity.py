"""
Vector math shared by the stores and the dedup manager.
"""

from typing import Any, List, Optional, Sequence

import numpy as np

from pyremember.errors import InvalidArgumentError


def validate_embedding(
    embedding: Sequence[float],
    dim: int,
    op: str,
    scope: Optional[Any] = None
) -> np.ndarray:
    """
    Check an embedding against the collection dimension.

    Args:
        embedding: Candidate vector
        dim: Configured collection dimension
        op: Operation name used in the error
        scope: Scope used in the error

    Returns:
        The embedding as a float64 array

    Raises:
        InvalidArgumentError: Wrong length, non-numeric, non-finite or zero-norm
    """
    try:
        vec = np.asarray(embedding, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidArgumentError(op, f"embedding is not numeric: {e}", scope) from e

    if vec.ndim != 1 or vec.shape[0] != dim:
        got = vec.shape[0] if vec.ndim == 1 else vec.shape
        raise InvalidArgumentError(op, f"embedding dimension mismatch: expected {dim}, got {got}", scope)
    if not np.all(np.isfinite(vec)):
        raise InvalidArgumentError(op, "embedding contains non-finite values", scope)
    if np.linalg.norm(vec) == 0:
        raise InvalidArgumentError(op, "embedding has zero norm", scope)
    return vec


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two vectors.

    Args:
        vec1: First vector
        vec2: Second vector

    Returns:
        Cosine similarity score (-1 to 1)
    """
    a = np.asarray(vec1, dtype=np.float64)
    b = np.asarray(vec2, dtype=np.float64)

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))


def cosine_scores(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of every row of `matrix` against `query`.

    Rows with zero norm score 0.0.
    """
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float64)
    row_norms = np.linalg.norm(matrix, axis=1)
    query_norm = np.linalg.norm(query)
    denom = row_norms * query_norm
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, dots / denom, 0.0)
    return np.clip(scores, -1.0, 1.0)


def normalize(vec: Sequence[float]) -> List[float]:
    """L2-normalize a vector (returned unchanged if its norm is zero)."""
    a = np.asarray(vec, dtype=np.float64)
    norm = np.linalg.norm(a)
    if norm == 0:
        return a.tolist()
    return (a / norm).tolist()


def average_embedding(vec1: Sequence[float], vec2: Sequence[float]) -> List[float]:
    """Normalized mean of two embeddings, used when merging memories."""
    a = np.asarray(vec1, dtype=np.float64)
    b = np.asarray(vec2, dtype=np.float64)
    mean = (a + b) / 2.0
    if np.linalg.norm(mean) == 0:
        # Opposite vectors cancel out; keep the newer direction
        return normalize(b)
    return normalize(mean)
