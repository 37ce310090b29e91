from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple, TypeVar

import numpy as np

K = TypeVar("K")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.shape != vb.shape:
        raise ValueError("Vectors must have same length")
    magnitude = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0
    return float(np.dot(va, vb) / magnitude)


def rank_by_similarity(
    query: Sequence[float],
    candidates: Iterable[Tuple[K, Sequence[float]]],
    *,
    top_k: int = 5,
) -> List[Tuple[K, float]]:
    """Return the top_k (key, cosine similarity) pairs, best first."""
    keys: List[K] = []
    rows: List[Sequence[float]] = []
    for key, vec in candidates:
        keys.append(key)
        rows.append(vec)
    if not rows:
        return []
    q = np.asarray(query, dtype=np.float32)
    m = np.asarray(rows, dtype=np.float32)
    if m.ndim != 2 or m.shape[1] != q.shape[0]:
        raise ValueError("Candidate vectors must match the query length")
    norms = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
    dots = m @ q
    scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
    order = np.argsort(-scores, kind="stable")[: max(0, top_k)]
    return [(keys[i], float(scores[i])) for i in order]
