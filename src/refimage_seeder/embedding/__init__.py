from .client import EmbeddingClient, EmbeddingFailed, EmbeddingResult, RateLimited
from .similarity import cosine_similarity, rank_by_similarity

__all__ = [
    "EmbeddingClient",
    "EmbeddingFailed",
    "EmbeddingResult",
    "RateLimited",
    "cosine_similarity",
    "rank_by_similarity",
]
