"""Client for the external image-embedding API (Jina CLIP)."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
import numpy as np

from ..imaging.store import content_digest
from ..imaging.validator import sniff_dimensions
from ..logging import get_logger

LOG = get_logger("embedding-client")

JINA_API_URL = "https://api.jina.ai/v1/embeddings"
EMBEDDING_MODEL = "jina-clip-v1"
EMBEDDING_DIMENSIONS = 768

RATE_LIMIT_STATUSES = frozenset({429, 503})


class EmbeddingFailed(RuntimeError):
    """Any embedding failure that is not a rate limit."""


class RateLimited(EmbeddingFailed):
    """The embedding API asked us to back off (429/503)."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class EmbeddingResult:
    embedding: List[float]
    sha256: str


def _clean_error(r: httpx.Response) -> str:
    text = r.text or ""
    if "<!DOCTYPE" in text or "<html" in text:
        return r.reason_phrase or "API error"
    return text[:200]


class EmbeddingClient:
    """bytes -> fixed-length vector, with rate limits surfaced as RateLimited."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: Optional[str],
        *,
        url: str = JINA_API_URL,
        model: str = EMBEDDING_MODEL,
        dimensions: Optional[int] = EMBEDDING_DIMENSIONS,
        timeout: float = 60.0,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.url = url
        self.model = model
        self.dimensions = dimensions
        self.timeout = float(timeout)

    def _payload(self, data: bytes) -> Dict[str, Any]:
        sniffed = sniff_dimensions(data)
        mime = sniffed[0] if sniffed else "image/jpeg"
        b64 = base64.b64encode(data).decode("ascii")
        return {"model": self.model, "input": [{"image": f"data:{mime};base64,{b64}"}]}

    def _vector(self, body: Any) -> List[float]:
        try:
            raw = body["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError):
            raise EmbeddingFailed("Invalid response from embedding API: missing embedding")
        try:
            vec = np.asarray(raw, dtype=np.float32)
        except (TypeError, ValueError):
            raise EmbeddingFailed("Invalid response from embedding API: non-numeric embedding")
        if vec.ndim != 1 or vec.size == 0:
            raise EmbeddingFailed(f"Invalid embedding shape: {vec.shape}")
        if self.dimensions and vec.size != self.dimensions:
            raise EmbeddingFailed(f"Unexpected embedding length {vec.size} (expected {self.dimensions})")
        if not np.all(np.isfinite(vec)):
            raise EmbeddingFailed("Embedding contains non-finite values")
        return [float(x) for x in vec]

    async def embed(self, data: bytes) -> EmbeddingResult:
        if not self.api_key:
            raise EmbeddingFailed("JINA_API_KEY is required for image embeddings")
        try:
            r = await self.client.post(
                self.url,
                json=self._payload(data),
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise EmbeddingFailed(f"Embedding request failed: {e}") from e

        if r.status_code in RATE_LIMIT_STATUSES:
            raise RateLimited(f"Embedding API rate limited: {r.status_code} - {_clean_error(r)}", status_code=r.status_code)
        if r.status_code >= 400:
            raise EmbeddingFailed(f"Embedding API error: {r.status_code} - {_clean_error(r)}")
        try:
            body = r.json()
        except ValueError as e:
            raise EmbeddingFailed("Embedding API returned non-JSON body") from e
        return EmbeddingResult(embedding=self._vector(body), sha256=content_digest(data))
