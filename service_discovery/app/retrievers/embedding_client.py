"""Query embedding helpers.

Inbound requests normally carry a precomputed query embedding. When they do
not, ``EmbeddingClient`` can ask an embedding service for one. Failures are
never fatal here: the resolver treats a missing vector according to its
missing-embedding policy.
"""

import asyncio
from typing import Any, List, Optional, Sequence

import httpx
import numpy as np
import structlog

logger = structlog.get_logger("discovery_service.embedding_client")


def coerce_embedding(embedding: Optional[Sequence[Any]]) -> Optional[List[float]]:
    """Validate an embedding and return it as a list of floats.

    Returns ``None`` for missing, empty, non-numeric, multi-dimensional or
    non-finite vectors.
    """
    if embedding is None:
        return None
    try:
        vector = np.asarray(embedding, dtype=np.float32)
    except (TypeError, ValueError):
        logger.warning("Discarding non-numeric embedding")
        return None

    if vector.ndim != 1 or vector.size == 0:
        return None
    if not np.all(np.isfinite(vector)):
        logger.warning("Discarding embedding with non-finite values", size=int(vector.size))
        return None
    return vector.astype(float).tolist()


class EmbeddingClient:
    """HTTP client for the embedding service.

    Parameters
    - base_url: Embedding service root URL
    - http_client: Shared ``httpx.AsyncClient``
    - retry_attempts: Attempts per query before giving up
    - retry_base_delay / retry_max_delay: Exponential backoff bounds, seconds
    """

    def __init__(
        self,
        base_url: str,
        http_client: httpx.AsyncClient,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.5,
        retry_max_delay: float = 4.0
    ):
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay

    async def _request_embedding(self, text: str) -> List[float]:
        """POST to embedding service to obtain query vector."""
        response = await self.http_client.post(
            f"{self.base_url}/api/v1/embed",
            json={
                "items": [{"text": text}],
                "model": "default"
            }
        )
        response.raise_for_status()

        vectors = response.json().get("vectors") or []
        if not vectors:
            raise ValueError("Embedding service returned no vectors")
        return vectors[0]

    async def embed(self, text: str) -> Optional[List[float]]:
        """Return an embedding for ``text`` or ``None`` after exhausting retries."""
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return coerce_embedding(await self._request_embedding(text))
            except Exception as exc:
                if attempt == self.retry_attempts:
                    logger.error(
                        "Embedding request failed after retries",
                        attempts=attempt,
                        error=str(exc)
                    )
                    return None

                delay = min(self.retry_base_delay * (2 ** (attempt - 1)), self.retry_max_delay)
                logger.warning(
                    "Embedding request failed, retrying",
                    attempt=attempt,
                    max_attempts=self.retry_attempts,
                    delay_seconds=delay,
                    error=str(exc)
                )
                await asyncio.sleep(delay)
        return None

    async def close(self) -> None:
        await self.http_client.aclose()
