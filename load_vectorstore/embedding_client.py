"""Client for an OpenAI-compatible embeddings endpoint."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from .config import EmbeddingConfig

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Embed texts in batches via HTTP."""

    def __init__(self, config: Optional[EmbeddingConfig] = None, *, session: Optional[requests.Session] = None) -> None:
        self.config = config or EmbeddingConfig()
        self.session = session or requests.Session()

    def embed_documents(self, texts: Sequence[str]) -> List[List[float]]:
        vectors: List[List[float]] = []
        batch_size = max(1, self.config.batch_size)
        for start in range(0, len(texts), batch_size):
            batch = list(texts[start : start + batch_size])
            logger.debug("Embedding batch of %d text(s)", len(batch))
            vectors.extend(self._embed_batch(batch))
        return vectors

    def embed_query(self, text: str) -> List[float]:
        vectors = self.embed_documents([text])
        if not vectors or not vectors[0]:
            raise RuntimeError("Embedding service returned no vectors for the query")
        return vectors[0]

    def _embed_batch(self, batch: List[str]) -> List[List[float]]:
        payload: Dict[str, Any] = {"model": self.config.model, "input": batch}
        if self.config.model_kwargs:
            payload.update(self.config.model_kwargs)
        response = self.session.post(self.config.endpoint, json=payload, timeout=self.config.request_timeout)
        response.raise_for_status()
        data = response.json().get("data") or []
        # the endpoint may return items out of order
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        if len(ordered) != len(batch):
            raise RuntimeError(f"Expected {len(batch)} embedding(s), got {len(ordered)}")
        return [list(item["embedding"]) for item in ordered]
