"""Load persisted FAISS vector stores and search them with scores.

A store directory holds ``index.faiss`` and ``metadata.json`` (a list with
one entry per vector: ``text`` plus arbitrary metadata). The loader exposes
the scored-search capability the retrieval chain wraps, together with an
``embeddings`` attribute used to encode query text.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

try:
    import faiss  # type: ignore
except ImportError as exc:  # pragma: no cover - runtime dependency
    raise RuntimeError(
        "The faiss library is required for loading vector stores. Install faiss or faiss-cpu via pip or conda."
    ) from exc

from qa_chain.documents import Document

from .config import EmbeddingConfig
from .embedding_client import EmbeddingClient

logger = logging.getLogger(__name__)


class VectorStoreLoader:
    """Load a persisted vector store and perform scored similarity search."""

    def __init__(
        self,
        store_dir: str,
        *,
        embedding_config: Optional[EmbeddingConfig] = None,
        embeddings: Optional[Any] = None,
    ) -> None:
        """Initialise the loader with paths and an embedding capability.

        Parameters
        ----------
        store_dir:
            Directory containing ``index.faiss`` and ``metadata.json``.
        embedding_config:
            Settings for the HTTP :class:`EmbeddingClient` built when
            ``embeddings`` is not supplied.
        embeddings:
            Any object with ``embed_query(text) -> list[float]``; takes
            precedence over ``embedding_config``.
        """
        self.store_dir = Path(store_dir)
        self.index_path = self.store_dir / "index.faiss"
        self.metadata_path = self.store_dir / "metadata.json"
        self.embeddings = embeddings or EmbeddingClient(embedding_config or EmbeddingConfig())
        self._index: Optional[Any] = None
        self._metadata: List[Dict[str, Any]] = []
        logger.debug("VectorStoreLoader initialised for store at %s", self.store_dir)

    @property
    def is_loaded(self) -> bool:
        return self._index is not None

    def load(self) -> None:
        """Load the FAISS index and metadata from disk."""
        start_time = time.perf_counter()
        if not self.index_path.exists():
            raise FileNotFoundError(f"FAISS index not found at {self.index_path}")
        if not self.metadata_path.exists():
            raise FileNotFoundError(f"Metadata file not found at {self.metadata_path}")

        logger.info("Loading FAISS index from %s", self.index_path)
        self._index = faiss.read_index(str(self.index_path))

        with self.metadata_path.open("r", encoding="utf-8") as f:
            metadata = json.load(f)
        if not isinstance(metadata, list):
            raise ValueError("metadata.json must contain a list of metadata entries")
        self._metadata = metadata

        if self._index.ntotal != len(self._metadata):
            logger.warning(
                "Vector store mismatch: index has %d vectors, metadata contains %d entries",
                self._index.ntotal,
                len(self._metadata),
            )
        logger.info("Vector store loaded in %.2f seconds", time.perf_counter() - start_time)

    def similarity_search_vector_with_score(
        self,
        embedding: Sequence[float],
        k: int = 4,
        filter: Optional[Mapping[str, Any]] = None,
    ) -> List[Tuple[Document, float]]:
        """Return up to ``k`` ``(document, score)`` pairs in index ranking order.

        ``filter`` keeps only entries whose metadata equals every given value.
        """
        if k <= 0:
            raise ValueError("k must be a positive integer")
        if not self.is_loaded:
            raise RuntimeError("Vector store is not loaded. Call load() first.")

        vector = np.asarray(embedding, dtype="float32").reshape(1, -1)
        if vector.shape[1] != self._index.d:  # type: ignore[union-attr]
            raise ValueError(
                f"Embedding dimension {vector.shape[1]} does not match index dimension {self._index.d}"  # type: ignore[union-attr]
            )

        total = self._index.ntotal  # type: ignore[union-attr]
        search_k = total if filter else min(k, total)
        if search_k == 0:
            return []
        search_start = time.perf_counter()
        scores, ids = self._index.search(vector, search_k)  # type: ignore[union-attr]
        logger.debug("FAISS search for %d neighbour(s) took %.3f seconds", search_k, time.perf_counter() - search_start)

        results: List[Tuple[Document, float]] = []
        for idx, score in zip(ids[0], scores[0]):
            if idx < 0 or idx >= len(self._metadata):
                continue
            entry = self._metadata[idx]
            metadata = {key: value for key, value in entry.items() if key != "text"}
            if filter and any(metadata.get(key) != value for key, value in filter.items()):
                continue
            results.append((Document(page_content=entry.get("text", ""), metadata=metadata), float(score)))
            if len(results) >= k:
                break
        return results


def load_vector_store(
    store_dir: str,
    embedding_config: Optional[EmbeddingConfig] = None,
    embeddings: Optional[Any] = None,
) -> VectorStoreLoader:
    """Load a vector store into memory and return the ready loader."""
    logger.info("Loading vector store from %s", store_dir)
    loader = VectorStoreLoader(store_dir, embedding_config=embedding_config, embeddings=embeddings)
    loader.load()
    return loader
