"""Retriever adapter that attaches similarity scores to every document."""

from __future__ import annotations

import logging
import time
from typing import Any, List, Mapping, Optional, Protocol, Sequence, Tuple

from .config import DEFAULT_RETRIEVAL_K
from .documents import Document, RetrievedDocument
from .errors import ConfigurationError, RetrievalFailure

logger = logging.getLogger(__name__)


class Embeddings(Protocol):
    def embed_query(self, text: str) -> List[float]:
        ...


class ScoredVectorStore(Protocol):
    def similarity_search_vector_with_score(
        self, embedding: Sequence[float], k: int, filter: Optional[Mapping[str, Any]] = None
    ) -> List[Tuple[Document, float]]:
        ...


class ScoredRetriever:
    """Wrap a vector store so retrieved documents carry their score.

    The store is composed, not modified: documents are copied into
    :class:`RetrievedDocument` instances and the order the store returns is kept.
    """

    def __init__(
        self,
        vector_store: ScoredVectorStore,
        embeddings: Optional[Embeddings] = None,
        *,
        k: int = DEFAULT_RETRIEVAL_K,
        filter: Optional[Mapping[str, Any]] = None,
    ) -> None:
        if vector_store is None:
            raise ConfigurationError("A vector store retriever is required")
        embeddings = embeddings or getattr(vector_store, "embeddings", None)
        if embeddings is None:
            raise ConfigurationError("The vector store has no embeddings capability to encode queries")
        self.vector_store = vector_store
        self.embeddings = embeddings
        self.k = k
        self.filter = dict(filter) if filter else None

    def retrieve(
        self,
        query: str,
        k: Optional[int] = None,
        filter: Optional[Mapping[str, Any]] = None,
    ) -> List[RetrievedDocument]:
        k = k or self.k
        filter = filter if filter is not None else self.filter
        start = time.perf_counter()
        try:
            vector = self.embeddings.embed_query(query)
            pairs = self.vector_store.similarity_search_vector_with_score(vector, k, filter)
        except Exception as exc:
            raise RetrievalFailure(f"Similarity search failed: {exc}") from exc

        documents = [RetrievedDocument.from_scored(document, score) for document, score in pairs]
        logger.info(
            "Retrieved %d document(s) (k=%d) in %.2f seconds",
            len(documents),
            k,
            time.perf_counter() - start,
        )
        return documents
