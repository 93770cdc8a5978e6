"""Helpers for loading and searching persisted FAISS vector stores."""

from .config import EmbeddingConfig
from .embedding_client import EmbeddingClient
from .loader import VectorStoreLoader, load_vector_store

__all__ = ["EmbeddingClient", "EmbeddingConfig", "VectorStoreLoader", "load_vector_store"]
