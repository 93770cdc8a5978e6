"""Configuration for query embedding."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class EmbeddingConfig:
    """Embedding endpoint connection details."""

    endpoint: str = "http://localhost:8001/v1/embeddings"
    model: str = "text-embedding"
    batch_size: int = 32
    request_timeout: int = 60
    model_kwargs: Dict[str, Any] = field(default_factory=dict)
