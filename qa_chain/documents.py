"""Document containers passed between the vector store and the combiners."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class Document:
    """A chunk of text as stored in the vector index."""

    page_content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RetrievedDocument:
    """A document annotated with its similarity score for the current query.

    ``metadata["score"]`` always mirrors ``score`` so that wire consumers which
    only look at metadata still see the relevance value.
    """

    page_content: str
    metadata: Dict[str, Any]
    score: float

    @classmethod
    def from_scored(cls, document: Document, score: float) -> "RetrievedDocument":
        metadata = dict(document.metadata or {})
        metadata["score"] = float(score)
        return cls(page_content=document.page_content, metadata=metadata, score=float(score))

    def to_dict(self) -> Dict[str, Any]:
        return {"pageContent": self.page_content, "metadata": dict(self.metadata)}
