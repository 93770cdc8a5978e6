"""Shared fakes for the chain test-suite."""

from __future__ import annotations

import re
import threading
from typing import Callable, List, Optional, Tuple

import pytest

from qa_chain.documents import Document

_FOLLOW_UP = re.compile(r"Follow Up Input: (.*)\n")
_QUESTION = re.compile(r"Question: (.*)\n")


def echo_responder(prompt: str) -> str:
    """Rewrite returns the follow-up verbatim; answers name the question."""
    if prompt.startswith("Given the following conversation"):
        return _FOLLOW_UP.search(prompt).group(1)
    match = _QUESTION.search(prompt)
    if match:
        return f"Answer to: {match.group(1)}"
    return "An answer."


class FakeLLM:
    """Records every prompt; streams replies in three-character tokens."""

    def __init__(
        self,
        responder: Callable[[str], str] = echo_responder,
        fail_when: Optional[Callable[[str], bool]] = None,
    ) -> None:
        self.responder = responder
        self.fail_when = fail_when
        self.calls: List[Tuple[str, bool]] = []
        self._lock = threading.Lock()

    @property
    def prompts(self) -> List[str]:
        return [prompt for prompt, _ in self.calls]

    @property
    def streamed_prompts(self) -> List[str]:
        return [prompt for prompt, streamed in self.calls if streamed]

    def generate(self, prompt, *, streaming=False, on_token=None):
        with self._lock:
            self.calls.append((prompt, streaming))
        if self.fail_when and self.fail_when(prompt):
            raise RuntimeError("model unavailable")
        text = self.responder(prompt)
        if streaming and on_token is not None:
            for start in range(0, len(text), 3):
                on_token(text[start : start + 3])
        return text


class FakeEmbeddings:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.queries: List[str] = []

    def embed_query(self, text):
        if self.fail:
            raise RuntimeError("embedding endpoint down")
        self.queries.append(text)
        return [1.0, 0.0]


class FakeVectorStore:
    """Returns canned ``(document, score)`` pairs, truncated to ``k``."""

    def __init__(self, pairs=None, *, fail: bool = False, honour_k: bool = True, embeddings=None) -> None:
        self.pairs = list(pairs or [])
        self.fail = fail
        self.honour_k = honour_k
        self.embeddings = embeddings or FakeEmbeddings()
        self.calls: List[Tuple[list, int, Optional[dict]]] = []

    @property
    def queries(self) -> List[str]:
        return self.embeddings.queries

    def similarity_search_vector_with_score(self, embedding, k, filter=None):
        self.calls.append((list(embedding), k, filter))
        if self.fail:
            raise RuntimeError("index unavailable")
        return self.pairs[:k] if self.honour_k else list(self.pairs)


def make_pairs(*items):
    """``make_pairs(("text", 0.9), ...)`` -> document/score pairs."""
    return [
        (Document(page_content=text, metadata={"source": f"doc{index}.md"}), score)
        for index, (text, score) in enumerate(items)
    ]


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def refund_store() -> FakeVectorStore:
    return FakeVectorStore(
        make_pairs(
            ("Refunds are accepted within 30 days.", 0.91),
            ("Store credit is offered after 30 days.", 0.77),
        )
    )
