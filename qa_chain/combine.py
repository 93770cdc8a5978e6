"""Document combination strategies: stuff, map-reduce and refine.

Each combiner turns ``(question, documents)`` into one answer with the model.
Only the final model call of a combiner receives ``on_token``, so a live
client sees the answer being produced and never an intermediate one.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Sequence

from .config import REFINE_RETRIEVAL_K, CombinationStrategy
from .documents import RetrievedDocument
from .errors import ModelInvocationFailure
from .llm_client import LanguageModel, TokenCallback
from .prompts import (
    MAP_PROMPT,
    REFINE_PROMPT,
    PromptTemplate,
    map_reduce_prompt,
    refine_question_prompt,
    stuff_prompt,
)

logger = logging.getLogger(__name__)

DOCUMENT_SEPARATOR = "\n\n"


def call_model(
    llm: LanguageModel,
    prompt: str,
    *,
    step: str,
    on_token: Optional[TokenCallback] = None,
) -> str:
    """Run one model call, mapping any failure to :class:`ModelInvocationFailure`."""
    logger.debug("Model call for %s (%d chars, streaming=%s)", step, len(prompt), on_token is not None)
    try:
        return llm.generate(prompt, streaming=on_token is not None, on_token=on_token)
    except ModelInvocationFailure:
        raise
    except Exception as exc:
        raise ModelInvocationFailure(f"Model call failed during {step}: {exc}") from exc


class StuffDocumentsCombiner:
    """All documents concatenated into one context, one model call."""

    output_key = "text"

    def __init__(self, prompt: PromptTemplate) -> None:
        self.prompt = prompt

    def combine(
        self,
        llm: LanguageModel,
        question: str,
        documents: Sequence[RetrievedDocument],
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        context = DOCUMENT_SEPARATOR.join(document.page_content for document in documents)
        prompt = self.prompt.format(context=context, question=question)
        return call_model(llm, prompt, step="stuff", on_token=on_token)


class MapReduceDocumentsCombiner:
    """Per-document extraction calls in parallel, then one reduce call."""

    output_key = "text"

    def __init__(
        self,
        map_prompt: PromptTemplate,
        combine_prompt: PromptTemplate,
        *,
        max_workers: Optional[int] = None,
    ) -> None:
        self.map_prompt = map_prompt
        self.combine_prompt = combine_prompt
        self.max_workers = max_workers

    def combine(
        self,
        llm: LanguageModel,
        question: str,
        documents: Sequence[RetrievedDocument],
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        summaries = self._map(llm, question, documents)
        prompt = self.combine_prompt.format(summaries=DOCUMENT_SEPARATOR.join(summaries), question=question)
        return call_model(llm, prompt, step="map_reduce reduce", on_token=on_token)

    def _map(self, llm: LanguageModel, question: str, documents: Sequence[RetrievedDocument]) -> List[str]:
        if not documents:
            return []

        def summarise(document: RetrievedDocument) -> str:
            prompt = self.map_prompt.format(context=document.page_content, question=question)
            return call_model(llm, prompt, step="map_reduce map")

        workers = min(len(documents), self.max_workers or len(documents))
        logger.debug("Mapping %d document(s) with %d worker(s)", len(documents), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="map-reduce") as pool:
            # map preserves document order and re-raises the first failure
            return list(pool.map(summarise, documents))


class RefineDocumentsCombiner:
    """One running answer improved document by document."""

    output_key = "output_text"

    def __init__(
        self,
        question_prompt: PromptTemplate,
        refine_prompt: PromptTemplate,
        *,
        max_documents: int = REFINE_RETRIEVAL_K,
    ) -> None:
        self.question_prompt = question_prompt
        self.refine_prompt = refine_prompt
        self.max_documents = max_documents

    def combine(
        self,
        llm: LanguageModel,
        question: str,
        documents: Sequence[RetrievedDocument],
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        documents = list(documents)[: self.max_documents]
        if not documents:
            prompt = self.question_prompt.format(context="", question=question)
            return call_model(llm, prompt, step="refine initial", on_token=on_token)

        last = len(documents) - 1
        answer = ""
        for index, document in enumerate(documents):
            stream = on_token if index == last else None
            if index == 0:
                prompt = self.question_prompt.format(context=document.page_content, question=question)
                answer = call_model(llm, prompt, step="refine initial", on_token=stream)
            else:
                prompt = self.refine_prompt.format(
                    context=document.page_content,
                    question=question,
                    existing_answer=answer,
                )
                answer = call_model(llm, prompt, step=f"refine step {index}", on_token=stream)
        return answer


def _build_stuff(system_prompt: Optional[str], max_workers: Optional[int]) -> StuffDocumentsCombiner:
    return StuffDocumentsCombiner(stuff_prompt(system_prompt))


def _build_map_reduce(system_prompt: Optional[str], max_workers: Optional[int]) -> MapReduceDocumentsCombiner:
    return MapReduceDocumentsCombiner(MAP_PROMPT, map_reduce_prompt(system_prompt), max_workers=max_workers)


def _build_refine(system_prompt: Optional[str], max_workers: Optional[int]) -> RefineDocumentsCombiner:
    return RefineDocumentsCombiner(refine_question_prompt(system_prompt), REFINE_PROMPT)


_COMBINER_FACTORIES: Dict[CombinationStrategy, Callable] = {
    CombinationStrategy.STUFF: _build_stuff,
    CombinationStrategy.MAP_REDUCE: _build_map_reduce,
    CombinationStrategy.REFINE: _build_refine,
}


def build_combiner(
    strategy: CombinationStrategy,
    system_prompt: Optional[str] = None,
    *,
    max_workers: Optional[int] = None,
):
    """Resolve a strategy into a combiner instance once, at assembly time."""
    return _COMBINER_FACTORIES[strategy](system_prompt, max_workers)
