"""Assembly and execution of the conversational retrieval QA chain.

The chain runs three steps per call: rewrite the follow-up into a standalone
question, retrieve scored documents for it, and combine the documents into an
answer with the strategy chosen at assembly time. Memory is read at the start
and written once at the end of a successful call.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .combine import build_combiner, call_model
from .config import DEFAULT_RETRIEVAL_K, ChainOptions, CombinationStrategy
from .documents import RetrievedDocument
from .errors import ConfigurationError
from .events import InvocationState
from .llm_client import LanguageModel, TokenCallback
from .memory import ConversationBufferMemory, ConversationTurn, bind_memory, coerce_history, format_chat_history
from .prompts import CONDENSE_QUESTION_PROMPT, PromptTemplate
from .retriever import ScoredRetriever

logger = logging.getLogger(__name__)

StateCallback = Callable[[InvocationState], None]


@dataclass(frozen=True)
class ChainConfig:
    llm: LanguageModel
    retriever: ScoredRetriever
    memory: ConversationBufferMemory
    strategy: CombinationStrategy
    system_prompt: Optional[str] = None
    return_source_documents: bool = False
    retrieval_k: int = DEFAULT_RETRIEVAL_K


@dataclass
class InvocationResult:
    answer: str
    source_documents: Optional[List[RetrievedDocument]] = None
    standalone_question: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"text": self.answer}
        if self.source_documents is not None:
            payload["sourceDocuments"] = [document.to_dict() for document in self.source_documents]
        return payload


class ConversationalRetrievalChain:
    """Reusable pipeline; the only state it carries across calls is its memory."""

    def __init__(
        self,
        config: ChainConfig,
        combiner: Any,
        *,
        question_generator_prompt: PromptTemplate = CONDENSE_QUESTION_PROMPT,
    ) -> None:
        self.config = config
        self.combiner = combiner
        self.question_generator_prompt = question_generator_prompt

    @property
    def memory(self) -> ConversationBufferMemory:
        return self.config.memory

    @property
    def strategy(self) -> CombinationStrategy:
        return self.config.strategy

    @classmethod
    def from_options(
        cls,
        llm: LanguageModel,
        retriever: Any,
        options: Optional[ChainOptions] = None,
        *,
        memory: Optional[ConversationBufferMemory] = None,
        max_workers: Optional[int] = None,
        max_history_messages: Optional[int] = None,
    ) -> "ConversationalRetrievalChain":
        options = options or ChainOptions()
        return assemble_chain(
            llm,
            retriever,
            memory=memory,
            strategy=options.combination_strategy,
            system_prompt=options.system_prompt,
            return_source_documents=options.return_source_documents,
            retrieval_k=options.retrieval_k,
            max_workers=max_workers,
            max_history_messages=max_history_messages,
        )

    def invoke(
        self,
        question: str,
        history: Optional[Sequence[Union[ConversationTurn, Dict[str, Any], Sequence[str]]]] = None,
        *,
        on_token: Optional[TokenCallback] = None,
        on_state: Optional[StateCallback] = None,
    ) -> InvocationResult:
        """Answer ``question``; ``history`` replaces the memory content when given."""
        if not question or not question.strip():
            raise ConfigurationError("question is required")

        def transition(state: InvocationState) -> None:
            if on_state is not None:
                on_state(state)

        memory = self.memory
        start = time.perf_counter()
        with memory.lock:
            snapshot = memory.get_history()
            try:
                if history is not None:
                    memory.replace_history(coerce_history(history))
                chat_history = memory.load_memory_variables()[memory.memory_key]

                transition(InvocationState.GENERATING)
                standalone = self.generate_standalone_question(question, chat_history)
                documents = self.config.retriever.retrieve(standalone, k=self.config.retrieval_k)

                transition(InvocationState.COMBINING)
                logger.info(
                    "Combining %d document(s) with strategy %s", len(documents), self.strategy.value
                )
                answer = self.combiner.combine(self.config.llm, standalone, documents, on_token)

                memory.save_context({memory.input_key: question}, {memory.output_key: answer})
            except Exception:
                memory.replace_history(snapshot)
                raise

        logger.info("Chain invocation completed in %.2f seconds", time.perf_counter() - start)
        return InvocationResult(
            answer=answer,
            source_documents=list(documents) if self.config.return_source_documents else None,
            standalone_question=standalone,
        )

    def generate_standalone_question(
        self, question: str, chat_history: Union[str, Sequence[ConversationTurn]]
    ) -> str:
        """Rephrase ``question`` to stand alone; unchanged when there is no history.

        ``chat_history`` is the memory variable, either turns or rendered text.
        """
        if not chat_history:
            logger.debug("Empty chat history; using question verbatim")
            return question
        if not isinstance(chat_history, str):
            chat_history = format_chat_history(chat_history)
        prompt = self.question_generator_prompt.format(chat_history=chat_history, question=question)
        standalone = call_model(self.config.llm, prompt, step="question rewrite").strip()
        logger.info("Standalone question: %s", standalone)
        return standalone or question


def assemble_chain(
    llm: LanguageModel,
    retriever: Any,
    memory: Optional[ConversationBufferMemory] = None,
    strategy: Union[CombinationStrategy, str, None] = CombinationStrategy.STUFF,
    system_prompt: Optional[str] = None,
    return_source_documents: bool = False,
    *,
    retrieval_k: int = DEFAULT_RETRIEVAL_K,
    max_workers: Optional[int] = None,
    max_history_messages: Optional[int] = None,
) -> ConversationalRetrievalChain:
    """Build a chain. No model or retrieval call happens here.

    ``retriever`` is either a :class:`ScoredRetriever` or a vector store with an
    ``embeddings`` attribute, which is then wrapped. For the refine strategy the
    retrieval depth is fixed regardless of ``retrieval_k``.
    """
    if llm is None:
        raise ConfigurationError("A language model is required")
    if retriever is None:
        raise ConfigurationError("A vector store retriever is required")

    options = ChainOptions(
        combination_strategy=CombinationStrategy.parse(strategy),
        system_prompt=system_prompt,
        return_source_documents=bool(return_source_documents),
        retrieval_k=retrieval_k,
    )
    scored = retriever if isinstance(retriever, ScoredRetriever) else ScoredRetriever(retriever)
    bound_memory = bind_memory(memory, options.combination_strategy, max_messages=max_history_messages)
    combiner = build_combiner(options.combination_strategy, options.system_prompt, max_workers=max_workers)

    config = ChainConfig(
        llm=llm,
        retriever=scored,
        memory=bound_memory,
        strategy=options.combination_strategy,
        system_prompt=options.system_prompt,
        return_source_documents=options.return_source_documents,
        retrieval_k=options.effective_k,
    )
    logger.debug(
        "Assembled chain (strategy=%s, k=%d, sources=%s, system_prompt=%s)",
        config.strategy.value,
        config.retrieval_k,
        config.return_source_documents,
        "yes" if config.system_prompt else "no",
    )
    return ConversationalRetrievalChain(config, combiner)
