"""Configuration objects for the conversational QA chain."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from .errors import ConfigurationError

DEFAULT_RETRIEVAL_K = 4
# Refine issues one model call per document, so its retrieval depth is fixed.
REFINE_RETRIEVAL_K = 4


class CombinationStrategy(str, Enum):
    """How retrieved documents are merged with the question."""

    STUFF = "stuff"
    MAP_REDUCE = "map_reduce"
    REFINE = "refine"

    @classmethod
    def parse(cls, value: Union["CombinationStrategy", str, None]) -> "CombinationStrategy":
        if value is None:
            return cls.STUFF
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(member.value for member in cls)
            raise ConfigurationError(f"Unknown combination strategy '{value}'. Expected one of: {valid}") from None

    @property
    def output_key(self) -> str:
        """Name of the terminal field produced by the combiner."""
        return "output_text" if self is CombinationStrategy.REFINE else "text"


@dataclass
class ChainOptions:
    """Per-chain behaviour switches."""

    combination_strategy: CombinationStrategy = CombinationStrategy.STUFF
    system_prompt: Optional[str] = None
    return_source_documents: bool = False
    retrieval_k: int = DEFAULT_RETRIEVAL_K

    def __post_init__(self) -> None:
        self.combination_strategy = CombinationStrategy.parse(self.combination_strategy)
        if self.retrieval_k is None:
            self.retrieval_k = DEFAULT_RETRIEVAL_K
        if int(self.retrieval_k) <= 0:
            raise ConfigurationError("retrieval_k must be a positive integer")
        self.retrieval_k = int(self.retrieval_k)
        if self.system_prompt is not None and not self.system_prompt.strip():
            self.system_prompt = None

    @property
    def effective_k(self) -> int:
        if self.combination_strategy is CombinationStrategy.REFINE:
            return REFINE_RETRIEVAL_K
        return self.retrieval_k

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]], base: Optional["ChainOptions"] = None) -> "ChainOptions":
        """Build options from snake_case or camelCase keys, falling back to ``base``."""
        base = base or cls()
        options = options or {}

        def pick(snake: str, camel: str, default: Any) -> Any:
            for key in (snake, camel):
                if key in options and options[key] is not None:
                    return options[key]
            return default

        return cls(
            combination_strategy=pick("combination_strategy", "combinationStrategy", base.combination_strategy),
            system_prompt=pick("system_prompt", "systemPrompt", base.system_prompt),
            return_source_documents=bool(
                pick("return_source_documents", "returnSourceDocuments", base.return_source_documents)
            ),
            retrieval_k=pick("retrieval_k", "retrievalK", base.retrieval_k),
        )


@dataclass
class ChatLLMConfig:
    """LLM connection details."""

    endpoint: str = "http://localhost:8000/v1/chat/completions"
    model: str = "qwen2.5-instruct"
    request_timeout: int = 60
    model_kwargs: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NotifierConfig:
    """Where transcript copies are posted. ``endpoint=None`` disables posting."""

    endpoint: Optional[str] = None
    user_id: Optional[str] = None
    request_timeout: int = 10


@dataclass
class ChatConfig:
    """Runtime controls for the chat service."""

    llm: ChatLLMConfig = field(default_factory=ChatLLMConfig)
    chain: ChainOptions = field(default_factory=ChainOptions)
    notifier: NotifierConfig = field(default_factory=NotifierConfig)
    max_history_messages: Optional[int] = None
    map_max_workers: Optional[int] = None
