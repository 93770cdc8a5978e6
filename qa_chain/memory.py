"""Conversation memory and its key binding for the retrieval chain."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .config import CombinationStrategy

logger = logging.getLogger(__name__)

HUMAN = "human"
ASSISTANT = "assistant"

MEMORY_KEY = "chat_history"
INPUT_KEY = "question"


@dataclass(frozen=True)
class ConversationTurn:
    role: str
    text: str

    def __post_init__(self) -> None:
        if self.role not in (HUMAN, ASSISTANT):
            raise ValueError(f"role must be '{HUMAN}' or '{ASSISTANT}', got '{self.role}'")


class ConversationBufferMemory:
    """In-process buffer of conversation turns.

    The lock is held by the chain for the whole of an invocation, so reads at
    the start and the write at the end of one call never interleave with
    another call sharing this memory.
    """

    def __init__(
        self,
        *,
        memory_key: str = MEMORY_KEY,
        input_key: str = INPUT_KEY,
        output_key: str = "text",
        return_messages: bool = True,
        max_messages: Optional[int] = None,
        turns: Optional[Iterable[ConversationTurn]] = None,
    ) -> None:
        self.memory_key = memory_key
        self.input_key = input_key
        self.output_key = output_key
        self.return_messages = return_messages
        self.max_messages = max_messages
        self.lock = threading.RLock()
        self._turns: List[ConversationTurn] = list(turns or [])

    def bind_keys(
        self,
        *,
        memory_key: str,
        input_key: str,
        output_key: str,
        return_messages: bool = True,
    ) -> None:
        """Reconfigure key names in place."""
        with self.lock:
            self.memory_key = memory_key
            self.input_key = input_key
            self.output_key = output_key
            self.return_messages = return_messages

    def get_history(self) -> List[ConversationTurn]:
        with self.lock:
            return list(self._turns)

    def load_memory_variables(self) -> Dict[str, Any]:
        turns = self.get_history()
        if self.return_messages:
            return {self.memory_key: turns}
        return {self.memory_key: format_chat_history(turns)}

    def append_turn(self, question: str, answer: str) -> None:
        with self.lock:
            self._turns.append(ConversationTurn(HUMAN, question))
            self._turns.append(ConversationTurn(ASSISTANT, answer))
            if self.max_messages and len(self._turns) > self.max_messages:
                # whole exchanges only, so history never opens on an assistant turn
                keep = self.max_messages - self.max_messages % 2
                self._turns = self._turns[len(self._turns) - keep :]

    def save_context(self, inputs: Mapping[str, Any], outputs: Mapping[str, Any]) -> None:
        """Record one exchange using the bound input/output keys."""
        try:
            question = inputs[self.input_key]
            answer = outputs[self.output_key]
        except KeyError as exc:
            raise KeyError(f"Memory expected key {exc} (input_key={self.input_key}, output_key={self.output_key})") from exc
        self.append_turn(str(question), str(answer))

    def replace_history(self, turns: Iterable[ConversationTurn]) -> None:
        with self.lock:
            self._turns = list(turns)

    def clear(self) -> None:
        self.replace_history([])

    def __len__(self) -> int:
        with self.lock:
            return len(self._turns)


def bind_memory(
    memory: Optional[ConversationBufferMemory],
    strategy: CombinationStrategy,
    *,
    max_messages: Optional[int] = None,
) -> ConversationBufferMemory:
    """Return ``memory`` rebound to the chain's keys, or a fresh empty buffer.

    An externally supplied memory is reconfigured in place; callers must not
    rely on its previous key names afterwards.
    """
    output_key = strategy.output_key
    if memory is None:
        logger.debug("No memory supplied; creating buffer memory (output_key=%s)", output_key)
        return ConversationBufferMemory(output_key=output_key, max_messages=max_messages)

    memory.bind_keys(memory_key=MEMORY_KEY, input_key=INPUT_KEY, output_key=output_key, return_messages=True)
    return memory


def coerce_history(
    history: Sequence[Union[ConversationTurn, Mapping[str, Any], Sequence[str]]],
) -> List[ConversationTurn]:
    """Normalise caller supplied history into turns.

    Accepts ``ConversationTurn`` objects, ``{"role", "text"|"content"|"message"}``
    mappings (``user``/``apiMessage`` style roles included), and
    ``(question, answer)`` pairs.
    """
    turns: List[ConversationTurn] = []
    for item in history:
        if isinstance(item, ConversationTurn):
            turns.append(item)
        elif isinstance(item, Mapping):
            role = _normalise_role(str(item.get("role") or item.get("type") or HUMAN))
            text = item.get("text", item.get("content", item.get("message", "")))
            turns.append(ConversationTurn(role, str(text or "")))
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            turns.append(ConversationTurn(HUMAN, str(item[0])))
            turns.append(ConversationTurn(ASSISTANT, str(item[1])))
        else:
            raise ValueError(f"Unsupported history entry: {item!r}")
    return turns


def _normalise_role(role: str) -> str:
    role = role.lower()
    if role in ("assistant", "ai", "bot", "apimessage"):
        return ASSISTANT
    if role in ("human", "user", "usermessage"):
        return HUMAN
    raise ValueError(f"Unknown history role '{role}'")


def format_chat_history(turns: Sequence[ConversationTurn]) -> str:
    lines = []
    for turn in turns:
        prefix = "Human" if turn.role == HUMAN else "Assistant"
        lines.append(f"{prefix}: {turn.text}")
    return "\n".join(lines)
