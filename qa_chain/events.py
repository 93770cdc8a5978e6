"""Stream events, invocation states and the sinks events are written to."""

from __future__ import annotations

import queue
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence

from .documents import RetrievedDocument


class StreamEventType(str, Enum):
    TOKEN = "token"
    SOURCE_DOCUMENTS = "sourceDocuments"
    ERROR = "error"
    END = "end"


class InvocationState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMBINING = "combining"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class StreamEvent:
    type: StreamEventType
    data: Any = None

    @classmethod
    def token(cls, text: str) -> "StreamEvent":
        return cls(StreamEventType.TOKEN, text)

    @classmethod
    def source_documents(cls, documents: Sequence[RetrievedDocument]) -> "StreamEvent":
        return cls(StreamEventType.SOURCE_DOCUMENTS, tuple(documents))

    @classmethod
    def error(cls, message: str) -> "StreamEvent":
        return cls(StreamEventType.ERROR, message)

    @classmethod
    def terminal(cls) -> "StreamEvent":
        return cls(StreamEventType.END)

    @property
    def is_terminal(self) -> bool:
        """True for the events that close a sequence (end or error)."""
        return self.type in (StreamEventType.END, StreamEventType.ERROR)

    def to_dict(self) -> Dict[str, Any]:
        data = self.data
        if self.type is StreamEventType.SOURCE_DOCUMENTS:
            data = [document.to_dict() for document in self.data]
        return {"event": self.type.value, "data": data}


class StreamSink(Protocol):
    def send(self, event: StreamEvent) -> None:
        ...


class ListSink:
    """Collects events in memory."""

    def __init__(self) -> None:
        self.events: List[StreamEvent] = []

    def send(self, event: StreamEvent) -> None:
        self.events.append(event)

    @property
    def text(self) -> str:
        return "".join(event.data for event in self.events if event.type is StreamEventType.TOKEN)


class QueueSink:
    """Thread-safe sink read by a consumer on another thread."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: "queue.Queue[StreamEvent]" = queue.Queue(maxsize=maxsize)

    def send(self, event: StreamEvent) -> None:
        self._queue.put(event)

    def iter_events(self, timeout: Optional[float] = None) -> Iterator[StreamEvent]:
        """Yield events until the terminal one has been yielded."""
        while True:
            event = self._queue.get(timeout=timeout)
            yield event
            if event.is_terminal:
                return
