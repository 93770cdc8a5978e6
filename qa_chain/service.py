"""Session-aware orchestration of the retrieval chain for API and Python callers."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from .chain import ConversationalRetrievalChain, InvocationResult
from .config import ChainOptions, ChatConfig
from .events import StreamEvent
from .llm_client import ChatLLMClient, LanguageModel
from .memory import ConversationBufferMemory
from .notifier import TranscriptNotifier
from .streaming import StreamingExecutionController

logger = logging.getLogger(__name__)


@dataclass
class ChatSessionState:
    session_id: str
    memory: ConversationBufferMemory
    vector_store_dir: Optional[str] = None
    last_sources: List[Dict[str, Any]] = field(default_factory=list)
    updated_at: float = field(default_factory=time.time)


class VectorStoreContextProvider:
    """Lazily loads one vector store per directory and keeps it cached."""

    def __init__(self, embedding_config: Optional[Any] = None) -> None:
        self.embedding_config = embedding_config
        self._stores: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def get_store(self, store_dir: str) -> Any:
        if not store_dir:
            raise ValueError("vector_store_dir must be provided")
        with self._lock:
            store = self._stores.get(store_dir)
            if store is None:
                # imported here: load_vectorstore depends on this package's documents module
                from load_vectorstore.loader import load_vector_store

                store = load_vector_store(store_dir, embedding_config=self.embedding_config)
                self._stores[store_dir] = store
            return store


class ChatService:
    """Core chat engine used by both the API and direct Python consumers."""

    def __init__(
        self,
        config: Optional[ChatConfig] = None,
        *,
        llm: Optional[LanguageModel] = None,
        vector_store_provider: Optional[VectorStoreContextProvider] = None,
        notifier: Optional[TranscriptNotifier] = None,
    ) -> None:
        self.config = config or ChatConfig()
        self.llm = llm or ChatLLMClient(self.config.llm)
        self.vector_store_provider = vector_store_provider or VectorStoreContextProvider()
        self.notifier = notifier or TranscriptNotifier(self.config.notifier)
        self.sessions: Dict[str, ChatSessionState] = {}
        self._sessions_lock = threading.Lock()

    def ask(
        self,
        session_id: str,
        message: str,
        *,
        vector_store_dir: Optional[str] = None,
        history: Optional[Sequence[Any]] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> InvocationResult:
        """Answer without streaming."""
        session, chain = self._prepare(session_id, message, vector_store_dir, options)
        result = StreamingExecutionController(chain).run(message, history)
        self._record(session, result)
        return result

    def stream_chat(
        self,
        session_id: str,
        message: str,
        *,
        vector_store_dir: Optional[str] = None,
        history: Optional[Sequence[Any]] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> Iterator[StreamEvent]:
        """Stream events for one answer while copying the transcript out.

        Validation and chain assembly happen before this returns, so bad input
        raises here rather than inside the stream.
        """
        session, chain = self._prepare(session_id, message, vector_store_dir, options)
        self.notifier.notify_async(session_id, message, is_bot=False)

        def on_complete(result: InvocationResult) -> None:
            self._record(session, result)
            self.notifier.notify_async(session_id, result.answer, is_bot=True)

        controller = StreamingExecutionController(chain)
        return controller.stream(message, history, on_complete=on_complete)

    def get_history(self, session_id: str) -> Dict[str, Any]:
        """Return the recorded conversation and metadata."""
        session = self.sessions.get(session_id)
        if not session:
            raise ValueError(f"No chat session found for id '{session_id}'")
        return {
            "session_id": session.session_id,
            "messages": [{"role": turn.role, "text": turn.text} for turn in session.memory.get_history()],
            "last_sources": session.last_sources,
            "vector_store_dir": session.vector_store_dir,
            "updated_at": session.updated_at,
        }

    def list_sessions(self) -> List[Dict[str, Any]]:
        """Return lightweight session metadata, most recent first."""
        payload = []
        for session in list(self.sessions.values()):
            turns = session.memory.get_history()
            payload.append(
                {
                    "session_id": session.session_id,
                    "updated_at": session.updated_at,
                    "last_message": turns[-1].text if turns else "",
                    "vector_store_dir": session.vector_store_dir,
                    "message_count": len(turns),
                }
            )
        return sorted(payload, key=lambda item: item.get("updated_at", 0), reverse=True)

    def _prepare(
        self,
        session_id: str,
        message: str,
        vector_store_dir: Optional[str],
        options: Optional[Mapping[str, Any]],
    ) -> "tuple[ChatSessionState, ConversationalRetrievalChain]":
        if not session_id:
            raise ValueError("session_id is required")
        if not message or not message.strip():
            raise ValueError("message is required")

        session = self._get_or_create_session(session_id)
        session.vector_store_dir = vector_store_dir or session.vector_store_dir
        if not session.vector_store_dir:
            raise ValueError("vector_store_dir is required for a new session")

        chain_options = ChainOptions.from_mapping(options, base=self.config.chain)
        store = self.vector_store_provider.get_store(session.vector_store_dir)
        chain = ConversationalRetrievalChain.from_options(
            self.llm,
            store,
            chain_options,
            memory=session.memory,
            max_workers=self.config.map_max_workers,
        )
        logger.info(
            "Prepared chain for session %s (strategy=%s, store=%s)",
            session_id,
            chain_options.combination_strategy.value,
            session.vector_store_dir,
        )
        return session, chain

    def _get_or_create_session(self, session_id: str) -> ChatSessionState:
        with self._sessions_lock:
            session = self.sessions.get(session_id)
            if session is None:
                memory = ConversationBufferMemory(max_messages=self.config.max_history_messages)
                session = ChatSessionState(session_id=session_id, memory=memory)
                self.sessions[session_id] = session
            return session

    @staticmethod
    def _record(session: ChatSessionState, result: InvocationResult) -> None:
        session.last_sources = [document.to_dict() for document in result.source_documents or []]
        session.updated_at = time.time()
