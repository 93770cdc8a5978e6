"""Conversational retrieval question answering over a vector store.

A follow-up question is rewritten into a standalone one using the chat
history, documents are retrieved with their similarity scores, and an answer
is produced with one of three combination strategies (stuff, map_reduce,
refine). The primary entry points are ``qa_chain.chain.assemble_chain`` with
``qa_chain.streaming.StreamingExecutionController`` for embedding the chain
in Python code, and ``qa_chain.api.create_app`` for the HTTP service.
"""

from .chain import ConversationalRetrievalChain, InvocationResult, assemble_chain
from .config import ChainOptions, ChatConfig, ChatLLMConfig, CombinationStrategy, NotifierConfig
from .documents import Document, RetrievedDocument
from .errors import ChainError, ConfigurationError, ModelInvocationFailure, NotificationFailure, RetrievalFailure
from .events import InvocationState, ListSink, QueueSink, StreamEvent, StreamEventType
from .memory import ConversationBufferMemory, ConversationTurn
from .retriever import ScoredRetriever
from .service import ChatService
from .streaming import StreamingExecutionController

__all__ = [
    "ChainError",
    "ChainOptions",
    "ChatConfig",
    "ChatLLMConfig",
    "ChatService",
    "CombinationStrategy",
    "ConfigurationError",
    "ConversationBufferMemory",
    "ConversationTurn",
    "ConversationalRetrievalChain",
    "Document",
    "InvocationResult",
    "InvocationState",
    "ListSink",
    "ModelInvocationFailure",
    "NotificationFailure",
    "NotifierConfig",
    "QueueSink",
    "RetrievalFailure",
    "RetrievedDocument",
    "ScoredRetriever",
    "StreamEvent",
    "StreamEventType",
    "StreamingExecutionController",
    "assemble_chain",
]
