"""FastAPI entry point for the conversational retrieval QA service."""

from __future__ import annotations

import argparse
import json
import logging
from typing import Any, Dict, Iterator, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, validator
import uvicorn

from load_vectorstore.config import EmbeddingConfig
from .config import ChainOptions, ChatConfig, ChatLLMConfig, NotifierConfig
from .errors import ChainError
from .events import StreamEvent
from .service import ChatService, VectorStoreContextProvider
from .utils import setup_logging

logger = logging.getLogger(__name__)


class HistoryMessage(BaseModel):
    role: str
    text: str


class ChatRequest(BaseModel):
    session_id: str = Field(..., description="Unique chat session identifier.")
    message: str = Field(..., description="User message to answer.")
    vector_store_dir: Optional[str] = Field(
        None, description="Persisted vector store to retrieve from; remembered per session."
    )
    history: Optional[List[HistoryMessage]] = Field(
        None, description="Full prior conversation; replaces the session memory when supplied."
    )
    stream: bool = True
    combination_strategy: Optional[str] = Field(None, description="stuff, map_reduce or refine.")
    system_prompt: Optional[str] = None
    return_source_documents: Optional[bool] = None
    retrieval_k: Optional[int] = Field(None, gt=0, description="Ignored (fixed at 4) for refine.")

    @validator("session_id", "message")
    def _not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("field must not be empty")
        return value

    def chain_options(self) -> Dict[str, Any]:
        return {
            "combination_strategy": self.combination_strategy,
            "system_prompt": self.system_prompt,
            "return_source_documents": self.return_source_documents,
            "retrieval_k": self.retrieval_k,
        }


class HistoryResponse(BaseModel):
    session_id: str
    messages: List[dict] = Field(default_factory=list)
    last_sources: List[dict] = Field(default_factory=list)
    vector_store_dir: Optional[str] = None
    updated_at: float


def _encode(events: Iterator[StreamEvent]) -> Iterator[str]:
    for event in events:
        yield json.dumps(event.to_dict()) + "\n"


def create_app(
    chat_config: Optional[ChatConfig] = None,
    *,
    log_dir: Optional[str] = None,
    service: Optional[ChatService] = None,
) -> FastAPI:
    if log_dir:
        setup_logging(log_dir, logging.INFO)

    app = FastAPI(title="Conversational Retrieval QA", version="0.1.0")
    app.state.service = service or ChatService(chat_config)

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/chat")
    async def chat(request: ChatRequest):
        logger.info("Chat request for session %s (stream=%s)", request.session_id, request.stream)
        history = [item.dict() for item in request.history] if request.history is not None else None
        try:
            if request.stream:
                events = await run_in_threadpool(
                    app.state.service.stream_chat,
                    request.session_id,
                    request.message,
                    vector_store_dir=request.vector_store_dir,
                    history=history,
                    options=request.chain_options(),
                )
                return StreamingResponse(_encode(events), media_type="application/x-ndjson")

            result = await run_in_threadpool(
                app.state.service.ask,
                request.session_id,
                request.message,
                vector_store_dir=request.vector_store_dir,
                history=history,
                options=request.chain_options(),
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except ChainError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        except Exception as exc:
            logger.exception("Chat request failed (session_id=%s)", request.session_id)
            raise HTTPException(status_code=500, detail="Chat request failed") from exc
        return result.to_dict()

    @app.get("/history/{session_id}", response_model=HistoryResponse)
    async def history(session_id: str):
        try:
            payload = app.state.service.get_history(session_id)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return payload

    return app


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the conversational retrieval QA service.")
    parser.add_argument("--host", default="0.0.0.0", help="Host interface to bind.")
    parser.add_argument("--port", type=int, default=8004, help="Port to bind.")
    parser.add_argument("--log_dir", help="Directory for application logs.")
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG level.")
    parser.add_argument("--llm_endpoint", default="http://localhost:8000/v1/chat/completions", help="LLM endpoint.")
    parser.add_argument("--llm_model", default="qwen2.5-instruct", help="Model name for completions.")
    parser.add_argument("--request_timeout", type=int, default=60, help="Timeout for LLM calls (seconds).")
    parser.add_argument("--embedding_endpoint", default="http://localhost:8001/v1/embeddings", help="Embedding endpoint.")
    parser.add_argument("--embedding_model", default="text-embedding", help="Model name for query embeddings.")
    parser.add_argument(
        "--combination_strategy",
        default="stuff",
        choices=["stuff", "map_reduce", "refine"],
        help="Default document combination strategy.",
    )
    parser.add_argument("--system_prompt", help="Default system prompt prepended to QA prompts.")
    parser.add_argument("--return_source_documents", action="store_true", help="Attach cited sources to answers.")
    parser.add_argument("--retrieval_k", type=int, default=4, help="Documents to retrieve (refine always uses 4).")
    parser.add_argument("--max_history_messages", type=int, help="Max messages kept per session memory.")
    parser.add_argument("--map_max_workers", type=int, help="Max parallel map calls for map_reduce.")
    parser.add_argument("--transcript_endpoint", help="Endpoint receiving transcript copies of streamed chats.")
    parser.add_argument("--transcript_user_id", help="User id sent with transcript copies.")
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> None:
    args = parse_args(argv)
    chat_cfg = ChatConfig(
        llm=ChatLLMConfig(
            endpoint=args.llm_endpoint,
            model=args.llm_model,
            request_timeout=args.request_timeout,
        ),
        chain=ChainOptions(
            combination_strategy=args.combination_strategy,
            system_prompt=args.system_prompt,
            return_source_documents=args.return_source_documents,
            retrieval_k=args.retrieval_k,
        ),
        notifier=NotifierConfig(endpoint=args.transcript_endpoint, user_id=args.transcript_user_id),
        max_history_messages=args.max_history_messages,
        map_max_workers=args.map_max_workers,
    )
    if args.log_dir:
        setup_logging(args.log_dir, logging.DEBUG if args.debug else logging.INFO)
    else:
        logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)

    provider = VectorStoreContextProvider(
        EmbeddingConfig(endpoint=args.embedding_endpoint, model=args.embedding_model)
    )
    service = ChatService(chat_cfg, vector_store_provider=provider)
    app = create_app(chat_cfg, service=service)
    logger.info("Starting QA service on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
