"""Streaming execution of a chain invocation.

The controller drives one invocation through ``idle -> generating ->
combining -> completed | failed`` and writes :class:`StreamEvent` objects to
a sink. A successful sequence is tokens, then at most one source-documents
event, then exactly one end event. A failed sequence ends with exactly one
error event and has no end event.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterator, Optional, Sequence

from .chain import ConversationalRetrievalChain, InvocationResult
from .errors import ChainError
from .events import InvocationState, QueueSink, StreamEvent, StreamSink

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    InvocationState.IDLE: {InvocationState.GENERATING, InvocationState.FAILED},
    InvocationState.GENERATING: {InvocationState.COMBINING, InvocationState.FAILED},
    InvocationState.COMBINING: {InvocationState.COMPLETED, InvocationState.FAILED},
    InvocationState.COMPLETED: set(),
    InvocationState.FAILED: set(),
}


class _Invocation:
    """State machine position of a single run."""

    def __init__(self) -> None:
        self.state = InvocationState.IDLE

    def transition(self, state: InvocationState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid state transition {self.state.value} -> {state.value}")
        logger.debug("Invocation state %s -> %s", self.state.value, state.value)
        self.state = state


class StreamingExecutionController:
    """Run a chain once per call, publishing tokens and phase events.

    Each call to :meth:`run` owns its state machine, so one controller may
    serve concurrent calls. ``state`` reports the outcome of the most recently
    finished run.
    """

    def __init__(self, chain: ConversationalRetrievalChain) -> None:
        self.chain = chain
        self.state = InvocationState.IDLE

    def run(
        self,
        question: str,
        history: Optional[Sequence[Any]] = None,
        sink: Optional[StreamSink] = None,
    ) -> InvocationResult:
        """Execute the chain and return its result; events go to ``sink`` when given."""
        invocation = _Invocation()

        def emit(event: StreamEvent) -> None:
            if sink is not None:
                sink.send(event)

        def on_token(token: str) -> None:
            emit(StreamEvent.token(token))

        memory = self.chain.memory
        # memory stays locked until the closing event is out, so a turn is only
        # kept by a run whose sequence ends with the end event
        with memory.lock:
            snapshot = memory.get_history()
            try:
                result = self.chain.invoke(
                    question,
                    history,
                    on_token=on_token if sink is not None else None,
                    on_state=invocation.transition,
                )
                if result.source_documents is not None:
                    emit(StreamEvent.source_documents(result.source_documents))
                emit(StreamEvent.terminal())
                invocation.transition(InvocationState.COMPLETED)
            except Exception as exc:
                memory.replace_history(snapshot)
                invocation.transition(InvocationState.FAILED)
                self.state = invocation.state
                if isinstance(exc, ChainError):
                    logger.warning("Chain invocation failed: %s", exc)
                else:
                    logger.exception("Chain invocation failed unexpectedly")
                emit(StreamEvent.error(_describe(exc)))
                raise

        self.state = invocation.state
        return result

    def stream(
        self,
        question: str,
        history: Optional[Sequence[Any]] = None,
        *,
        on_complete: Optional[Callable[[InvocationResult], None]] = None,
    ) -> Iterator[StreamEvent]:
        """Run on a worker thread and yield events as they are produced.

        ``on_complete`` is called on the worker with the result of a successful
        run. Its failures are logged and never reach the event stream.
        """
        sink = QueueSink()

        def worker() -> None:
            try:
                result = self.run(question, history, sink=sink)
            except Exception as exc:
                # run() already closed the stream with an error event
                logger.debug("Streamed invocation ended with %s", exc.__class__.__name__)
                return
            if on_complete is not None:
                try:
                    on_complete(result)
                except Exception:
                    logger.exception("Completion hook failed")

        thread = threading.Thread(target=worker, name="qa-chain-stream", daemon=True)
        thread.start()
        yield from sink.iter_events()
        thread.join()


def _describe(exc: Exception) -> str:
    message = str(exc).strip()
    return message or exc.__class__.__name__
