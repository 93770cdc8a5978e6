"""Chat-completions client exposing the ``generate`` capability used by the chain."""

from __future__ import annotations

import json
import logging
from typing import Callable, Dict, Iterator, List, Optional, Protocol

import requests

from .config import ChatLLMConfig

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]


class LanguageModel(Protocol):
    def generate(self, prompt: str, *, streaming: bool = False, on_token: Optional[TokenCallback] = None) -> str:
        ...


class ChatLLMClient:
    """Thin wrapper around an OpenAI-compatible chat-completions endpoint."""

    def __init__(self, config: Optional[ChatLLMConfig] = None, *, session: Optional[requests.Session] = None) -> None:
        self.config = config or ChatLLMConfig()
        self.session = session or requests.Session()

    def generate(self, prompt: str, *, streaming: bool = False, on_token: Optional[TokenCallback] = None) -> str:
        """Send ``prompt`` as a single user message and return the reply text.

        With ``streaming`` every delta is passed to ``on_token`` as it arrives;
        the return value is still the full reply.
        """
        messages = [{"role": "user", "content": prompt}]
        if not streaming:
            return self.complete(messages)

        parts: List[str] = []
        for token in self.stream_completion(messages):
            parts.append(token)
            if on_token is not None:
                on_token(token)
        return "".join(parts)

    def stream_completion(self, messages: List[Dict[str, str]]) -> Iterator[str]:
        """Yield tokens from the model as they arrive."""
        logger.info("Streaming chat completion to %s using model %s", self.config.endpoint, self.config.model)
        response = self.session.post(
            self.config.endpoint,
            json=self._payload(messages, stream=True),
            stream=True,
            timeout=self.config.request_timeout,
        )
        response.raise_for_status()

        for raw_line in response.iter_lines():
            if not raw_line:
                continue
            line = raw_line.decode("utf-8").strip() if isinstance(raw_line, bytes) else raw_line.strip()
            if line.startswith("data:"):
                line = line[5:].strip()
            if not line or line == "[DONE]":
                continue

            try:
                chunk = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping non-JSON stream line: %s", line)
                continue

            token = self._extract_delta(chunk)
            if token:
                yield token

    def complete(self, messages: List[Dict[str, str]]) -> str:
        """Return a full completion (no streaming)."""
        logger.debug("Requesting non-streaming completion for %d message(s)", len(messages))
        response = self.session.post(
            self.config.endpoint,
            json=self._payload(messages, stream=False),
            timeout=self.config.request_timeout,
        )
        response.raise_for_status()
        data = response.json()
        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}
        return message.get("content", "") or ""

    def _payload(self, messages: List[Dict[str, str]], *, stream: bool) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "model": self.config.model,
            "messages": messages,
            "stream": stream,
        }
        if self.config.model_kwargs:
            payload.update(self.config.model_kwargs)
        return payload

    @staticmethod
    def _extract_delta(chunk: Dict[str, object]) -> str:
        choices = chunk.get("choices") or []
        if not choices or not isinstance(choices, list):
            return ""
        delta = choices[0].get("delta") or {}
        return str(delta.get("content") or "")
