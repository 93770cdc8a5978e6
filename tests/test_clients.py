"""Tests for the HTTP clients: chat completions, embeddings and transcript posts."""

import json
import logging

import pytest
import requests

from load_vectorstore.config import EmbeddingConfig
from load_vectorstore.embedding_client import EmbeddingClient
from qa_chain.config import ChatLLMConfig, NotifierConfig
from qa_chain.errors import NotificationFailure
from qa_chain.llm_client import ChatLLMClient
from qa_chain.notifier import TranscriptNotifier


class FakeResponse:
    def __init__(self, payload=None, lines=None, status=200):
        self.payload = payload or {}
        self.lines = lines or []
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload

    def iter_lines(self):
        return iter(self.lines)


class FakeSession:
    def __init__(self, *responses, error=None):
        self.responses = list(responses)
        self.error = error
        self.posts = []

    def post(self, url, json=None, **kwargs):
        self.posts.append({"url": url, "json": json, **kwargs})
        if self.error:
            raise self.error
        return self.responses.pop(0)


def sse(*tokens):
    lines = [b""]
    for token in tokens:
        lines.append(b"data: " + json.dumps({"choices": [{"delta": {"content": token}}]}).encode())
    lines.extend([b"data: not-json", b"data: [DONE]"])
    return lines


class TestChatLLMClient:
    def test_generate_without_streaming(self):
        session = FakeSession(FakeResponse({"choices": [{"message": {"content": "full answer"}}]}))
        client = ChatLLMClient(ChatLLMConfig(model="m", model_kwargs={"temperature": 0}), session=session)

        assert client.generate("hello") == "full answer"
        body = session.posts[0]["json"]
        assert body["messages"] == [{"role": "user", "content": "hello"}]
        assert body["stream"] is False
        assert body["temperature"] == 0

    def test_generate_streaming_reports_tokens(self):
        session = FakeSession(FakeResponse(lines=sse("Hel", "lo", "!")))
        tokens = []

        text = ChatLLMClient(session=session).generate("hi", streaming=True, on_token=tokens.append)

        assert tokens == ["Hel", "lo", "!"]
        assert text == "Hello!"
        assert session.posts[0]["stream"] is True
        assert session.posts[0]["json"]["stream"] is True

    def test_http_errors_propagate(self):
        session = FakeSession(FakeResponse(status=503))
        with pytest.raises(requests.HTTPError):
            ChatLLMClient(session=session).generate("hi")

    def test_empty_choices(self):
        session = FakeSession(FakeResponse({"choices": []}))
        assert ChatLLMClient(session=session).complete([{"role": "user", "content": "x"}]) == ""


class TestEmbeddingClient:
    def test_batches_and_orders_vectors(self):
        session = FakeSession(
            FakeResponse({"data": [{"index": 1, "embedding": [0.0, 1.0]}, {"index": 0, "embedding": [1.0, 0.0]}]}),
            FakeResponse({"data": [{"index": 0, "embedding": [0.5, 0.5]}]}),
        )
        client = EmbeddingClient(EmbeddingConfig(batch_size=2, model="e"), session=session)

        vectors = client.embed_documents(["a", "b", "c"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0], [0.5, 0.5]]
        assert [post["json"]["input"] for post in session.posts] == [["a", "b"], ["c"]]

    def test_embed_query_requires_a_vector(self):
        session = FakeSession(FakeResponse({"data": []}))
        with pytest.raises(RuntimeError):
            EmbeddingClient(session=session).embed_query("q")


class TestTranscriptNotifier:
    def test_notify_posts_payload(self):
        session = FakeSession(FakeResponse())
        notifier = TranscriptNotifier(NotifierConfig(endpoint="http://transcripts/save", user_id="ns-1"), session=session)

        notifier.notify("sock-1", "hello", is_bot=False)

        assert session.posts[0]["url"] == "http://transcripts/save"
        assert session.posts[0]["json"] == {"userId": "ns-1", "sessionId": "sock-1", "message": "hello", "isBot": False}

    def test_notify_wraps_request_errors(self):
        session = FakeSession(error=requests.ConnectionError("refused"))
        notifier = TranscriptNotifier(NotifierConfig(endpoint="http://transcripts/save"), session=session)
        with pytest.raises(NotificationFailure):
            notifier.notify("s", "m", is_bot=True)

    def test_notify_async_logs_and_swallows_failures(self, caplog):
        session = FakeSession(error=requests.ConnectionError("refused"))
        notifier = TranscriptNotifier(NotifierConfig(endpoint="http://transcripts/save"), session=session)

        with caplog.at_level(logging.WARNING, logger="qa_chain.notifier"):
            future = notifier.notify_async("s", "m", is_bot=True)
            notifier.shutdown(wait=True)

        assert isinstance(future.exception(), NotificationFailure)
        assert "Ignoring transcript notification failure" in caplog.text

    def test_disabled_without_endpoint(self):
        session = FakeSession()
        notifier = TranscriptNotifier(session=session)
        assert notifier.notify_async("s", "m", is_bot=False) is None
        assert session.posts == []
