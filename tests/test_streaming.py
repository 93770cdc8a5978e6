"""Tests for the streaming execution controller and stream events."""

import threading
import time

import pytest

from conftest import FakeLLM, FakeVectorStore, echo_responder
from qa_chain import streaming
from qa_chain.chain import assemble_chain
from qa_chain.errors import ConfigurationError, ModelInvocationFailure, RetrievalFailure
from qa_chain.events import InvocationState, ListSink, QueueSink, StreamEvent, StreamEventType
from qa_chain.streaming import StreamingExecutionController


def event_types(sink):
    return [event.type for event in sink.events]


def assert_well_formed_success(sink):
    types = event_types(sink)
    assert types[-1] is StreamEventType.END
    assert types.count(StreamEventType.END) == 1
    assert StreamEventType.ERROR not in types
    assert types.count(StreamEventType.SOURCE_DOCUMENTS) <= 1


def assert_well_formed_failure(sink):
    types = event_types(sink)
    assert types[-1] is StreamEventType.ERROR
    assert types.count(StreamEventType.ERROR) == 1
    assert StreamEventType.END not in types


class TestRun:
    def test_tokens_then_sources_then_end(self, llm, refund_store):
        chain = assemble_chain(llm, refund_store, return_source_documents=True)
        sink = ListSink()
        controller = StreamingExecutionController(chain)

        result = controller.run("What is the refund policy?", sink=sink)

        assert_well_formed_success(sink)
        types = event_types(sink)
        assert types[-2] is StreamEventType.SOURCE_DOCUMENTS
        assert set(types[:-2]) == {StreamEventType.TOKEN}
        assert sink.text == result.answer
        assert [doc.score for doc in sink.events[-2].data] == [0.91, 0.77]
        assert controller.state is InvocationState.COMPLETED

    def test_no_source_event_unless_requested(self, llm, refund_store):
        sink = ListSink()
        StreamingExecutionController(assemble_chain(llm, refund_store)).run("q", sink=sink)
        assert_well_formed_success(sink)
        assert StreamEventType.SOURCE_DOCUMENTS not in event_types(sink)

    def test_result_returned_without_sink(self, llm, refund_store):
        result = StreamingExecutionController(assemble_chain(llm, refund_store)).run("q")
        assert result.answer == "Answer to: q"
        assert llm.streamed_prompts == []

    def test_rewrite_is_not_streamed(self, llm, refund_store):
        sink = ListSink()
        chain = assemble_chain(llm, refund_store)
        StreamingExecutionController(chain).run("thanks!", [("What is the refund policy?", "30 days.")], sink=sink)
        assert len(llm.calls) == 2
        assert llm.streamed_prompts == [llm.prompts[1]]
        assert sink.text == "Answer to: thanks!"

    def test_retrieval_failure_emits_single_error(self, llm):
        chain = assemble_chain(llm, FakeVectorStore(fail=True))
        sink = ListSink()
        controller = StreamingExecutionController(chain)

        with pytest.raises(RetrievalFailure):
            controller.run("What is the refund policy?", sink=sink)

        assert_well_formed_failure(sink)
        assert len(sink.events) == 1
        assert "index unavailable" in sink.events[0].data
        assert chain.memory.get_history() == []
        assert controller.state is InvocationState.FAILED

    def test_failure_mid_refine_after_no_tokens(self, refund_store):
        llm = FakeLLM(fail_when=lambda prompt: prompt.startswith("The original question"))
        chain = assemble_chain(llm, refund_store, strategy="refine")
        sink = ListSink()

        with pytest.raises(ModelInvocationFailure):
            StreamingExecutionController(chain).run("q", sink=sink)

        assert_well_formed_failure(sink)
        assert StreamEventType.TOKEN not in event_types(sink)
        assert chain.memory.get_history() == []

    def test_refine_streams_only_final_answer(self, refund_store):
        llm = FakeLLM(responder=lambda prompt: f"draft {len(llm.calls)}")
        chain = assemble_chain(llm, refund_store, strategy="refine")
        sink = ListSink()

        result = StreamingExecutionController(chain).run("q", sink=sink)

        assert sink.text == result.answer == "draft 2"

    def test_empty_question_reports_error_event(self, llm, refund_store):
        sink = ListSink()
        with pytest.raises(ConfigurationError):
            StreamingExecutionController(assemble_chain(llm, refund_store)).run("", sink=sink)
        assert_well_formed_failure(sink)

    def test_states_visited_in_order(self, llm, refund_store, monkeypatch):
        controller = StreamingExecutionController(assemble_chain(llm, refund_store))
        seen = []
        original = streaming._Invocation.transition

        def record(invocation, state):
            seen.append(state)
            original(invocation, state)

        monkeypatch.setattr(streaming._Invocation, "transition", record)
        controller.run("q")
        assert seen == [InvocationState.GENERATING, InvocationState.COMBINING, InvocationState.COMPLETED]

    def test_concurrent_runs_share_one_controller(self, refund_store):
        entered = threading.Event()
        gate = threading.Event()

        def responder(prompt):
            if "Question: slow\n" in prompt:
                entered.set()
                gate.wait(timeout=5)
            return echo_responder(prompt)

        chain = assemble_chain(FakeLLM(responder=responder), refund_store)
        controller = StreamingExecutionController(chain)
        sinks = {"slow": ListSink(), "fast": ListSink()}
        errors = []

        def run(question):
            try:
                controller.run(question, sink=sinks[question])
            except Exception as exc:
                errors.append(exc)

        slow = threading.Thread(target=run, args=("slow",))
        slow.start()
        assert entered.wait(timeout=5)
        fast = threading.Thread(target=run, args=("fast",))
        fast.start()
        time.sleep(0.05)
        gate.set()
        slow.join(timeout=5)
        fast.join(timeout=5)

        assert errors == []
        for question, sink in sinks.items():
            assert_well_formed_success(sink)
            assert sink.text == f"Answer to: {question}"
        assert [turn.text for turn in chain.memory.get_history()] == [
            "slow",
            "Answer to: slow",
            "fast",
            "Answer to: fast",
        ]
        assert controller.state is InvocationState.COMPLETED

    def test_sink_failure_after_answer_ends_with_error(self, llm, refund_store):
        class BrokenSourcesSink(ListSink):
            def send(self, event):
                if event.type is StreamEventType.SOURCE_DOCUMENTS:
                    raise RuntimeError("client went away")
                super().send(event)

        chain = assemble_chain(llm, refund_store, return_source_documents=True)
        sink = BrokenSourcesSink()
        controller = StreamingExecutionController(chain)

        with pytest.raises(RuntimeError):
            controller.run("q", sink=sink)

        assert_well_formed_failure(sink)
        assert sink.events[-1].data == "client went away"
        assert chain.memory.get_history() == []
        assert controller.state is InvocationState.FAILED


class TestStream:
    def test_stream_yields_until_end_and_calls_hook(self, llm, refund_store):
        chain = assemble_chain(llm, refund_store, return_source_documents=True)
        completed = []

        events = list(StreamingExecutionController(chain).stream("q", on_complete=completed.append))

        assert events[-1].type is StreamEventType.END
        assert events[-2].type is StreamEventType.SOURCE_DOCUMENTS
        assert "".join(e.data for e in events if e.type is StreamEventType.TOKEN) == "Answer to: q"
        assert [result.answer for result in completed] == ["Answer to: q"]

    def test_stream_failure_ends_with_error_and_skips_hook(self, llm):
        chain = assemble_chain(llm, FakeVectorStore(fail=True))
        completed = []

        events = list(StreamingExecutionController(chain).stream("q", on_complete=completed.append))

        assert [event.type for event in events] == [StreamEventType.ERROR]
        assert completed == []

    def test_failing_hook_does_not_break_stream(self, llm, refund_store):
        def hook(result):
            raise RuntimeError("hook failed")

        events = list(StreamingExecutionController(assemble_chain(llm, refund_store)).stream("q", on_complete=hook))
        assert events[-1].type is StreamEventType.END


class TestEvents:
    def test_event_serialisation(self, llm, refund_store):
        result = assemble_chain(llm, refund_store, return_source_documents=True).invoke("q")
        event = StreamEvent.source_documents(result.source_documents)
        assert event.to_dict()["event"] == "sourceDocuments"
        assert event.to_dict()["data"][0]["metadata"]["score"] == 0.91
        assert StreamEvent.token("hi").to_dict() == {"event": "token", "data": "hi"}
        assert StreamEvent.terminal().to_dict() == {"event": "end", "data": None}

    def test_terminal_classes(self):
        assert StreamEvent.terminal().is_terminal
        assert StreamEvent.error("boom").is_terminal
        assert not StreamEvent.token("x").is_terminal

    def test_queue_sink_stops_after_terminal(self):
        sink = QueueSink()
        for event in (StreamEvent.token("a"), StreamEvent.error("bad"), StreamEvent.token("late")):
            sink.send(event)
        assert [event.data for event in sink.iter_events(timeout=1)] == ["a", "bad"]
