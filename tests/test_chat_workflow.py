import asyncio

import pytest
from langchain_core.runnables import RunnableLambda

from citebot.agents.intent_tables import GREETING_REPLY
from citebot.errors import InvalidTurnInput
from citebot.prompts.retrieval_prompts import NO_DOCUMENTS_REPLY
from citebot.services.metrics_buffer import MetricsBuffer
from citebot.services.quota_service import FREE_DAILY_LIMIT
from citebot.workflows.chat_workflow import TurnPipeline
from conftest import ANSWER, TurnWriteFailsStore, build_pipeline, make_chunk, sample_corpus

QUESTION = "Que dit le Coran sur la patience et la gratitude ?"


async def _collect(agen):
    return [event async for event in agen]


def run_turn(pipeline, message, session_id=None, identifier="1.2.3.4"):
    return asyncio.run(_collect(pipeline.handle_turn(message, session_id=session_id, identifier=identifier)))


def test_grounded_answer_is_streamed_and_persisted(pipeline, metrics_sink):
    events = run_turn(pipeline, QUESTION)

    assert events[-1].type == "completed"
    assert all(e.type == "delta" for e in events[:-1])
    assert "".join(e.content for e in events[:-1]) == ANSWER

    result = events[-1].result
    assert result.text == ANSWER
    assert 1 <= len(result.citations) <= 5
    assert [c.score for c in result.citations] == [1.0, 0.9, 0.8, 0.7, 0.6][: len(result.citations)]
    assert result.intent == "question_religious"
    assert result.confidence > 0.4
    assert not result.escalate
    assert result.metadata.sources_searched == 5
    assert result.metadata.keywords == ["patience", "gratitude"]

    snapshot = pipeline.get_session_snapshot(result.session_id)
    assert snapshot["turn_count"] == 1
    assert [m["role"] for m in snapshot["messages"]] == ["user", "assistant"]
    assert snapshot["last_sources"] == [c.reference for c in result.citations]
    assert sink_values(metrics_sink) == [result.metadata.processing_time_ms]


def sink_values(sink):
    return [m.value for batch in sink.batches for m in batch]


def test_follow_up_reuses_session(pipeline):
    first = run_turn(pipeline, QUESTION)[-1].result
    second = run_turn(pipeline, "Et sur la gratitude ?", session_id=first.session_id)[-1].result

    assert second.session_id == first.session_id
    assert pipeline.get_session_snapshot(first.session_id)["turn_count"] == 2


def test_empty_corpus_answers_without_generation(session_store, quota_store):
    def must_not_run(_):
        raise AssertionError("generation must not be called")

    pipeline = build_pipeline([], session_store, quota_store, llm=RunnableLambda(must_not_run))

    result = run_turn(pipeline, QUESTION)[-1].result

    assert result.text == NO_DOCUMENTS_REPLY
    assert result.citations == []
    assert result.confidence == 0.1


def test_single_broad_keyword_asks_for_clarification(session_store, quota_store):
    def must_not_run(_):
        raise AssertionError("generation must not be called")

    corpus = [make_chunk(i, "La patience est une vertu.", "hadith") for i in range(15)]
    pipeline = build_pipeline(corpus, session_store, quota_store, llm=RunnableLambda(must_not_run))

    result = run_turn(pipeline, "patience ?")[-1].result

    assert "15" in result.text
    assert '"patience"' in result.text
    assert result.citations == []


def test_greeting_uses_fixed_reply(pipeline):
    events = run_turn(pipeline, "Bonjour")

    assert [e.type for e in events] == ["delta", "completed"]
    assert events[-1].result.text == GREETING_REPLY
    assert events[-1].result.intent == "greeting"


def test_escalation_request_suggests_handoff(pipeline):
    result = run_turn(pipeline, "Je veux parler à un humain, c'est urgent")[-1].result

    assert result.escalate
    assert result.actions == ["human_handoff"]
    assert pipeline.get_session_snapshot(result.session_id)["status"] == "active"


def test_quota_exceeded_is_a_distinct_terminal_event(pipeline):
    for _ in range(FREE_DAILY_LIMIT):
        assert run_turn(pipeline, "Bonjour", identifier="same-user")[-1].type == "completed"

    events = run_turn(pipeline, "Bonjour", identifier="same-user")

    assert [e.type for e in events] == ["quota_exceeded"]
    assert not events[0].quota.allowed
    assert events[0].quota.remaining == 0
    assert events[0].quota.reset_at is not None


def test_generation_failure_leaves_no_assistant_turn(session_store, quota_store, pipeline):
    def broken(_):
        raise RuntimeError("model down")

    failing = build_pipeline(pipeline.corpus.chunks, session_store, quota_store, llm=RunnableLambda(broken))
    events = run_turn(failing, QUESTION)

    assert events[-1].type == "error"
    assert events[-1].retryable
    sessions = session_store.list_sessions(None, 10)
    assert len(sessions) == 1
    assert sessions[0].turn_count == 0
    assert [m.role.value for m in session_store.messages[sessions[0].id]] == ["user"]


def test_failed_turn_write_keeps_turn_count_and_messages_in_step(quota_store, pipeline):
    store = TurnWriteFailsStore()
    failing = build_pipeline(pipeline.corpus.chunks, store, quota_store)
    events = run_turn(failing, QUESTION)

    assert events[-1].type == "error"
    assert events[-1].retryable
    session = store.list_sessions(None, 10)[0]
    assert session.turn_count == 0
    assert [m.role.value for m in store.messages[session.id]] == ["user"]


def test_injected_metrics_buffer_is_used(session_store, quota_store, metrics_sink):
    buffer = MetricsBuffer(metrics_sink, max_size=1)
    assert len(buffer) == 0

    built = build_pipeline(sample_corpus(), session_store, quota_store)
    built = TurnPipeline(
        quota=built.quota,
        sessions=built.sessions,
        corpus=built.corpus,
        engine=built.engine,
        generator=built.generator,
        metrics=buffer,
    )

    assert built.metrics is buffer
    result = run_turn(built, "Bonjour")[-1].result
    assert sink_values(metrics_sink) == [result.metadata.processing_time_ms]


def test_session_store_outage_is_retryable(quota_store, pipeline):
    class DownStore:
        def get_session(self, session_id, message_limit):
            raise ConnectionError("database down")

        def create_session(self, expires_at):
            raise ConnectionError("database down")

    broken = build_pipeline([], DownStore(), quota_store)
    events = run_turn(broken, QUESTION, session_id="00000000-0000-4000-8000-000000000000")

    assert [e.type for e in events] == ["error"]
    assert events[0].retryable


@pytest.mark.parametrize("message, session_id, identifier", [
    ("", None, "1.2.3.4"),
    ("   ", None, "1.2.3.4"),
    ("Bonjour", "not-a-uuid", "1.2.3.4"),
    ("Bonjour", None, None),
    ("x" * 4001, None, "1.2.3.4"),
])
def test_invalid_input_rejected_before_any_io(pipeline, quota_store, message, session_id, identifier):
    with pytest.raises(InvalidTurnInput):
        pipeline.handle_turn(message, session_id=session_id, identifier=identifier)
    assert quota_store.records == {}


class TrackedGenerator:
    def __init__(self):
        self.closed = False

    async def stream(self, question, chunks, history=""):
        try:
            for piece in ["« Cherchez ", "secours »", " ..."]:
                yield piece
        finally:
            self.closed = True


def test_consumer_stop_closes_generation_and_discards_answer(session_store, quota_store):
    pipeline = build_pipeline(sample_corpus(), session_store, quota_store)
    generator = TrackedGenerator()
    pipeline.generator = generator

    async def read_one_then_stop():
        events = pipeline.handle_turn(QUESTION, identifier="1.2.3.4")
        first = await events.__anext__()
        await events.aclose()
        return first, generator.closed

    first, closed_on_return = asyncio.run(read_one_then_stop())

    assert first.type == "delta"
    assert closed_on_return
    session = session_store.list_sessions(None, 10)[0]
    assert session.turn_count == 0
    assert [m.role.value for m in session_store.messages[session.id]] == ["user"]
