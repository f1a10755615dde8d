from datetime import timedelta

import pytest

from citebot.errors import InvalidStatusTransition, SessionNotFoundError, SessionUnavailableError
from citebot.models.domain.session import MessageRole, SessionStatus
from citebot.services.session_service import (
    ASSISTANT_EXCERPT_CHARS,
    MAX_CONTEXT_MESSAGES,
    SessionService,
)
from citebot.storage.in_memory import InMemorySessionStore
from conftest import TurnWriteFailsStore


def _sources(*refs):
    return [{"id": f"id-{r}", "reference": r, "score": 1.0} for r in refs]


def test_assistant_turn_round_trip(session_store):
    svc = SessionService(session_store)
    session = svc.get_or_create()

    svc.add_user_turn(session, "Que dit le Coran sur la patience ?", "question_religious", ["patience"])
    svc.add_assistant_turn(session, "« ... »", "question_religious", 0.8, _sources("A", "B"))

    reloaded = svc.get_or_create(session.id)
    assert reloaded.id == session.id
    assert reloaded.turn_count == 1
    assert reloaded.last_sources == ["A", "B"]
    assert reloaded.topics == ["patience"]
    assert [m.role for m in reloaded.messages] == [MessageRole.USER, MessageRole.ASSISTANT]


def test_last_sources_capped_and_replaced(session_store):
    svc = SessionService(session_store)
    session = svc.get_or_create()

    svc.add_assistant_turn(session, "a", None, 0.8, _sources(*"ABCDEFG"))
    assert svc.get_or_create(session.id).last_sources == list("ABCDE")

    svc.add_assistant_turn(session, "b", None, 0.8, _sources("Z"))
    reloaded = svc.get_or_create(session.id)
    assert reloaded.last_sources == ["Z"]
    assert reloaded.turn_count == 2


def test_unknown_or_expired_session_gets_a_new_one(session_store, utc_noon):
    svc = SessionService(session_store, clock=utc_noon)
    missing = "00000000-0000-4000-8000-000000000000"
    assert svc.get_or_create(missing).id != missing

    old = svc.get_or_create()
    session_store.sessions[old.id].created_at = utc_noon() - timedelta(hours=25)
    assert svc.get_or_create(old.id).id != old.id


def test_closed_session_is_not_reused(session_store):
    svc = SessionService(session_store)
    session = svc.get_or_create()
    svc.update_status(session.id, SessionStatus.CLOSED)

    assert svc.get_or_create(session.id).id != session.id


def test_store_failure_is_not_masked_by_a_new_session():
    class BrokenStore(InMemorySessionStore):
        def get_session(self, session_id, message_limit):
            raise ConnectionError("database down")

    svc = SessionService(BrokenStore())
    with pytest.raises(SessionUnavailableError):
        svc.get_or_create("00000000-0000-4000-8000-000000000000")


def test_failed_assistant_turn_leaves_nothing_behind():
    store = TurnWriteFailsStore()
    svc = SessionService(store)
    session = svc.get_or_create()
    svc.add_user_turn(session, "Que dit le Coran sur la patience ?", "question_religious", ["patience"])

    with pytest.raises(SessionUnavailableError):
        svc.add_assistant_turn(session, "« ... »", "question_religious", 0.8, _sources("A"))

    reloaded = svc.get_or_create(session.id)
    assert reloaded.turn_count == 0
    assert reloaded.last_sources == []
    assert [m.role for m in reloaded.messages] == [MessageRole.USER]
    assert session.turn_count == 0


def test_status_transitions(session_store):
    svc = SessionService(session_store)
    session = svc.get_or_create()

    assert svc.update_status(session.id, SessionStatus.ACTIVE).status == SessionStatus.ACTIVE
    assert svc.update_status(session.id, SessionStatus.ESCALATED).status == SessionStatus.ESCALATED
    with pytest.raises(InvalidStatusTransition):
        svc.update_status(session.id, SessionStatus.ACTIVE)
    assert svc.update_status(session.id, SessionStatus.CLOSED).status == SessionStatus.CLOSED
    with pytest.raises(InvalidStatusTransition):
        svc.update_status(session.id, SessionStatus.ESCALATED)
    with pytest.raises(SessionNotFoundError):
        svc.update_status("00000000-0000-4000-8000-000000000000", SessionStatus.CLOSED)


def test_context_summary(session_store):
    svc = SessionService(session_store)
    session = svc.get_or_create()
    long_answer = "x" * (ASSISTANT_EXCERPT_CHARS + 50)

    for i in range(8):
        svc.add_user_turn(session, f"question {i} sur la prière et le jeûne")
        svc.add_assistant_turn(session, long_answer, None, 0.8, _sources(f"R{i}"))

    summary = SessionService.get_context_summary(svc.get_or_create(session.id))

    lines = summary.formatted_history.split("\n\n")
    assert len(lines) == MAX_CONTEXT_MESSAGES
    assert lines[0].startswith("UTILISATEUR: question 3")
    assert lines[1] == "ASSISTANT: " + "x" * ASSISTANT_EXCERPT_CHARS + "..."
    assert summary.topics == ["priere", "jeune"]
    assert summary.previous_sources == ["R3", "R4", "R5", "R6", "R7"]
    assert summary.turn_count == 8


def test_cleanup_is_idempotent(session_store, utc_noon):
    svc = SessionService(session_store, clock=utc_noon)
    fresh = svc.get_or_create()
    expired = svc.get_or_create()
    closed = svc.get_or_create()
    session_store.sessions[expired.id].expires_at = utc_noon() - timedelta(minutes=1)
    svc.update_status(closed.id, SessionStatus.CLOSED)
    session_store.sessions[closed.id].updated_at = utc_noon() - timedelta(days=8)

    assert svc.cleanup_expired_sessions() == 2
    assert svc.cleanup_expired_sessions() == 0
    assert svc.get_snapshot(fresh.id) is not None


def test_snapshot(session_store):
    svc = SessionService(session_store)
    session = svc.get_or_create()
    svc.add_user_turn(session, "q1")
    svc.add_assistant_turn(session, "a1", "search_verse", 0.9, _sources("A"))
    svc.add_user_turn(session, "q2")
    svc.add_assistant_turn(session, "a2", "search_verse", 0.5, _sources("B"))

    snapshot = svc.get_snapshot(session.id)

    assert snapshot["turn_count"] == 2
    assert snapshot["message_count"] == 4
    assert snapshot["average_confidence"] == 0.7
    assert snapshot["last_sources"] == ["B"]
    assert svc.get_snapshot("00000000-0000-4000-8000-000000000000") is None
