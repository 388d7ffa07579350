"""
Session service tests for Personal Knowledge MCP
Copyright 2025 Jurden Bruce
"""

import asyncio
from datetime import timedelta

import pytest

from personal_knowledge_mcp.config import NEW_SESSION_SUMMARY, TIMEOUT_SUMMARY
from personal_knowledge_mcp.errors import (
    NoActiveSessionError,
    SessionClosedError,
    SessionNotFoundError,
    VectorIndexNotInitializedError,
)
from personal_knowledge_mcp.models import KIND_MESSAGE
from personal_knowledge_mcp.services import SessionService


def test_start_selects_new_session(sessions):
    result = sessions.start_logging_session("Debugging")

    assert sessions.current_session_id == result["session_id"]
    assert result["session"].name == "Debugging"
    assert result["session"].is_active is True
    assert sessions.has_active_session() is True


def test_starting_a_session_closes_the_previous_one(sessions, db):
    first = sessions.start_logging_session("S1")["session_id"]
    asyncio.run(sessions.log_message("user", "hi"))
    second = sessions.start_logging_session("S2")["session_id"]

    previous = db.get_session(first)
    assert previous.is_active is False
    assert previous.summary == NEW_SESSION_SUMMARY
    assert sessions.current_session_id == second

    asyncio.run(sessions.log_message("agent", "hello"))
    assert db.get_message_count(second) == 1
    assert db.get_message_count(first) == 1
    assert [s.id for s in sessions.list_sessions(active_only=True)] == [second]


def test_log_message_to_current_session(sessions, db):
    session_id = sessions.start_logging_session()["session_id"]
    result = asyncio.run(sessions.log_message("user", "What is a closure?"))

    assert result["indexed"] is True
    messages = db.get_messages(session_id)
    assert [m.id for m in messages] == [result["message_id"]]
    assert messages[0].role == "user"


def test_log_message_rejects_unknown_role(sessions, db):
    session_id = sessions.start_logging_session()["session_id"]
    with pytest.raises(ValueError):
        asyncio.run(sessions.log_message("system", "nope"))
    assert db.get_message_count(session_id) == 0


def test_log_message_without_session(sessions):
    with pytest.raises(NoActiveSessionError):
        asyncio.run(sessions.log_message("user", "orphan"))


def test_log_message_to_unknown_session(sessions):
    with pytest.raises(SessionNotFoundError):
        asyncio.run(sessions.log_message("user", "lost", session_id=404))


def test_log_message_to_ended_session_appends_nothing(sessions, db):
    session_id = sessions.start_logging_session()["session_id"]
    sessions.end_session()

    with pytest.raises(SessionClosedError):
        asyncio.run(sessions.log_message("user", "too late", session_id=session_id))
    assert db.get_message_count(session_id) == 0


def test_explicit_session_id_wins_over_current(sessions, db):
    current = sessions.start_logging_session("current")["session_id"]
    other = db.create_session("other")

    asyncio.run(sessions.log_message("user", "routed", session_id=other))

    assert db.get_message_count(other) == 1
    assert db.get_message_count(current) == 0


def test_log_message_kept_when_embedding_fails(sessions, embedder, db):
    session_id = sessions.start_logging_session()["session_id"]
    embedder.fail = True

    result = asyncio.run(sessions.log_message("agent", "stored anyway"))

    assert result["indexed"] is False
    assert db.get_message_count(session_id) == 1


def test_end_current_session(sessions, db):
    session_id = sessions.start_logging_session()["session_id"]
    asyncio.run(sessions.log_message("user", "one"))
    asyncio.run(sessions.log_message("agent", "two"))

    result = sessions.end_session(summary="Wrapped up")

    assert result == {"success": True, "message_count": 2}
    assert sessions.current_session_id is None
    assert db.get_session(session_id).summary == "Wrapped up"


def test_end_without_session(sessions):
    assert sessions.end_session() == {"success": False, "message_count": 0}


def test_end_already_ended_session(sessions):
    session_id = sessions.start_logging_session()["session_id"]
    sessions.end_session()

    assert sessions.end_session(session_id)["success"] is False


def test_end_other_session_keeps_current(sessions, db):
    current = sessions.start_logging_session()["session_id"]
    other = db.create_session()

    assert sessions.end_session(other)["success"] is True
    assert sessions.current_session_id == current


def test_sweep_clears_current_pointer(sessions, db, backdate):
    session_id = sessions.start_logging_session()["session_id"]
    backdate("sessions", "started_at", session_id, timedelta(hours=2))

    assert sessions.close_timed_out_sessions() == 1
    assert sessions.current_session_id is None
    assert sessions.has_active_session() is False
    assert db.get_session(session_id).summary == TIMEOUT_SUMMARY


def test_recent_message_keeps_session_open(sessions, db, backdate):
    session_id = sessions.start_logging_session()["session_id"]
    backdate("sessions", "started_at", session_id, timedelta(hours=5))
    message_id = asyncio.run(sessions.log_message("user", "still working"))["message_id"]
    backdate("session_messages", "created_at", message_id, timedelta(minutes=5))

    assert sessions.close_timed_out_sessions() == 0
    assert sessions.current_session_id == session_id


def test_just_started_session_survives_sweep(sessions):
    session_id = sessions.start_logging_session()["session_id"]
    assert sessions.close_timed_out_sessions() == 0
    assert sessions.current_session_id == session_id


def test_start_sweeps_stale_sessions_first(sessions, db, backdate):
    stale = db.create_session("stale")
    backdate("sessions", "started_at", stale, timedelta(hours=2))

    sessions.start_logging_session()

    assert db.get_session(stale).summary == TIMEOUT_SUMMARY


def test_current_session_is_not_persisted(sessions, context):
    sessions.start_logging_session()
    restarted = SessionService(context)

    assert restarted.get_active_session() is not None
    assert restarted.current_session_id is None
    assert restarted.has_active_session() is False
    with pytest.raises(NoActiveSessionError):
        asyncio.run(restarted.log_message("user", "where am I"))


def test_get_session_with_messages(sessions):
    session_id = sessions.start_logging_session("Review")["session_id"]
    asyncio.run(sessions.log_message("user", "first"))
    asyncio.run(sessions.log_message("agent", "second"))

    result = sessions.get_session(session_id)
    assert result["session"].name == "Review"
    assert result["message_count"] == 2
    assert [m.content for m in result["messages"]] == ["first", "second"]
    assert sessions.get_session(999) is None


def test_search_session_only_returns_that_session(sessions):
    first = sessions.start_logging_session()["session_id"]
    asyncio.run(sessions.log_message("user", "deploy the kubernetes cluster"))
    asyncio.run(sessions.log_message("agent", "lunch menu ideas"))
    sessions.start_logging_session()
    asyncio.run(sessions.log_message("user", "kubernetes cluster notes"))

    results = asyncio.run(sessions.search_session(first, "kubernetes cluster"))

    assert results
    assert all(f"session:{first}" in r.tags for r in results)
    assert all(r.kind == KIND_MESSAGE for r in results)
    assert "deploy the kubernetes cluster" in [r.content_preview for r in results]
    assert f"[user] Session {first}" in [r.title for r in results]


def test_search_all_sessions_skips_knowledge(sessions, knowledge):
    asyncio.run(knowledge.add_knowledge("Kubernetes guide", "kubernetes cluster setup"))
    sessions.start_logging_session()
    asyncio.run(sessions.log_message("user", "kubernetes cluster setup"))

    results = asyncio.run(sessions.search_all_sessions("kubernetes cluster setup"))

    assert [r.kind for r in results] == [KIND_MESSAGE]
    assert "role:user" in results[0].tags


def test_search_session_respects_limit(sessions):
    session_id = sessions.start_logging_session()["session_id"]
    for i in range(4):
        asyncio.run(sessions.log_message("user", f"repeated topic {i}"))

    assert len(asyncio.run(sessions.search_session(session_id, "repeated topic", limit=2))) == 2


def test_search_before_any_messages_raises(sessions):
    with pytest.raises(VectorIndexNotInitializedError):
        asyncio.run(sessions.search_all_sessions("anything"))


def test_session_stats(sessions):
    sessions.start_logging_session()
    asyncio.run(sessions.log_message("user", "one"))
    sessions.start_logging_session()

    assert sessions.get_session_stats() == {"total_sessions": 2, "active_sessions": 1, "total_messages": 1}


def test_long_message_vector_is_truncated(sessions, embedder):
    session_id = sessions.start_logging_session()["session_id"]
    content = "kubernetes " * 200
    asyncio.run(sessions.log_message("user", content))

    assert embedder.texts[-1] == f"[user] Session {session_id}\n{content[:1000]}"

    results = asyncio.run(sessions.search_session(session_id, content))
    assert len(results) == 1
    assert results[0].content_preview == content[:500]


def test_log_message_kept_when_vector_store_fails(sessions, context, db, monkeypatch):
    session_id = sessions.start_logging_session()["session_id"]
    asyncio.run(sessions.log_message("user", "creates the collection"))

    def refuse(**kwargs):
        raise RuntimeError("qdrant unavailable")

    monkeypatch.setitem(context.qdrant_store.config, "qdrant_max_retries", 1)
    monkeypatch.setattr(context.qdrant_store.client, "upsert", refuse)

    result = asyncio.run(sessions.log_message("agent", "still saved"))

    assert result["indexed"] is False
    assert db.get_message_count(session_id) == 2
    assert context.error_log[-1]["operation"] == "qdrant_store_retry"
