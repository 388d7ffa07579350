"""
SQLite store tests for Personal Knowledge MCP
Copyright 2025 Jurden Bruce
"""

from datetime import timedelta

from personal_knowledge_mcp.config import SESSION_TIMEOUT, TIMEOUT_SUMMARY


# ===== KNOWLEDGE ENTRIES =====

def test_save_and_get_entry(db):
    entry_id = db.save_entry("Title", "Body text", source="https://example.com", tags=["b", "a"])
    entry = db.get_entry(entry_id)

    assert entry.title == "Title"
    assert entry.content == "Body text"
    assert entry.source == "https://example.com"
    assert entry.tags == ["b", "a"]
    assert entry.created_at == entry.updated_at


def test_entry_without_tags_or_source(db):
    entry = db.get_entry(db.save_entry("Bare", "content"))
    assert entry.tags is None
    assert entry.source is None


def test_get_missing_entry_returns_none(db):
    assert db.get_entry(999) is None


def test_update_merges_fields(db):
    entry_id = db.save_entry("Old", "old content", source="src", tags=["x"])
    assert db.update_entry(entry_id, {"content": "new content"}) is True

    entry = db.get_entry(entry_id)
    assert entry.title == "Old"
    assert entry.content == "new content"
    assert entry.source == "src"
    assert entry.tags == ["x"]
    assert entry.updated_at >= entry.created_at


def test_update_replaces_tags(db):
    entry_id = db.save_entry("T", "c", tags=["x", "y"])
    db.update_entry(entry_id, {"tags": ["z"]})
    assert db.get_entry(entry_id).tags == ["z"]


def test_update_missing_entry(db):
    assert db.update_entry(42, {"title": "nope"}) is False
    assert db.get_stats()["total_entries"] == 0


def test_delete_entry_twice(db):
    entry_id = db.save_entry("T", "c")
    assert db.delete_entry(entry_id) is True
    assert db.delete_entry(entry_id) is False


def test_list_entries_tag_filter_is_union(db):
    first = db.save_entry("One", "c", tags=["x"])
    second = db.save_entry("Two", "c", tags=["y", "z"])
    db.save_entry("Three", "c", tags=["w"])
    db.save_entry("Four", "c")

    ids = {e.id for e in db.list_entries(tags=["x", "z"])}
    assert ids == {first, second}


def test_list_entries_tag_filter_matches_whole_tags(db):
    db.save_entry("Prefix", "c", tags=["python3"])
    assert db.list_entries(tags=["python"]) == []


def test_list_entries_newest_first_with_paging(db):
    ids = [db.save_entry(f"Entry {i}", "c") for i in range(5)]

    page = db.list_entries(limit=2, offset=1)
    assert [e.id for e in page] == [ids[3], ids[2]]


def test_search_text_is_case_insensitive(db):
    entry_id = db.save_entry("Async Patterns", "Using AsyncIO event loops")
    db.save_entry("Other", "unrelated")

    results = db.search_text("asyncio")
    assert [e.id for e in results] == [entry_id]


def test_search_text_ignores_short_terms(db):
    db.save_entry("a b", "to be or not")
    assert db.search_text("a to be") == []


def test_search_text_any_term_matches(db):
    first = db.save_entry("Python", "language")
    second = db.save_entry("Rust", "compiler")

    ids = {e.id for e in db.search_text("python compiler")}
    assert ids == {first, second}


def test_search_text_treats_wildcards_literally(db):
    db.save_entry("Plain", "no special characters here")
    assert db.search_text("%%%") == []


def test_stats_counts_tags_per_entry(db):
    db.save_entry("One", "c", tags=["x", "y"])
    db.save_entry("Two", "c", tags=["x"])
    db.save_entry("Three", "c")

    stats = db.get_stats()
    assert stats["total_entries"] == 3
    assert stats["tag_counts"] == {"x": 2, "y": 1}
    assert stats["oldest_entry"] <= stats["newest_entry"]


def test_stats_empty_database(db):
    stats = db.get_stats()
    assert stats == {"total_entries": 0, "tag_counts": {}, "oldest_entry": None, "newest_entry": None}


# ===== SESSIONS =====

def test_create_session_is_active(db):
    session = db.get_session(db.create_session("Test Session"))
    assert session.name == "Test Session"
    assert session.is_active is True
    assert session.ended_at is None
    assert session.summary is None


def test_create_session_without_name(db):
    session = db.get_session(db.create_session())
    assert session.name is None
    assert session.is_active is True


def test_active_session_is_most_recent(db):
    db.create_session("First")
    db.create_session("Second")
    assert db.get_active_session().name == "Second"


def test_end_session_keeps_messages(db):
    session_id = db.create_session("To End")
    db.save_message(session_id, "user", "hello")

    assert db.end_session(session_id, "Completed successfully") is True

    session = db.get_session(session_id)
    assert session.is_active is False
    assert session.ended_at is not None
    assert session.summary == "Completed successfully"
    assert db.get_message_count(session_id) == 1


def test_end_session_missing_or_already_ended(db):
    assert db.end_session(99999) is False

    session_id = db.create_session()
    db.end_session(session_id, "first")
    assert db.end_session(session_id, "second") is False
    assert db.get_session(session_id).summary == "first"


def test_messages_in_order(db):
    session_id = db.create_session("Messages")
    db.save_message(session_id, "user", "Question")
    db.save_message(session_id, "agent", "Answer")

    messages = db.get_messages(session_id)
    assert [(m.role, m.content) for m in messages] == [("user", "Question"), ("agent", "Answer")]
    assert db.get_message_count(session_id) == 2
    assert db.get_message_count(db.create_session("Empty")) == 0


def test_list_sessions_active_only(db):
    active_id = db.create_session("Active")
    ended_id = db.create_session("Will End")
    db.end_session(ended_id)

    active_ids = [s.id for s in db.list_sessions(active_only=True)]
    assert active_id in active_ids
    assert ended_id not in active_ids
    assert len(db.list_sessions(limit=1)) == 1


def test_session_stats(db):
    first = db.create_session()
    db.create_session()
    db.end_session(first)
    db.save_message(first, "user", "one")
    db.save_message(first, "agent", "two")

    assert db.get_session_stats() == {"total_sessions": 2, "active_sessions": 1, "total_messages": 2}


# ===== TIMEOUT SWEEP =====

def test_timeout_closes_old_idle_session(db, backdate):
    session_id = db.create_session()
    backdate("sessions", "started_at", session_id, timedelta(hours=2))

    assert db.close_timed_out_sessions(SESSION_TIMEOUT, TIMEOUT_SUMMARY) == 1
    session = db.get_session(session_id)
    assert session.is_active is False
    assert session.ended_at is not None
    assert session.summary == TIMEOUT_SUMMARY


def test_timeout_spares_fresh_session_without_messages(db):
    session_id = db.create_session()
    assert db.close_timed_out_sessions(SESSION_TIMEOUT, TIMEOUT_SUMMARY) == 0
    assert db.get_session(session_id).is_active is True


def test_timeout_spares_old_session_with_recent_message(db, backdate):
    session_id = db.create_session()
    backdate("sessions", "started_at", session_id, timedelta(days=3))
    message_id = db.save_message(session_id, "user", "still here")
    backdate("session_messages", "created_at", message_id, timedelta(minutes=5))

    assert db.close_timed_out_sessions(SESSION_TIMEOUT, TIMEOUT_SUMMARY) == 0
    assert db.get_session(session_id).is_active is True


def test_timeout_closes_session_with_stale_messages(db, backdate):
    session_id = db.create_session()
    backdate("sessions", "started_at", session_id, timedelta(hours=3))
    message_id = db.save_message(session_id, "user", "long ago")
    backdate("session_messages", "created_at", message_id, timedelta(hours=2))

    assert db.close_timed_out_sessions(SESSION_TIMEOUT, TIMEOUT_SUMMARY) == 1


def test_timeout_leaves_ended_sessions_alone(db, backdate):
    session_id = db.create_session()
    db.end_session(session_id, "manual")
    backdate("sessions", "started_at", session_id, timedelta(hours=2))

    assert db.close_timed_out_sessions(SESSION_TIMEOUT, TIMEOUT_SUMMARY) == 0
    assert db.get_session(session_id).summary == "manual"
