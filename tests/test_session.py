"""
Tests for session persistence.
"""

import json

import pytest

from codecli.agent.session import (
    LOCAL_POINTER_FILE,
    SessionNotFoundError,
    SessionStore,
)
from codecli.llm.base import LLMMessage, ToolCall


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "sessions", cwd=tmp_path)


def add_messages(store, count):
    for i in range(count):
        store.add_message(LLMMessage(role="user" if i % 2 == 0 else "assistant", content=f"message {i}"))


def test_create_session(store, tmp_path):
    """Test creating a new session."""
    session = store.create("gemini")

    assert store.current is session
    assert session.provider == "gemini"
    assert session.cwd == str(tmp_path)
    assert session.name.startswith("session-")
    assert store.message_count == 0


def test_rewind_to_checkpoint(store):
    """Test rewinding truncates history to the checkpoint."""
    store.create()
    add_messages(store, 3)
    first = store.create_checkpoint()
    add_messages(store, 4)
    second = store.create_checkpoint("after edits")
    add_messages(store, 2)

    assert first.label == "checkpoint-1"
    assert second.label == "after edits"

    snapshot = list(store.messages[:first.message_index])
    assert store.rewind_to(first.id) is True

    assert store.messages == snapshot
    assert store.message_count == 3
    assert store.checkpoints == [first]


def test_rewind_unknown_checkpoint(store):
    """Test rewinding to an unknown checkpoint changes nothing."""
    store.create()
    add_messages(store, 2)

    assert store.rewind_to("nope") is False
    assert store.message_count == 2


def test_replace_messages_drops_checkpoints(store):
    """Test replacing history invalidates checkpoints."""
    store.create()
    add_messages(store, 4)
    store.create_checkpoint()

    store.replace_messages([LLMMessage(role="system", content="summary")])

    assert store.message_count == 1
    assert store.checkpoints == []


def test_save_and_load(store, tmp_path):
    """Test a saved session loads back with messages and checkpoints."""
    session = store.create("ollama")
    store.add_message(LLMMessage(role="user", content="read the file"))
    store.add_message(LLMMessage(
        role="assistant",
        content="",
        tool_calls=[ToolCall(id="call_1", name="read_file", arguments='{"path": "a.py"}')],
    ))
    store.add_message(LLMMessage(role="tool", content='{"content": "x"}', tool_call_id="call_1", name="read_file"))
    store.create_checkpoint()
    store.save()

    reloaded = SessionStore(tmp_path / "sessions", cwd=tmp_path)
    info = reloaded.load(session.id)

    assert info.id == session.id
    assert info.provider == "ollama"
    assert reloaded.message_count == 3
    assert reloaded.messages[1].tool_calls[0].name == "read_file"
    assert reloaded.messages[1].tool_calls[0].arguments == '{"path": "a.py"}'
    assert reloaded.messages[2].tool_call_id == "call_1"
    assert len(reloaded.checkpoints) == 1


def test_save_writes_local_pointer(store, tmp_path):
    """Test saving records the session in the working directory."""
    session = store.create()
    store.save()

    pointer = json.loads((tmp_path / LOCAL_POINTER_FILE).read_text())
    assert pointer["sessionId"] == session.id
    assert "updatedAt" in pointer


def test_save_without_session_is_noop(store, tmp_path):
    """Test saving before a session exists writes nothing."""
    store.save()

    assert not (tmp_path / "sessions").exists()


def test_load_partial_id(store, tmp_path):
    """Test loading by id prefix."""
    session = store.create()
    store.save()

    reloaded = SessionStore(tmp_path / "sessions", cwd=tmp_path)

    assert reloaded.load(session.id[:8]).id == session.id


def test_load_unknown_id(store):
    """Test loading an unknown id raises."""
    with pytest.raises(SessionNotFoundError):
        store.load("does-not-exist")


def test_load_rejects_path_like_ids(store, tmp_path):
    """Test ids that would leave the sessions directory are refused."""
    store.create()
    store.save()
    (tmp_path / "outside.json").write_text((tmp_path / "sessions" / f"{store.current.id}.json").read_text())
    reloaded = SessionStore(tmp_path / "sessions", cwd=tmp_path)

    for session_id in ("../outside", "nested/id", "..", ""):
        with pytest.raises(SessionNotFoundError):
            reloaded.load(session_id)

    assert reloaded.current is None


def test_load_latest(store, tmp_path):
    """Test the most recently updated session is loaded."""
    store.create()
    store.save()
    newer = store.create()
    store.save()

    reloaded = SessionStore(tmp_path / "sessions", cwd=tmp_path)
    assert reloaded.load_latest().id == newer.id


def test_load_latest_without_sessions(store):
    """Test continuing with no history raises."""
    with pytest.raises(SessionNotFoundError):
        store.load_latest()


def test_load_local(store, tmp_path):
    """Test auto-resume from the working-directory pointer."""
    session = store.create()
    add_messages(store, 2)
    store.save()

    reloaded = SessionStore(tmp_path / "sessions", cwd=tmp_path)
    info = reloaded.load_local()

    assert info is not None
    assert info.id == session.id
    assert reloaded.message_count == 2


def test_load_local_stale_pointer(store, tmp_path):
    """Test a pointer to a missing session is ignored."""
    (tmp_path / LOCAL_POINTER_FILE).write_text(json.dumps({"sessionId": "gone"}))

    assert store.load_local() is None


def test_load_local_corrupt_pointer(store, tmp_path):
    """Test an unreadable pointer is ignored."""
    (tmp_path / LOCAL_POINTER_FILE).write_text("{not json")

    assert store.load_local() is None


def test_list_sessions_skips_corrupt_files(store, tmp_path):
    """Test unreadable session files are skipped."""
    first = store.create()
    store.save()
    second = store.create()
    store.save()
    (tmp_path / "sessions" / "broken.json").write_text("{oops")

    sessions = store.list_sessions()

    assert [s.id for s in sessions] == [second.id, first.id]


def test_corrupt_session_file_raises_not_found(store, tmp_path):
    """Test loading a corrupt session file by id raises."""
    (tmp_path / "sessions").mkdir()
    (tmp_path / "sessions" / "broken.json").write_text("{oops")

    with pytest.raises(SessionNotFoundError):
        store.load("broken")
