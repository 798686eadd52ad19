"""Tests for session persistence."""

import json

import pytest

from codeloop.messages import (
    AssistantMessage, Conversation, ToolInvocationRecord, ToolMessage, UserMessage,
)
from codeloop.sessions import Session, SessionError, SessionManager


@pytest.fixture
def manager(tmp_path):
    return SessionManager(tmp_path / "sessions")


def sample_conversation():
    call = ToolInvocationRecord("c1", "read_file", '{"path": "a.py"}')
    raw = {"role": "assistant", "content": None, "tool_calls": [call.to_dict()],
           "reasoning": "provider-specific field"}
    return Conversation("system prompt", [
        UserMessage("fix the failing test in a.py"),
        AssistantMessage(None, [call], raw=raw),
        ToolMessage("c1", '{"success": true, "output": "x = 1"}'),
        AssistantMessage("Fixed."),
    ])


class TestSessionManager:

    def test_save_and_load(self, manager):
        conv = sample_conversation()
        session = Session.from_conversation("abc", "/work", conv, ["a.py"], "suggest")
        path = manager.save(session)
        assert path.name == "abc.json"

        loaded = manager.load("abc")
        assert loaded.workspace == "/work"
        assert loaded.context_files == ["a.py"]
        assert loaded.autonomy == "suggest"
        restored = loaded.conversation()
        assert restored.to_dicts() == conv.to_dicts()
        # provider extras survive the round trip
        assert restored[2].to_dict()["reasoning"] == "provider-specific field"
        assert restored[2].tool_calls[0].name == "read_file"

    def test_list_newest_first(self, manager):
        conv = sample_conversation()
        manager.save(Session.from_conversation("old", "/w", conv, [], "", created_at="2024-01-01 10:00"))
        manager.save(Session.from_conversation("new", "/w", conv, [], "", created_at="2024-06-01 10:00"))
        ids = [s.id for s in manager.list_sessions()]
        assert ids == ["new", "old"]
        assert manager.latest().id == "new"
        assert manager.list_sessions()[0].preview == "fix the failing test in a.py"

    def test_unreadable_files_skipped_in_listing(self, manager):
        manager.save(Session.from_conversation("good", "/w", sample_conversation(), [], ""))
        (manager.root / "broken.json").write_text("{not json")
        assert [s.id for s in manager.list_sessions()] == ["good"]

    def test_empty_root(self, tmp_path):
        manager = SessionManager(tmp_path / "nothing-here")
        assert manager.list_sessions() == []
        assert manager.latest() is None

    def test_load_missing(self, manager):
        with pytest.raises(SessionError, match="Read error"):
            manager.load("missing")

    def test_load_malformed(self, manager):
        manager.root.mkdir(parents=True)
        (manager.root / "bad.json").write_text("[1, 2")
        with pytest.raises(SessionError, match="Parse error"):
            manager.load("bad")

    def test_load_missing_field(self, manager):
        manager.root.mkdir(parents=True)
        (manager.root / "partial.json").write_text(json.dumps({"id": "partial"}))
        with pytest.raises(SessionError, match="missing field"):
            manager.load("partial")

    def test_invalid_message_log(self, manager):
        manager.root.mkdir(parents=True)
        record = {"id": "x", "workspace": "/w", "messages": [{"role": "user", "content": "no system"}]}
        (manager.root / "x.json").write_text(json.dumps(record))
        with pytest.raises(SessionError, match="invalid message log"):
            manager.load("x").conversation()

    def test_tool_message_without_id_is_invalid(self, manager):
        manager.root.mkdir(parents=True)
        record = {"id": "t", "workspace": "/w", "messages": [
            {"role": "system", "content": "sys"},
            {"role": "tool", "tool_call_id": "", "content": "orphan"},
        ]}
        (manager.root / "t.json").write_text(json.dumps(record))
        with pytest.raises(SessionError, match="invalid message log"):
            manager.load("t").conversation()

    def test_delete(self, manager):
        manager.save(Session.from_conversation("gone", "/w", sample_conversation(), [], ""))
        assert manager.delete("gone")
        assert not manager.delete("gone")

    def test_session_ids_sort_by_time(self):
        assert SessionManager.new_session_id() <= SessionManager.new_session_id()

    def test_preview_of_empty_session(self):
        session = Session.from_conversation("e", "/w", Conversation("sys"), [], "")
        assert session.preview() == "(empty)"
