"""Tests for the config command and session selection."""

import json

import pytest
from typer.testing import CliRunner

from codeloop.cli import app, mask_key, resume_target
from codeloop.messages import Conversation, UserMessage
from codeloop.sessions import Session, SessionManager

runner = CliRunner()


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    monkeypatch.setattr("codeloop.config.CONFIG_DIR", tmp_path)
    return tmp_path


class TestConfigCommand:

    def test_empty(self, config_dir):
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "No saved config" in result.output

    def test_save_then_update(self, config_dir):
        result = runner.invoke(app, ["config", "--api-key", "sk-secret-value", "--api-model", "m1"])
        assert result.exit_code == 0
        result = runner.invoke(app, ["config", "--api-model", "m2"])
        assert result.exit_code == 0
        saved = json.loads((config_dir / "config.json").read_text())
        assert saved == {"api_key": "sk-secret-value", "api_model": "m2"}

    def test_show_masks_key(self, config_dir):
        runner.invoke(app, ["config", "--api-key", "sk-secret-value"])
        result = runner.invoke(app, ["config"])
        assert "sk-s..." in result.output
        assert "secret" not in result.output

    @pytest.mark.parametrize("key,masked", [("sk-secret-value", "sk-s..."), ("short", "***")])
    def test_mask_key(self, key, masked):
        assert mask_key(key) == masked


class TestResumeTarget:

    @pytest.fixture
    def manager(self, tmp_path):
        manager = SessionManager(tmp_path / "sessions")
        conv = Conversation("sys", [UserMessage("hi")])
        manager.save(Session.from_conversation("old", "/w", conv, [], "", created_at="2024-01-01 10:00"))
        manager.save(Session.from_conversation("new", "/w", conv, [], "", created_at="2024-06-01 10:00"))
        return manager

    def test_continue_picks_latest(self, manager):
        assert resume_target(manager, None, True) == "new"

    def test_explicit_id_wins(self, manager):
        assert resume_target(manager, "old", True) == "old"

    def test_no_flags(self, manager):
        assert resume_target(manager, None, False) is None

    def test_continue_without_sessions(self, tmp_path):
        assert resume_target(SessionManager(tmp_path / "empty"), None, True) is None
