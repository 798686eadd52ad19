"""Tests for REPL command handling."""

import os

import pytest

from codeloop.backend import StubBackend
from codeloop.config import Autonomy
from codeloop.repl import Repl
from codeloop.runtime import Agent
from codeloop.sessions import SessionManager
from codeloop.ui import QuietRenderer


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "ws"
    ws.mkdir()
    (ws / "a.py").write_text("x = 1\n")
    (ws / "sub").mkdir()
    return ws


@pytest.fixture
def repl(workspace, tmp_path):
    ui = QuietRenderer()
    agent = Agent(StubBackend(), str(workspace), renderer=ui, stream=False)
    return Repl(agent, ui, SessionManager(tmp_path / "sessions"))


class TestCommands:

    def test_quit(self, repl):
        assert repl.handle("quit") is False
        assert repl.handle("/exit") is False

    def test_blank_line_ignored(self, repl):
        assert repl.handle("   ") is True
        assert len(repl.conv) == 1

    def test_add_and_drop(self, repl):
        repl.handle("add a.py")
        assert repl.agent.context_files == ["a.py"]
        repl.handle("add a.py")
        assert repl.agent.context_files == ["a.py"]
        repl.handle("drop a.py")
        assert repl.agent.context_files == []

    def test_add_missing_file(self, repl):
        repl.handle("add nope.py")
        assert repl.agent.context_files == []
        assert "  File not found: nope.py" in repl.ui.lines

    def test_mode(self, repl):
        repl.handle("mode suggest")
        assert repl.agent.autonomy is Autonomy.SUGGEST
        repl.handle("mode bogus")
        assert repl.agent.autonomy is Autonomy.SUGGEST

    def test_cd_resets_conversation(self, repl, workspace):
        repl.handle("hi")
        assert len(repl.conv) > 1
        repl.handle("add a.py")
        repl.handle("cd sub")
        assert repl.agent.workspace == os.path.realpath(workspace / "sub")
        assert repl.agent.context_files == []
        assert len(repl.conv) == 1

    def test_cd_missing(self, repl, workspace):
        repl.handle("cd missing")
        assert repl.agent.workspace == str(workspace)

    def test_cd_path_with_spaces(self, repl, workspace):
        (workspace / "My Projects").mkdir()
        repl.handle("cd My Projects")
        assert repl.agent.workspace == os.path.realpath(workspace / "My Projects")
        assert len(repl.conv) == 1

    def test_add_and_drop_file_with_spaces(self, repl, workspace):
        (workspace / "release notes.md").write_text("notes\n")
        repl.handle("add release notes.md")
        assert repl.agent.context_files == ["release notes.md"]
        repl.handle("drop release notes.md")
        assert repl.agent.context_files == []
        assert len(repl.conv) == 1

    def test_new(self, repl):
        old_id = repl.session_id
        repl.handle("hi")
        repl.handle("new")
        assert len(repl.conv) == 1
        assert repl.session_id >= old_id


class TestFreeText:

    def test_task_that_starts_with_a_command_word(self, repl):
        repl.handle("add a retry to the fetch helper")
        assert repl.agent.context_files == []
        assert repl.conv[1].content == "add a retry to the fetch helper"

    def test_cd_with_words_that_are_not_a_path(self, repl, workspace):
        repl.handle("cd into the build folder and run make")
        assert repl.agent.workspace == str(workspace)
        assert repl.conv[1].content == "cd into the build folder and run make"

    def test_bare_command_with_text_is_a_task(self, repl):
        repl.handle("status of the migration work?")
        assert repl.conv[1].content == "status of the migration work?"

    def test_case_preserved(self, repl):
        repl.handle("Explain README.md please, in detail")
        assert repl.conv[1].content == "Explain README.md please, in detail"

    def test_turn_is_saved(self, repl):
        repl.handle("please look around this project")
        saved = repl.sessions.load(repl.session_id)
        assert saved.preview() == "please look around this project"
        assert saved.messages[-1]["content"] == "Task complete: Explored the workspace."


class TestResume:

    def test_resume_restores_state(self, repl, workspace, tmp_path):
        repl.handle("add a.py")
        repl.handle("mode full-auto")
        repl.handle("please look around this project")
        session_id = repl.session_id
        saved_len = len(repl.conv)

        ui = QuietRenderer()
        agent = Agent(StubBackend(), str(tmp_path), renderer=ui, stream=False)
        resumed = Repl(agent, ui, SessionManager(tmp_path / "sessions"), resume=session_id)

        assert resumed.session_id == session_id
        assert len(resumed.conv) == saved_len
        assert agent.workspace == str(workspace)
        assert agent.context_files == ["a.py"]
        assert agent.autonomy is Autonomy.FULL_AUTO

    def test_resume_unknown(self, repl):
        assert repl.resume("does-not-exist") is False
        assert any("Cannot resume" in line for line in repl.ui.lines)
