"""Tests for the tool schema, parser and executors."""

import json
import os
import shutil
import tempfile

import pytest

from codeloop.tools import (
    TOOL_NAMES, ChangeDir, EditFile, FindFile, ListFiles, ReadFile, RunCommand, Search, Submit,
    WriteFile, execute_tool, parse_tool_call, tool_definitions,
)
from codeloop.tools.filesystem import (
    READ_CHUNK, edit_file, find_file, list_files, read_file, search, write_file,
)
from codeloop.tools.shell import OUTPUT_LIMIT, run_command
from codeloop.ui import QuietRenderer


@pytest.fixture
def temp_repo():
    """Create a temporary workspace for testing."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir)


def _write(root, rel, content):
    path = os.path.join(root, rel)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write(content)
    return path


def _read(root, rel):
    with open(os.path.join(root, rel)) as f:
        return f.read()


class TestToolSchema:

    def test_nine_tools_in_order(self):
        names = [t["function"]["name"] for t in tool_definitions()]
        assert names == list(TOOL_NAMES)
        assert names == ["read_file", "find_file", "write_file", "edit_file", "list_files",
                         "search", "run_command", "change_directory", "submit"]

    def test_required_fields(self):
        defs = {t["function"]["name"]: t["function"]["parameters"] for t in tool_definitions()}
        assert defs["edit_file"]["required"] == ["path", "old_string", "new_string"]
        assert "required" not in defs["list_files"]
        assert defs["read_file"]["properties"]["offset"]["type"] == "integer"


class TestParser:

    def test_read_file_with_offset(self):
        call = parse_tool_call("read_file", json.dumps({"path": "a.py", "offset": 10}))
        assert call == ReadFile("a.py", 10)
        assert call.read_only

    def test_edit_file_wire_names(self):
        call = parse_tool_call("edit_file", json.dumps({"path": "a", "old_string": "x", "new_string": "y"}))
        assert call == EditFile("a", "x", "y")
        assert not call.read_only

    def test_all_variants(self):
        assert parse_tool_call("find_file", '{"name": "cfg"}') == FindFile("cfg")
        assert parse_tool_call("write_file", '{"path": "p", "content": ""}') == WriteFile("p", "")
        assert parse_tool_call("list_files", "{}") == ListFiles()
        assert parse_tool_call("search", '{"query": "q", "path": "src"}') == Search("q", "src")
        assert parse_tool_call("run_command", '{"command": "ls"}') == RunCommand("ls")
        assert parse_tool_call("change_directory", '{"path": "/tmp"}') == ChangeDir("/tmp")
        assert parse_tool_call("submit", '{"summary": "done"}') == Submit("done")

    def test_read_only_classification(self):
        read_only = {cls.name for cls in (ReadFile, FindFile, ListFiles, Search)}
        mutating = {cls.name for cls in (WriteFile, EditFile, RunCommand, ChangeDir, Submit)}
        assert all(c.read_only for c in (ReadFile, FindFile, ListFiles, Search))
        assert not any(c.read_only for c in (WriteFile, EditFile, RunCommand, ChangeDir, Submit))
        assert read_only | mutating == set(TOOL_NAMES)

    @pytest.mark.parametrize("name,args", [
        ("read_file", "not json"),
        ("read_file", "[1, 2]"),
        ("read_file", "{}"),
        ("read_file", '{"path": 3}'),
        ("edit_file", '{"path": "a", "old_string": "x"}'),
        ("delete_everything", '{"path": "/"}'),
    ])
    def test_bad_input_yields_none(self, name, args):
        assert parse_tool_call(name, args) is None

    def test_ill_typed_optional_is_ignored(self):
        assert parse_tool_call("read_file", '{"path": "a", "offset": "10"}') == ReadFile("a")
        assert parse_tool_call("read_file", '{"path": "a", "offset": true}') == ReadFile("a")
        assert parse_tool_call("list_files", '{"path": 5}') == ListFiles()


class TestFilesystemTools:

    def test_read_file(self, temp_repo):
        _write(temp_repo, "hello.txt", "hello world")
        result = read_file(temp_repo, "hello.txt")
        assert result.success
        assert result.output == "hello world"

    def test_read_missing_file(self, temp_repo):
        result = read_file(temp_repo, "nope.txt")
        assert not result.success
        assert result.output.startswith("Error:")

    def test_read_large_file_in_chunks(self, temp_repo):
        _write(temp_repo, "big.txt", "x" * (READ_CHUNK + 100))
        first = read_file(temp_repo, "big.txt")
        assert first.output.startswith("x" * READ_CHUNK)
        assert f"offset={READ_CHUNK}" in first.output
        assert "100 more chars remaining" in first.output
        rest = read_file(temp_repo, "big.txt", offset=READ_CHUNK)
        assert rest.output == "x" * 100

    def test_read_absolute_path(self, temp_repo):
        path = _write(temp_repo, "abs.txt", "abs")
        assert read_file("/nonexistent-workspace", path).output == "abs"

    def test_write_creates_parents(self, temp_repo):
        result = write_file(temp_repo, "deep/nested/f.py", "print(1)\n")
        assert result.success
        assert _read(temp_repo, "deep/nested/f.py") == "print(1)\n"

    def test_write_unchanged(self, temp_repo):
        _write(temp_repo, "same.txt", "same")
        result = write_file(temp_repo, "same.txt", "same")
        assert result.success
        assert "unchanged" in result.output

    def test_write_declined_in_suggest_mode(self, temp_repo):
        _write(temp_repo, "f.txt", "old")
        ui = QuietRenderer(auto_confirm=False)
        result = write_file(temp_repo, "f.txt", "new", confirm=True, renderer=ui)
        assert not result.success
        assert _read(temp_repo, "f.txt") == "old"

    def test_edit_exact(self, temp_repo):
        _write(temp_repo, "m.py", "a = 1\nb = 2\n")
        result = edit_file(temp_repo, "m.py", "b = 2", "b = 3")
        assert result.success
        assert result.output == "Edited m.py"
        assert _read(temp_repo, "m.py") == "a = 1\nb = 3\n"

    def test_edit_fuzzy(self, temp_repo):
        _write(temp_repo, "m.py", "def f():\n    x = 1\n    return x\n")
        result = edit_file(temp_repo, "m.py", "x = 1\nreturn x", "    return 1")
        assert result.success
        assert "fuzzy match, 100% similar" in result.output
        assert _read(temp_repo, "m.py") == "def f():\n    return 1\n"

    def test_edit_not_found(self, temp_repo):
        _write(temp_repo, "m.py", "a = 1\n")
        result = edit_file(temp_repo, "m.py", "zzz", "y")
        assert not result.success
        assert "exact and fuzzy search failed" in result.output
        assert _read(temp_repo, "m.py") == "a = 1\n"

    def test_edit_below_threshold(self, temp_repo):
        _write(temp_repo, "m.py", "a\nb\nc\n")
        result = edit_file(temp_repo, "m.py", "a\nX\nY", "new")
        assert not result.success
        assert result.output == "Error: closest match is only 33% similar (need 60%)"

    def test_list_files(self, temp_repo):
        _write(temp_repo, "src/main.py", "x" * 2048)
        _write(temp_repo, "node_modules/pkg/index.js", "")
        result = list_files(temp_repo)
        lines = result.output.splitlines()
        assert "src/" in lines
        assert "  src/main.py (2KB)" in lines
        assert not any("node_modules" in l for l in lines)

    def test_find_file(self, temp_repo):
        _write(temp_repo, "a/b/Config.toml", "")
        _write(temp_repo, ".git/config", "")
        result = find_file("config", temp_repo)
        assert result.success
        assert result.output.splitlines() == [os.path.join(temp_repo, "a", "b", "Config.toml")]

    def test_find_file_bad_dir(self, temp_repo):
        assert not find_file("x", os.path.join(temp_repo, "missing")).success

    def test_search(self, temp_repo):
        _write(temp_repo, "pkg/mod.py", "import os\nTODO = 1\n")
        _write(temp_repo, "notes.bin", "TODO\n")
        result = search(temp_repo, "TODO")
        assert result.output == f"{os.path.join(temp_repo, 'pkg', 'mod.py')}:2:TODO = 1"

    def test_search_invalid_regex_is_literal(self, temp_repo):
        _write(temp_repo, "a.py", "call(x\n")
        assert ":1:call(x" in search(temp_repo, "call(").output


class TestShell:

    def test_success(self, temp_repo):
        result = run_command(temp_repo, "echo hi && pwd")
        assert result.success
        assert result.output.splitlines() == ["hi", os.path.realpath(temp_repo)]

    def test_failure_exit_status(self, temp_repo):
        result = run_command(temp_repo, "echo oops >&2; exit 3")
        assert not result.success
        assert "oops" in result.output

    def test_output_capped(self, temp_repo):
        result = run_command(temp_repo, "head -c 10000 /dev/zero | tr '\\0' a")
        assert len(result.output) == OUTPUT_LIMIT

    def test_timeout(self, temp_repo):
        result = run_command(temp_repo, "sleep 5", timeout=1)
        assert not result.success
        assert "timed out" in result.output


class TestExecuteTool:

    def test_dispatch_to_executor(self, temp_repo):
        _write(temp_repo, "r.txt", "content")
        result = execute_tool(ReadFile("r.txt"), temp_repo)
        assert result.success and result.output == "content"

    def test_submit_fallback(self, temp_repo):
        result = execute_tool(Submit("all done"), temp_repo)
        assert result.output == "Task complete: all done"

    def test_result_json(self, temp_repo):
        result = execute_tool(ReadFile("missing"), temp_repo)
        data = json.loads(result.to_json())
        assert data["success"] is False
        assert set(data) == {"success", "output"}
