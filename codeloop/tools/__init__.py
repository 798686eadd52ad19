from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple, Type, Union

from ..messages import ToolResult
from ..ui import Renderer, QuietRenderer
from .filesystem import read_file, find_file, write_file, edit_file, list_files, search
from .shell import run_command

logger = logging.getLogger("codeloop.tools")


# -------- parsed tool calls --------
# read_only calls may run in parallel with each other; everything else runs
# sequentially (mutating) or is handled by the scheduler itself (control flow).

@dataclass
class ReadFile:
    path: str
    offset: Optional[int] = None
    name: ClassVar[str] = "read_file"
    read_only: ClassVar[bool] = True


@dataclass
class FindFile:
    query: str
    dir: Optional[str] = None
    name: ClassVar[str] = "find_file"
    read_only: ClassVar[bool] = True


@dataclass
class WriteFile:
    path: str
    content: str
    name: ClassVar[str] = "write_file"
    read_only: ClassVar[bool] = False


@dataclass
class EditFile:
    path: str
    old: str
    new: str
    name: ClassVar[str] = "edit_file"
    read_only: ClassVar[bool] = False


@dataclass
class ListFiles:
    path: Optional[str] = None
    name: ClassVar[str] = "list_files"
    read_only: ClassVar[bool] = True


@dataclass
class Search:
    query: str
    path: Optional[str] = None
    name: ClassVar[str] = "search"
    read_only: ClassVar[bool] = True


@dataclass
class RunCommand:
    command: str
    name: ClassVar[str] = "run_command"
    read_only: ClassVar[bool] = False


@dataclass
class ChangeDir:
    path: str
    name: ClassVar[str] = "change_directory"
    read_only: ClassVar[bool] = False


@dataclass
class Submit:
    summary: str
    name: ClassVar[str] = "submit"
    read_only: ClassVar[bool] = False


ToolCall = Union[ReadFile, FindFile, WriteFile, EditFile, ListFiles, Search, RunCommand, ChangeDir, Submit]

# wire name -> (variant, [(field, wire key, type, required)])
_FieldSpec = Tuple[str, str, type, bool]
_PARSERS: Dict[str, Tuple[Type, List[_FieldSpec]]] = {
    "read_file": (ReadFile, [("path", "path", str, True), ("offset", "offset", int, False)]),
    "find_file": (FindFile, [("query", "name", str, True), ("dir", "dir", str, False)]),
    "write_file": (WriteFile, [("path", "path", str, True), ("content", "content", str, True)]),
    "edit_file": (EditFile, [("path", "path", str, True), ("old", "old_string", str, True),
                             ("new", "new_string", str, True)]),
    "list_files": (ListFiles, [("path", "path", str, False)]),
    "search": (Search, [("query", "query", str, True), ("path", "path", str, False)]),
    "run_command": (RunCommand, [("command", "command", str, True)]),
    "change_directory": (ChangeDir, [("path", "path", str, True)]),
    "submit": (Submit, [("summary", "summary", str, True)]),
}

TOOL_NAMES = tuple(_PARSERS)


def _typed(value: Any, kind: type) -> bool:
    if kind is int:
        # JSON booleans are not offsets, and offsets are never negative
        return isinstance(value, int) and not isinstance(value, bool) and value >= 0
    return isinstance(value, kind)


def parse_tool_call(name: str, arguments: str) -> Optional[ToolCall]:
    """Turn a tool name plus raw JSON arguments into a typed call, or None."""
    entry = _PARSERS.get(name)
    if entry is None:
        return None
    try:
        args = json.loads(arguments or "{}")
    except (TypeError, ValueError):
        logger.debug("Unparseable arguments for %s: %r", name, arguments)
        return None
    if not isinstance(args, dict):
        return None

    cls, fields = entry
    kwargs: Dict[str, Any] = {}
    for field_name, key, kind, required in fields:
        value = args.get(key)
        if _typed(value, kind):
            kwargs[field_name] = value
        elif required:
            logger.debug("Missing or ill-typed %r for %s", key, name)
            return None
    return cls(**kwargs)


# -------- schema sent to the model --------

def _function(name: str, description: str, properties: Dict[str, Dict[str, str]],
              required: List[str]) -> Dict[str, Any]:
    params: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        params["required"] = required
    return {"type": "function", "function": {"name": name, "description": description, "parameters": params}}


def _prop(kind: str, description: str) -> Dict[str, str]:
    return {"type": kind, "description": description}


def tool_definitions() -> List[Dict[str, Any]]:
    return [
        _function("read_file",
                  "Read a file's contents. Returns up to 16000 chars at a time. "
                  "Use offset to read further into large files.",
                  {"path": _prop("string", "File path (relative to workspace, or absolute)"),
                   "offset": _prop("integer", "Character offset to start reading from. "
                                              "Use this to continue reading a large file.")},
                  ["path"]),
        _function("find_file",
                  "Find files by name anywhere on the filesystem. Searches recursively. "
                  "Use this when you don't know where a file is.",
                  {"name": _prop("string", "File or directory name to search for (partial match)"),
                   "dir": _prop("string", "Starting directory. Defaults to user home (~).")},
                  ["name"]),
        _function("write_file",
                  "Write content to a file (full replacement). Creates parent directories. "
                  "Use edit_file for targeted changes instead.",
                  {"path": _prop("string", "File path relative to workspace"),
                   "content": _prop("string", "Full file content to write")},
                  ["path", "content"]),
        _function("edit_file",
                  "Edit a file by replacing a specific string with new text. Preferred over write_file "
                  "for targeted changes. Uses fuzzy matching if exact match fails.",
                  {"path": _prop("string", "File path relative to workspace"),
                   "old_string": _prop("string", "Exact text to find (include surrounding context for uniqueness)"),
                   "new_string": _prop("string", "Replacement text")},
                  ["path", "old_string", "new_string"]),
        _function("list_files",
                  "List files and directories in a tree view.",
                  {"path": _prop("string", "Directory path relative to workspace. Defaults to root.")},
                  []),
        _function("search",
                  "Search for a text pattern in source files. Returns matching lines with file paths "
                  "and line numbers.",
                  {"query": _prop("string", "Text pattern to search for"),
                   "path": _prop("string", "Directory to search in. Defaults to workspace root.")},
                  ["query"]),
        _function("run_command",
                  "Execute a shell command in the workspace directory. Returns stdout and stderr.",
                  {"command": _prop("string", "Shell command to execute")},
                  ["command"]),
        _function("change_directory",
                  "Change the working directory. Use this when the user wants to switch to a "
                  "different folder. Accepts absolute paths.",
                  {"path": _prop("string", "Absolute path to the directory to switch to")},
                  ["path"]),
        _function("submit",
                  "Mark the task as complete. Call when finished with the user's request.",
                  {"summary": _prop("string", "Brief summary of what was accomplished")},
                  ["summary"]),
    ]


# -------- execution --------

Executor = Callable[[ToolCall, str, bool, bool, Renderer], ToolResult]

_EXECUTORS: Dict[Type, Executor] = {
    ReadFile: lambda c, ws, cw, cd, r: read_file(ws, c.path, c.offset, renderer=r),
    FindFile: lambda c, ws, cw, cd, r: find_file(c.query, c.dir, renderer=r),
    WriteFile: lambda c, ws, cw, cd, r: write_file(ws, c.path, c.content, confirm=cw,
                                                   collapse_diffs=cd, renderer=r),
    EditFile: lambda c, ws, cw, cd, r: edit_file(ws, c.path, c.old, c.new, confirm=cw,
                                                 collapse_diffs=cd, renderer=r),
    ListFiles: lambda c, ws, cw, cd, r: list_files(ws, c.path, renderer=r),
    Search: lambda c, ws, cw, cd, r: search(ws, c.query, c.path, renderer=r),
    RunCommand: lambda c, ws, cw, cd, r: run_command(ws, c.command, renderer=r),
}


def execute_tool(call: ToolCall, workspace: str, confirm_writes: bool = False,
                 collapse_diffs: bool = False, renderer: Optional[Renderer] = None) -> ToolResult:
    """Run one parsed call. Always returns a ToolResult."""
    ui = renderer or QuietRenderer()
    if isinstance(call, ChangeDir):
        # the scheduler resolves directory changes; this is only a fallback
        ui.tool_action("cd", call.path)
        return ToolResult.ok(f"Changed to {call.path}")
    if isinstance(call, Submit):
        ui.success(call.summary)
        return ToolResult.ok(f"Task complete: {call.summary}")

    fn = _EXECUTORS.get(type(call))
    if fn is None:
        return ToolResult.fail(f"Unknown tool: {getattr(call, 'name', type(call).__name__)}")
    try:
        return fn(call, workspace, confirm_writes, collapse_diffs, ui)
    except OSError as e:
        logger.debug("%s raised %s", call.name, e)
        return ToolResult.fail(f"Error: {e}")


__all__ = [
    "ToolCall", "ReadFile", "FindFile", "WriteFile", "EditFile", "ListFiles", "Search",
    "RunCommand", "ChangeDir", "Submit", "ToolResult", "TOOL_NAMES",
    "parse_tool_call", "tool_definitions", "execute_tool",
]
