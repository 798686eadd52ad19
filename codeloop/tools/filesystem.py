from __future__ import annotations
import os
import re
from typing import List, Optional

from ..edits import BELOW_THRESHOLD, FUZZY_THRESHOLD, apply_edit
from ..messages import ToolResult
from ..ui import Renderer, QuietRenderer

"""
Tool: read_file
Description: Read a file (relative to the workspace, or absolute). Returns up to READ_CHUNK chars; use offset to continue.
Args: {"path": "relative/path", "offset": 0}

Tool: find_file
Description: Find files by (partial, case-insensitive) name below a directory. Defaults to the home directory.
Args: {"name": "config", "dir": "~"}

Tool: write_file
Description: Write a file (full replacement). Creates parent directories.
Args: {"path": "relative/path", "content": "string"}

Tool: edit_file
Description: Replace one occurrence of old_string with new_string; falls back to fuzzy line matching.
Args: {"path": "relative/path", "old_string": "...", "new_string": "..."}

Tool: list_files
Description: Tree listing of a directory, three levels deep.
Args: {"path": "."}

Tool: search
Description: Search source files for a pattern. Returns path:line:text.
Args: {"query": "pattern", "path": "."}
"""

READ_CHUNK = 16000
MAX_FIND_RESULTS = 30
FIND_MAX_DEPTH = 5
LIST_MAX_DEPTH = 3
LIST_MAX_ENTRIES = 200
SEARCH_MAX_CHARS = 4096

FIND_SKIP_DIRS = {"node_modules", ".git", "target", "__pycache__", "Library", ".Trash"}
LIST_SKIP = {
    "node_modules", ".git", "target", "__pycache__", ".next",
    "dist", "build", ".DS_Store", ".cache", "vendor",
}
SEARCH_EXTENSIONS = {
    ".py", ".rs", ".ts", ".tsx", ".js", ".jsx", ".go", ".toml", ".json", ".md",
    ".yaml", ".yml", ".c", ".cpp", ".h", ".java", ".swift", ".kt", ".rb",
}
SEARCH_SKIP_DIRS = {".git", "node_modules", "__pycache__", "target", ".venv", "venv"}


def _resolve(workspace: str, path: str) -> str:
    # absolute paths are allowed (find_file hands them out)
    if os.path.isabs(path):
        return path
    return os.path.join(workspace, path)


def read_file(workspace: str, path: str, offset: Optional[int] = None,
              renderer: Optional[Renderer] = None) -> ToolResult:
    ui = renderer or QuietRenderer()
    full = _resolve(workspace, path)
    start = offset or 0
    ui.tool_action("read", full)
    try:
        with open(full, "r", encoding="utf-8", errors="replace") as f:
            data = f.read()
    except OSError as e:
        ui.error(f"Cannot read {full}: {e}")
        return ToolResult.fail(f"Error: {e}")

    total = len(data)
    chunk = data[start:start + READ_CHUNK]
    end = start + len(chunk)
    if start > 0 or total > end:
        ui.dim(f"    ({total} chars total, showing {start}..{end})")
    output = chunk
    if end < total:
        output += (f"\n\n[{total - end} more chars remaining; "
                   f"call read_file with offset={end} to continue]")
    return ToolResult.ok(output)


def find_file(name: str, dir: Optional[str] = None, renderer: Optional[Renderer] = None) -> ToolResult:
    ui = renderer or QuietRenderer()
    base = os.path.expanduser(dir or "~")
    ui.tool_action("find", f'"{name}" in {base}')
    if not os.path.isdir(base):
        return ToolResult.fail(f"Find error: {base} is not a directory")

    needle = name.lower()
    results: List[str] = []
    base_depth = base.rstrip(os.sep).count(os.sep)
    for root, dirs, files in os.walk(base):
        depth = root.rstrip(os.sep).count(os.sep) - base_depth
        dirs[:] = sorted(d for d in dirs if d not in FIND_SKIP_DIRS)
        for entry in dirs + sorted(files):
            if needle in entry.lower():
                results.append(os.path.join(root, entry))
                if len(results) >= MAX_FIND_RESULTS:
                    break
        if len(results) >= MAX_FIND_RESULTS:
            break
        # entries at depth FIND_MAX_DEPTH are reported but not descended into
        if depth + 1 >= FIND_MAX_DEPTH:
            dirs[:] = []

    ui.dim(f"    {len(results)} results" if results else "    No results")
    return ToolResult.ok("\n".join(results))


def _show_diff(ui: Renderer, path: str, old: str, new: str, collapse: bool) -> bool:
    return ui.diff_summary(path, old, new) if collapse else ui.diff(path, old, new)


def write_file(workspace: str, path: str, content: str, confirm: bool = False,
               collapse_diffs: bool = False, renderer: Optional[Renderer] = None) -> ToolResult:
    ui = renderer or QuietRenderer()
    full = os.path.join(workspace, path)
    ui.tool_action("write", full)

    exists = os.path.exists(full)
    if exists:
        try:
            with open(full, "r", encoding="utf-8", errors="replace") as f:
                old = f.read()
        except OSError:
            old = ""
        if not _show_diff(ui, path, old, content, collapse_diffs):
            ui.dim("    (no changes)")
            return ToolResult.ok(f"{path} unchanged")
        if confirm and not ui.confirm("Apply this change?"):
            return ToolResult.fail("User declined the change")

    try:
        parent = os.path.dirname(full)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(full, "w", encoding="utf-8") as f:
            f.write(content)
    except OSError as e:
        ui.error(f"Cannot write {full}: {e}")
        return ToolResult.fail(f"Error: {e}")
    ui.success(f"  Wrote {path} ({len(content.splitlines())} lines)")
    return ToolResult.ok(f"Wrote {path}")


def edit_file(workspace: str, path: str, old_string: str, new_string: str, confirm: bool = False,
              collapse_diffs: bool = False, renderer: Optional[Renderer] = None) -> ToolResult:
    ui = renderer or QuietRenderer()
    full = os.path.join(workspace, path)
    ui.tool_action("edit", full)
    try:
        with open(full, "r", encoding="utf-8") as f:
            content = f.read()
    except (OSError, UnicodeDecodeError) as e:
        ui.error(f"Cannot read {full}: {e}")
        return ToolResult.fail(f"Error: {e}")

    outcome = apply_edit(content, old_string, new_string)
    if not outcome.ok:
        if outcome.status == BELOW_THRESHOLD:
            ui.error(f"  Closest match only {outcome.score}% similar")
            return ToolResult.fail(f"Error: closest match is only "
                                   f"{outcome.score}% similar (need {FUZZY_THRESHOLD}%)")
        ui.error("  String not found (exact or fuzzy)")
        return ToolResult.fail("Error: old_string not found in file (exact and fuzzy search failed)")

    if outcome.fuzzy:
        preview = content[outcome.start:outcome.end][:60]
        ui.dim(f'    (fuzzy match, {outcome.score}% similar: "{preview}...")')
    _show_diff(ui, path, content, outcome.content, collapse_diffs)

    if confirm and not ui.confirm("Apply this fuzzy match?" if outcome.fuzzy else "Apply this change?"):
        return ToolResult.fail("User declined the change")

    try:
        with open(full, "w", encoding="utf-8") as f:
            f.write(outcome.content)
    except OSError as e:
        ui.error(f"Cannot write {full}: {e}")
        return ToolResult.fail(f"Error: {e}")

    if outcome.fuzzy:
        ui.success(f"  Edited {path} (fuzzy match)")
        return ToolResult.ok(f"Edited {path} (fuzzy match, {outcome.score}% similar)")
    ui.success(f"  Edited {path}")
    return ToolResult.ok(f"Edited {path}")


def _human_size(size: int) -> str:
    if size > 1024 * 1024:
        return f"{size // (1024 * 1024)}MB"
    if size > 1024:
        return f"{size // 1024}KB"
    return f"{size}B"


def _list_recursive(base: str, current: str, depth: int, entries: List[str]) -> None:
    if depth > LIST_MAX_DEPTH or len(entries) > LIST_MAX_ENTRIES:
        return
    try:
        names = sorted(os.listdir(current))
    except OSError:
        return
    indent = "  " * depth
    for name in names:
        if name in LIST_SKIP:
            continue
        full = os.path.join(current, name)
        rel = os.path.relpath(full, base)
        if os.path.isdir(full):
            entries.append(f"{indent}{rel}/")
            _list_recursive(base, full, depth + 1, entries)
        else:
            try:
                size = os.path.getsize(full)
            except OSError:
                size = 0
            entries.append(f"{indent}{rel} ({_human_size(size)})")


def list_files(workspace: str, path: Optional[str] = None, renderer: Optional[Renderer] = None) -> ToolResult:
    ui = renderer or QuietRenderer()
    base = os.path.join(workspace, path) if path else workspace
    ui.tool_action("list", base)
    if not os.path.isdir(base):
        return ToolResult.fail(f"Error: {base} is not a directory")
    entries: List[str] = []
    _list_recursive(base, base, 0, entries)
    ui.dim(f"    {len(entries)} entries")
    return ToolResult.ok("\n".join(entries))


def search(workspace: str, query: str, path: Optional[str] = None,
           renderer: Optional[Renderer] = None) -> ToolResult:
    ui = renderer or QuietRenderer()
    base = os.path.join(workspace, path) if path else workspace
    ui.tool_action("search", f'"{query}" in {base}')
    try:
        rx = re.compile(query)
    except re.error:
        rx = re.compile(re.escape(query))

    hits: List[str] = []
    size = 0
    for root, dirs, files in os.walk(base):
        dirs[:] = sorted(d for d in dirs if d not in SEARCH_SKIP_DIRS)
        for fn in sorted(files):
            if os.path.splitext(fn)[1] not in SEARCH_EXTENSIONS:
                continue
            p = os.path.join(root, fn)
            try:
                with open(p, "r", encoding="utf-8", errors="ignore") as f:
                    for i, line in enumerate(f, 1):
                        if rx.search(line):
                            hit = f"{p}:{i}:{line.rstrip()}"
                            hits.append(hit)
                            size += len(hit) + 1
                            if size >= SEARCH_MAX_CHARS:
                                break
            except OSError:
                continue
            if size >= SEARCH_MAX_CHARS:
                break
        if size >= SEARCH_MAX_CHARS:
            break

    text = "\n".join(hits)[:SEARCH_MAX_CHARS]
    count = len(text.splitlines())
    ui.dim(f"    {count} matches" if count else "    No matches")
    return ToolResult.ok(text)
