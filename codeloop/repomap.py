from __future__ import annotations
import os
from pathlib import Path
from typing import List, Tuple

"""
Workspace map for the system prompt.

scan_workspace: directory tree (dirs first, code files only), capped at MAP_CHAR_LIMIT.
auto_context: contents of project identity files (README, pyproject.toml, ...), truncated.
"""

IDENTITY_FILES = [
    "README.md", "README.rst", "README.txt", "README",
    "Cargo.toml", "package.json", "pyproject.toml", "setup.py", "setup.cfg",
    "go.mod", "Gemfile", "build.gradle", "pom.xml", "Makefile",
    "docker-compose.yml", "Dockerfile",
    ".codeloop.toml",
]

SKIP_DIRS = {
    "node_modules", ".git", "target", "__pycache__", ".next",
    "dist", "build", ".cache", "vendor", ".venv", "venv",
    ".tox", "coverage", ".mypy_cache", ".pytest_cache",
}

SKIP_FILES = {".DS_Store", "Thumbs.db", "package-lock.json", "yarn.lock", "Cargo.lock"}

CODE_EXTENSIONS = {
    ".rs", ".py", ".ts", ".tsx", ".js", ".jsx", ".go", ".c", ".cpp", ".h",
    ".java", ".kt", ".swift", ".rb", ".toml", ".yaml", ".yml", ".json",
    ".md", ".txt", ".sh", ".bash", ".zsh", ".css", ".scss", ".html",
}

MAX_DEPTH = 4
MAP_CHAR_LIMIT = 4000
CONTEXT_PER_FILE = 2000
CONTEXT_TOTAL = 8000


def _walk(directory: Path, depth: int, lines: List[str]) -> None:
    if depth > MAX_DEPTH:
        return
    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError:
        return

    indent = "  " * depth
    dirs: List[Path] = []
    files: List[str] = []
    for entry in entries:
        if entry.is_dir():
            if entry.name not in SKIP_DIRS:
                dirs.append(entry)
        elif entry.name not in SKIP_FILES:
            if entry.suffix in CODE_EXTENSIONS or entry.name in ("Makefile", "Dockerfile"):
                files.append(entry.name)

    for d in dirs:
        lines.append(f"{indent}{d.name}/")
        _walk(d, depth + 1, lines)
    for name in files:
        lines.append(f"{indent}{name}")


def scan_workspace(workspace: str) -> str:
    """Concise tree of the workspace for the model's context."""
    lines = [f"Workspace: {workspace}", ""]
    _walk(Path(workspace), 0, lines)

    out: List[str] = []
    size = 0
    for line in lines:
        if size + len(line) > MAP_CHAR_LIMIT:
            out.append("  ... (truncated)\n")
            break
        out.append(line + "\n")
        size += len(line) + 1
    return "".join(out)


def auto_context(workspace: str) -> List[Tuple[str, str]]:
    """(filename, truncated content) for each identity file present."""
    results: List[Tuple[str, str]] = []
    total = 0
    for name in IDENTITY_FILES:
        path = os.path.join(workspace, name)
        if not os.path.isfile(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as f:
                content = f.read()
        except (OSError, UnicodeDecodeError):
            continue
        budget = min(CONTEXT_PER_FILE, CONTEXT_TOTAL - total)
        if budget <= 0:
            break
        chunk = content[:budget]
        total += len(chunk)
        results.append((name, chunk))
    return results
