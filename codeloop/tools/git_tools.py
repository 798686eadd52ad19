"""
Git collaborator used by the turn engine and the REPL (not exposed to the model).

git_auto_commit: stage everything and commit as codeloop; returns the short hash.
git_undo: soft-reset the last commit, only if codeloop authored it.
git_status: short status of the working tree.
"""
from __future__ import annotations
import os
import subprocess
from typing import List

AUTHOR_NAME = "codeloop"
AUTHOR = f"{AUTHOR_NAME} <codeloop@local>"


class GitError(RuntimeError):
    pass


def _run(repo: str, args: List[str]) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(["git", *args], cwd=repo, capture_output=True, text=True)
    except OSError as e:
        raise GitError(f"git {args[0]} failed: {e}") from e


def is_git_repo(workspace: str) -> bool:
    return os.path.exists(os.path.join(workspace, ".git"))


def git_auto_commit(workspace: str, message: str) -> str:
    _run(workspace, ["add", "-A"])
    # exit 0 means the index matches HEAD
    if _run(workspace, ["diff", "--cached", "--quiet"]).returncode == 0:
        raise GitError("No changes to commit")

    p = _run(workspace, ["commit", "-m", message, "--author", AUTHOR])
    if p.returncode != 0:
        raise GitError((p.stderr or p.stdout).strip())
    return _run(workspace, ["rev-parse", "--short", "HEAD"]).stdout.strip()


def git_undo(workspace: str) -> str:
    log = _run(workspace, ["log", "-1", "--format=%an|%s"]).stdout.strip()
    if not log.startswith(f"{AUTHOR_NAME}|"):
        raise GitError("Last commit was not made by codeloop, refusing to undo")
    message = log.split("|", 1)[1]

    p = _run(workspace, ["reset", "--soft", "HEAD~1"])
    if p.returncode != 0:
        raise GitError(p.stderr.strip())
    return f"Undid: {message}"


def git_status(workspace: str) -> str:
    return _run(workspace, ["status", "--short"]).stdout
