"""Session persistence for the codeloop REPL, one JSON file per session."""

from __future__ import annotations
import json
import time
from dataclasses import dataclass, asdict, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import CONFIG_DIR
from .messages import Conversation

PREVIEW_CHARS = 50


class SessionError(RuntimeError):
    pass


@dataclass
class Session:
    """Everything needed to pick a conversation back up."""
    id: str
    workspace: str
    messages: List[Dict[str, Any]]
    context_files: List[str] = field(default_factory=list)
    autonomy: str = ""
    created_at: str = ""

    @classmethod
    def from_conversation(cls, session_id: str, workspace: str, conv: Conversation,
                          context_files: List[str], autonomy: str,
                          created_at: Optional[str] = None) -> "Session":
        return cls(id=session_id, workspace=workspace, messages=conv.to_dicts(),
                   context_files=list(context_files), autonomy=autonomy,
                   created_at=created_at or datetime.now().strftime("%Y-%m-%d %H:%M"))

    def conversation(self) -> Conversation:
        try:
            return Conversation.from_dicts(self.messages)
        except ValueError as e:
            raise SessionError(f"Session {self.id} has an invalid message log: {e}") from e

    def preview(self) -> str:
        for m in self.messages:
            if m.get("role") == "user" and isinstance(m.get("content"), str):
                return m["content"][:PREVIEW_CHARS]
        return "(empty)"


@dataclass
class SessionSummary:
    id: str
    created_at: str
    preview: str


class SessionManager:
    """Saves, loads and lists sessions under `root`."""

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root) if root else CONFIG_DIR / "sessions"

    def _path(self, session_id: str) -> Path:
        return self.root / f"{session_id}.json"

    @staticmethod
    def new_session_id() -> str:
        # hex milliseconds: short, sortable
        return format(int(time.time() * 1000), "x")

    def save(self, session: Session) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(session.id)
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(asdict(session), f, ensure_ascii=False, indent=2)
        except OSError as e:
            raise SessionError(f"Write error: {e}") from e
        return path

    def load(self, session_id: str) -> Session:
        path = self._path(session_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise SessionError(f"Read error: {e}") from e
        except json.JSONDecodeError as e:
            raise SessionError(f"Parse error: {e}") from e
        if not isinstance(data, dict):
            raise SessionError(f"Parse error: {path} is not a session record")
        try:
            return Session(
                id=data["id"],
                workspace=data["workspace"],
                messages=list(data["messages"]),
                context_files=list(data.get("context_files") or []),
                autonomy=data.get("autonomy") or "",
                created_at=data.get("created_at") or "",
            )
        except (KeyError, TypeError) as e:
            raise SessionError(f"Parse error: missing field {e}") from e

    def list_sessions(self) -> List[SessionSummary]:
        """All readable sessions, newest first."""
        if not self.root.is_dir():
            return []
        sessions = []
        for path in self.root.glob("*.json"):
            try:
                s = self.load(path.stem)
            except SessionError:
                continue
            sessions.append(SessionSummary(s.id, s.created_at, s.preview()))
        sessions.sort(key=lambda x: (x.created_at, x.id), reverse=True)
        return sessions

    def latest(self) -> Optional[SessionSummary]:
        sessions = self.list_sessions()
        return sessions[0] if sessions else None

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        if path.exists():
            path.unlink()
            return True
        return False
