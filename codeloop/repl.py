from __future__ import annotations
import logging
import os
from typing import Optional

from rich.table import Table

from .backend import ApiBackend, BackendError, ModelBackend
from .config import Autonomy
from .messages import Conversation, TokenUsage
from .runtime import Agent
from .sessions import Session, SessionError, SessionManager
from .tools.git_tools import GitError, git_status, git_undo
from .ui import Renderer

logger = logging.getLogger("codeloop.repl")

HELP_GROUPS = [
    ("Session", "bright_cyan", [
        ("new", "Start a new conversation"),
        ("sessions", "List saved sessions"),
        ("resume [id]", "Resume a saved session"),
        ("cost", "Show token usage and cost"),
        ("clear", "Clear screen and conversation"),
        ("quit", "Exit codeloop"),
    ]),
    ("Workspace", "bright_magenta", [
        ("cd <dir>", "Change workspace directory"),
        ("add <file>", "Add file to context"),
        ("drop <file>", "Remove file from context"),
        ("context", "Show context files"),
    ]),
    ("Settings", "bright_yellow", [
        ("mode <level>", "Autonomy: suggest, auto-edit, full-auto"),
        ("backend", "Show current backend"),
    ]),
    ("Git", "bright_green", [
        ("status", "Git status"),
        ("undo", "Undo last codeloop commit"),
    ]),
]

BARE_COMMANDS = {
    "quit", "exit", "q", "help", "h", "?", "new", "reset", "sessions", "context", "ctx",
    "undo", "status", "st", "backend", "cost", "usage", "tokens", "clear",
}
ARG_COMMANDS = {"resume", "cd", "add", "drop", "mode"}
# arguments of these may be paths containing spaces
PATH_COMMANDS = {"cd", "add", "drop"}


class Repl:
    """Interactive loop: slash commands plus free text sent to the agent."""

    def __init__(self, agent: Agent, renderer: Renderer, sessions: SessionManager,
                 resume: Optional[str] = None):
        self.agent = agent
        self.ui = renderer
        self.console = renderer.console
        self.sessions = sessions
        self.session_id = sessions.new_session_id()
        self.created_at: Optional[str] = None
        self.usage = TokenUsage()
        self.conv: Conversation = agent.new_conversation()
        if resume:
            self.resume(resume)

    # -------- session state --------
    def _fresh(self) -> None:
        self.conv.reset(self.agent.system_prompt())

    def resume(self, session_id: str) -> bool:
        try:
            s = self.sessions.load(session_id)
            conv = s.conversation()
        except SessionError as e:
            self.ui.error(f"  Cannot resume: {e}")
            return False
        self.session_id = s.id
        self.created_at = s.created_at or None
        self.agent.workspace = s.workspace
        self.agent.context_files = list(s.context_files)
        self.agent.autonomy = Autonomy.parse(s.autonomy)
        self.conv = conv
        self.usage = TokenUsage()
        self.ui.success(f"  Resumed session {s.id}")
        return True

    def save(self) -> None:
        session = Session.from_conversation(self.session_id, self.agent.workspace, self.conv,
                                            self.agent.context_files, str(self.agent.autonomy),
                                            created_at=self.created_at)
        self.created_at = session.created_at
        try:
            self.sessions.save(session)
        except SessionError as e:
            logger.debug("Session save failed: %s", e)
            self.ui.dim(f"  (session not saved: {e})")

    # -------- banner / help --------
    def banner(self) -> None:
        self.console.print()
        self.console.print("  [bold bright_magenta]✦ codeloop[/bold bright_magenta]")
        self.console.print(f"  [dim]workspace[/dim] {self.agent.workspace}")
        self.console.print(f"  [dim]backend[/dim]   {self.agent.backend.name}")
        self.console.print(f"  [dim]mode[/dim]      {self.agent.autonomy}")
        self.console.print("  [dim]Type a task, or 'help' for commands.[/dim]")
        self.console.print()

    def print_help(self) -> None:
        self.console.print()
        self.console.print("  [bold]Commands[/bold]")
        self.console.print("  [dim]Type any coding task and codeloop will solve it.[/dim]")
        for title, color, cmds in HELP_GROUPS:
            self.console.print()
            self.console.print(f"  [bold {color}]◆ {title}[/bold {color}]")
            for cmd, desc in cmds:
                self.console.print(f"    [bold {color}]{cmd:<14}[/bold {color}] [dim]{desc}[/dim]")
        self.console.print()

    def _sessions_table(self) -> Optional[list]:
        sessions = self.sessions.list_sessions()
        if not sessions:
            self.ui.dim("  No saved sessions.")
            return None
        table = Table(title="Saved sessions", show_header=True, header_style="bold")
        table.add_column("#", style="cyan", justify="right")
        table.add_column("ID", style="cyan")
        table.add_column("Created", style="dim")
        table.add_column("Preview")
        for i, s in enumerate(sessions, 1):
            table.add_row(str(i), s.id, s.created_at, s.preview)
        self.console.print(table)
        return sessions

    # -------- commands --------
    def handle(self, line: str) -> bool:
        """Process one input line. Returns False when the REPL should exit."""
        text = line.strip()
        if not text:
            return True
        cmd, _, arg = text.lstrip("/").partition(" ")
        cmd = cmd.lower()
        arg = arg.strip()
        # "add a retry to fetch()" is a task, not the add command
        spaced = " " in arg and not (cmd in PATH_COMMANDS and self._names_path(cmd, arg))
        if (cmd in BARE_COMMANDS and arg) or (cmd in ARG_COMMANDS and spaced) \
                or (cmd not in BARE_COMMANDS and cmd not in ARG_COMMANDS):
            self.send(text)
            return True

        if cmd in ("quit", "exit", "q"):
            self.ui.dim("  Goodbye.")
            return False
        if cmd in ("help", "h", "?"):
            self.print_help()
        elif cmd in ("new", "reset"):
            self.session_id = self.sessions.new_session_id()
            self.created_at = None
            self.usage = TokenUsage()
            self._fresh()
            self.ui.dim("  New conversation started.")
        elif cmd == "sessions":
            self._sessions_table()
        elif cmd == "resume":
            self._resume_command(arg)
        elif cmd == "cd":
            self._cd(arg)
        elif cmd == "add":
            self._add(arg)
        elif cmd == "drop":
            if not arg:
                self.ui.dim("  Usage: drop <file>")
            else:
                self.agent.context_files = [f for f in self.agent.context_files if f != arg]
                self.ui.success(f"  Dropped {arg} from context")
        elif cmd in ("context", "ctx"):
            self._context()
        elif cmd == "mode":
            self._mode(arg)
        elif cmd == "undo":
            try:
                self.ui.success(f"  {git_undo(self.agent.workspace)}")
            except GitError as e:
                self.ui.error(f"  {e}")
        elif cmd in ("status", "st"):
            self._status()
        elif cmd == "backend":
            self._backend_info(self.agent.backend)
        elif cmd in ("cost", "usage", "tokens"):
            self.ui.session_cost(self.usage)
        elif cmd == "clear":
            self._fresh()
            self.console.clear()
            self.banner()
        return True

    def _resume_command(self, arg: str) -> None:
        if arg:
            self.resume(arg)
            return
        sessions = self._sessions_table()
        if not sessions:
            return
        choice = self.console.input("  Session #: ").strip()
        if not choice.isdigit() or not 1 <= int(choice) <= len(sessions):
            self.ui.error("  Invalid selection.")
            return
        self.resume(sessions[int(choice) - 1].id)

    def _resolve(self, arg: str) -> str:
        target = os.path.expanduser(arg)
        if not os.path.isabs(target):
            target = os.path.join(self.agent.workspace, target)
        return target

    def _names_path(self, cmd: str, arg: str) -> bool:
        if cmd == "drop":
            return arg in self.agent.context_files
        return os.path.exists(self._resolve(arg))

    def _cd(self, arg: str) -> None:
        target = self._resolve(arg) if arg else os.path.expanduser("~")
        if not os.path.isdir(target):
            self.ui.error(f"  Not a directory: {target}")
            return
        self.agent.workspace = os.path.realpath(target)
        self.agent.context_files = []
        self._fresh()
        self.ui.success(f"  Workspace: {self.agent.workspace}")

    def _add(self, arg: str) -> None:
        if not arg:
            self.ui.dim("  Usage: add <file>")
            return
        if not os.path.exists(os.path.join(self.agent.workspace, arg)):
            self.ui.error(f"  File not found: {arg}")
            return
        if arg not in self.agent.context_files:
            self.agent.context_files.append(arg)
        self.ui.success(f"  Added {arg} to context")

    def _context(self) -> None:
        count = len(self.conv) - 1
        files = self.agent.context_files
        if not files and count == 0:
            self.ui.dim("  Empty conversation. No context files.")
            return
        self.console.print()
        self.console.print(f"  [bold]Conversation:[/bold] {count} messages")
        if files:
            self.console.print("  [bold]Files:[/bold]")
            for f in files:
                self.console.print(f"    [cyan]{f}[/cyan]")
        self.console.print()

    def _mode(self, arg: str) -> None:
        if arg not in ("suggest", "auto-edit", "full-auto", "full"):
            self.ui.dim(f"  Mode: {self.agent.autonomy}  (choose suggest, auto-edit or full-auto)")
            return
        self.agent.autonomy = Autonomy.parse(arg)
        self.ui.success(f"  Mode: {self.agent.autonomy}")

    def _status(self) -> None:
        try:
            out = git_status(self.agent.workspace)
        except GitError as e:
            self.ui.error(f"  {e}")
            return
        if not out.strip():
            self.ui.dim("  Clean working tree")
            return
        self.console.print()
        for line in out.splitlines():
            self.console.print(f"    {line}", markup=False)
        self.console.print()

    def _backend_info(self, backend: ModelBackend) -> None:
        self.console.print()
        if isinstance(backend, ApiBackend):
            self.console.print("  Backend: [cyan]api[/cyan]")
            self.console.print(f"  Model:   [cyan]{backend.spec.model}[/cyan]")
            self.console.print(f"  URL:     [dim]{backend.spec.url}[/dim]")
        else:
            self.console.print(f"  Backend: [yellow]{backend.name}[/yellow] (testing)")
        self.console.print()

    # -------- turns --------
    def send(self, text: str) -> None:
        try:
            result = self.agent.run_turn(self.conv, text)
        except BackendError as e:
            self.ui.error(f"  Error: {e}")
        else:
            if result.usage:
                self.ui.usage(result.usage)
                self.usage += result.usage
        self.save()

    def run(self) -> None:
        self.banner()
        while True:
            try:
                line = self.console.input("[bold bright_cyan]❯[/bold bright_cyan] ")
            except EOFError:
                break
            except KeyboardInterrupt:
                self.console.print()
                self.ui.dim("  Interrupted.")
                break
            if not self.handle(line):
                break
