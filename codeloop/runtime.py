from __future__ import annotations
import copy
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .backend import BackendError, ModelBackend
from .compaction import Compactor
from .config import MAX_TURNS, Autonomy
from .messages import Conversation, TokenUsage, UserMessage, message_from_dict
from .repomap import auto_context, scan_workspace
from .scheduler import ToolScheduler
from .tools import tool_definitions
from .tools.git_tools import GitError, git_auto_commit, is_git_repo
from .ui import Renderer, QuietRenderer

logger = logging.getLogger("codeloop.runtime")

COMPLETED = "completed"
SUBMITTED = "submitted"
TURN_LIMIT = "turn_limit"

CONTEXT_FILE_CHARS = 4000
COMMIT_SUMMARY_CHARS = 72

BEHAVIOR_RULES = """CRITICAL BEHAVIOR RULES:
1. BE PROACTIVE. When the user asks a question, READ files to find the answer. Never ask for details you can look up yourself.
2. When the user asks which option is best or most likely, READ the relevant files and ANALYZE them. Give a direct answer with reasoning.
3. If a file was truncated, use read_file with offset to get the rest. Read the ENTIRE file before answering.
4. Use find_file to locate files by name when you don't know the path.
5. Use change_directory when the user wants to switch to a different folder.
6. Prefer edit_file for targeted changes, write_file for new files.
7. Call submit when a coding task is done.
8. Remember context from earlier in the conversation.
9. NEVER ask the user to clarify something you can figure out from the files.
10. READ COMPREHENSIVELY. When asked to analyze a directory or project, FIRST use list_files, THEN read all relevant files. Use multiple read_file calls in the same turn.
11. When creating a file based on analysis, read ALL source material first."""


@dataclass
class TurnResult:
    usage: TokenUsage = field(default_factory=TokenUsage)
    reason: str = COMPLETED
    turns: int = 0
    files_changed: List[str] = field(default_factory=list)
    summary: Optional[str] = None


class Agent:
    """Runs user messages through the model/tool loop against one workspace."""

    def __init__(self, backend: ModelBackend, workspace: str,
                 autonomy: Autonomy = Autonomy.AUTO_EDIT,
                 renderer: Optional[Renderer] = None,
                 compactor: Optional[Compactor] = None,
                 max_turns: int = MAX_TURNS,
                 auto_commit: bool = False,
                 stream: bool = True,
                 context_files: Sequence[str] = ()):
        self.backend = backend
        self.workspace = os.path.abspath(workspace)
        self.autonomy = autonomy
        self.ui = renderer or QuietRenderer()
        self.compactor = compactor or Compactor()
        self.max_turns = max_turns
        self.auto_commit = auto_commit
        self.stream = stream
        self.context_files: List[str] = list(context_files)
        self.session_usage = TokenUsage()

    # -------- system prompt --------
    def system_prompt(self) -> str:
        parts = [
            "You are codeloop, an AI assistant that helps with coding and file tasks.\n"
            f"Workspace: {self.workspace}\n"
            f"Mode: {self.autonomy}\n"
            f"Max turns: {self.max_turns}\n\n" + BEHAVIOR_RULES,
            f"Repo map:\n{scan_workspace(self.workspace)}",
        ]

        identity = auto_context(self.workspace)
        if identity:
            self.ui.dim(f"  Auto-context: {', '.join(name for name, _ in identity)}")
            for name, content in identity:
                parts.append(f"Project file {name}:\n```\n{content}\n```")

        for rel in self.context_files:
            try:
                with open(os.path.join(self.workspace, rel), "r", encoding="utf-8") as f:
                    content = f.read(CONTEXT_FILE_CHARS)
            except (OSError, UnicodeDecodeError) as e:
                logger.debug("Skipping context file %s: %s", rel, e)
                continue
            parts.append(f"File {rel}:\n```\n{content}\n```")

        return "\n\n".join(parts)

    def new_conversation(self) -> Conversation:
        return Conversation(self.system_prompt())

    # -------- turn loop --------
    def _commit(self, files_changed: List[str], message: str) -> None:
        if not (self.auto_commit and files_changed and is_git_repo(self.workspace)):
            return
        try:
            short = git_auto_commit(self.workspace, message)
            self.ui.dim(f"    [committed {short}]")
        except GitError as e:
            self.ui.dim(f"    [commit skipped: {e}]")

    def run_turn(self, conv: Conversation, text: str) -> TurnResult:
        """Handle one user message. BackendError leaves `conv` exactly as it was."""
        result = TurnResult()
        # wire-form copy: compaction rewrites message objects in place
        saved = copy.deepcopy(conv.to_dicts())
        saved_workspace = self.workspace
        conv.append(UserMessage(text))
        tools = tool_definitions()
        scheduler = ToolScheduler(self.workspace,
                                  confirm_writes=self.autonomy.confirm_writes,
                                  collapse_diffs=self.autonomy.collapse_diffs,
                                  renderer=self.ui)

        for turn in range(1, self.max_turns + 1):
            result.turns = turn
            self.ui.turn_indicator(turn, self.max_turns)
            self.ui.thinking()
            logger.debug("Turn %d/%d, %d messages", turn, self.max_turns, len(conv))
            try:
                call = self.backend.chat_stream if self.stream else self.backend.chat_with_tools
                response = call(conv.to_dicts(), tools)
            except BackendError:
                # drop everything this user message added
                conv.replace_span(1, len(conv), [message_from_dict(d) for d in saved[1:]])
                self.workspace = saved_workspace
                raise

            if response.usage:
                result.usage += response.usage
                self.session_usage += response.usage

            if response.content and not response.streamed:
                self.ui.assistant(response.content)

            conv.append(response.to_message())
            if not response.tool_calls:
                result.reason = COMPLETED
                return result

            batch = scheduler.dispatch(response.tool_calls)
            for msg in batch.messages:
                conv.append(msg)
            for path in batch.files_changed:
                if path not in result.files_changed:
                    result.files_changed.append(path)
            self.workspace = batch.workspace

            if batch.submitted is not None:
                summary = batch.submitted.summary
                if not response.content:
                    self.ui.assistant(summary)
                result.reason = SUBMITTED
                result.summary = summary
                self._commit(result.files_changed, f"codeloop: {summary[:COMMIT_SUMMARY_CHARS]}")
                return result

            report = self.compactor.compact(conv)
            if report.compacted:
                self.ui.dim(f"  (context compacted: ~{report.tokens_before} -> ~{report.tokens_after} tokens)")

        self.ui.dim("  (reached turn limit)")
        result.reason = TURN_LIMIT
        self._commit(result.files_changed, f"codeloop: modified {', '.join(result.files_changed)}")
        return result
