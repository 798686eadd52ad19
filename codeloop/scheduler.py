"""Dispatch one batch of model tool calls.

Phases, strictly in this order:

1. control flow (submit, change_directory), sequential in request order
2. classification into unknown / read-only / mutating
3. read-only calls, concurrently when there is more than one
4. mutating calls, one at a time in request order
5. reassembly of every result in the original request order

Completion order of the parallel phase never affects message order.
"""
from __future__ import annotations
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .messages import ToolInvocationRecord, ToolMessage, ToolResult
from .repomap import scan_workspace
from .tools import TOOL_NAMES, ChangeDir, EditFile, Submit, ToolCall, WriteFile, execute_tool, parse_tool_call
from .ui import Renderer, QuietRenderer

logger = logging.getLogger("codeloop.scheduler")

ToolExecutor = Callable[..., ToolResult]

SKIPPED = "Skipped: task already submitted"


@dataclass
class BatchOutcome:
    messages: List[ToolMessage] = field(default_factory=list)
    submitted: Optional[Submit] = None
    files_changed: List[str] = field(default_factory=list)
    workspace: str = ""


class ToolScheduler:
    def __init__(self, workspace: str, confirm_writes: bool = False, collapse_diffs: bool = False,
                 renderer: Optional[Renderer] = None, max_workers: int = 8,
                 executor: ToolExecutor = execute_tool,
                 summarize: Callable[[str], str] = scan_workspace):
        self.workspace = workspace
        self.confirm_writes = confirm_writes
        self.collapse_diffs = collapse_diffs
        self.ui = renderer or QuietRenderer()
        self.max_workers = max_workers
        self.executor = executor
        self.summarize = summarize

    def _run(self, call: ToolCall, workspace: str, confirm: bool, collapse: bool) -> str:
        result = self.executor(call, workspace, confirm, collapse, self.ui)
        return result.to_json()

    def _change_dir(self, call: ChangeDir) -> str:
        target = os.path.expanduser(call.path)
        if not os.path.isabs(target):
            target = os.path.join(self.workspace, target)
        if not os.path.isdir(target):
            self.ui.error(f"  Not a directory: {call.path}")
            return f"Error: {call.path} is not a directory"
        self.workspace = os.path.realpath(target)
        self.ui.tool_action("cd", self.workspace)
        self.ui.success(f"  Workspace: {self.workspace}")
        logger.debug("Workspace changed to %s", self.workspace)
        return (f"Changed workspace to {self.workspace}. The repo map for this directory:\n"
                f"{self.summarize(self.workspace)}")

    def dispatch(self, records: List[ToolInvocationRecord]) -> BatchOutcome:
        outcome = BatchOutcome(workspace=self.workspace)
        parsed = [parse_tool_call(r.name, r.arguments) for r in records]
        slots: List[Optional[str]] = [None] * len(records)

        # Phase 1: control flow
        for idx, call in enumerate(parsed):
            if isinstance(call, Submit):
                logger.debug("Submit at index %d of %d", idx, len(records))
                slots[idx] = f"Task complete: {call.summary}"
                # every requested call needs an answer, even the ones that never ran
                outcome.messages = [ToolMessage(records[i].id, slots[i] if slots[i] is not None else SKIPPED)
                                    for i in range(len(records))]
                outcome.submitted = call
                outcome.workspace = self.workspace
                return outcome
            if isinstance(call, ChangeDir):
                slots[idx] = self._change_dir(call)

        # Phase 2: classification
        parallel: List[int] = []
        sequential: List[int] = []
        for idx, (record, call) in enumerate(zip(records, parsed)):
            if slots[idx] is not None:
                continue
            if call is None:
                if record.name in TOOL_NAMES:
                    slots[idx] = f"Invalid arguments for {record.name}"
                else:
                    slots[idx] = f"Unknown tool: {record.name}"
            elif call.read_only:
                parallel.append(idx)
            else:
                sequential.append(idx)

        # Phase 3: read-only calls
        workspace = self.workspace
        if len(parallel) > 1:
            logger.debug("Running %d read-only calls in parallel", len(parallel))
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(parallel))) as pool:
                futures: Dict[int, object] = {
                    idx: pool.submit(self._run, parsed[idx], workspace, False, False) for idx in parallel
                }
                for idx, fut in futures.items():
                    slots[idx] = fut.result()
        elif parallel:
            idx = parallel[0]
            slots[idx] = self._run(parsed[idx], workspace, self.confirm_writes, self.collapse_diffs)

        # Phase 4: mutating calls
        for idx in sequential:
            call = parsed[idx]
            if isinstance(call, (WriteFile, EditFile)) and call.path not in outcome.files_changed:
                outcome.files_changed.append(call.path)
            slots[idx] = self._run(call, workspace, self.confirm_writes, self.collapse_diffs)

        # Phase 5: reassembly
        outcome.messages = [ToolMessage(records[i].id, slots[i]) for i in range(len(records))
                            if slots[i] is not None]
        outcome.workspace = self.workspace
        return outcome
