from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import List

from .messages import AssistantMessage, Conversation, Message, SystemMessage, ToolMessage

logger = logging.getLogger("codeloop.compaction")

STALE_PLACEHOLDER = "[stale tool result removed to save context]"
SUMMARY_HEADER = "[Context compacted: {n} earlier messages summarized]"
PREVIEW_CHARS = 100
# tool results at or below this size are not worth stubbing
TRIVIAL_CHARS = 200


@dataclass
class CompactionReport:
    tokens_before: int = 0
    tokens_after: int = 0
    tiers: List[int] = field(default_factory=list)

    @property
    def compacted(self) -> bool:
        return bool(self.tiers)


def _message_chars(msg: Message) -> int:
    size = len(msg.content or "")
    if isinstance(msg, AssistantMessage):
        size += sum(len(tc.arguments) for tc in msg.tool_calls)
    return size


def _truncate_lines(text: str, keep: int) -> str:
    lines = text.split("\n")
    if len(lines) <= keep * 2:
        return text
    omitted = len(lines) - keep * 2
    return "\n".join(lines[:keep] + [f"... [{omitted} lines omitted] ..."] + lines[-keep:])


class Compactor:
    """Keeps a conversation under a rough token budget, in three escalating tiers.

    1. truncate oversized tool results to their first/last lines
    2. replace tool results outside the recent window with a placeholder
    3. summarize everything between the system prompt and the recent window
    """

    def __init__(self, max_tokens: int = 8000, min_messages: int = 6, keep_recent: int = 4,
                 tool_result_limit: int = 2000, keep_lines: int = 20, chars_per_token: int = 4):
        self.max_tokens = max_tokens
        self.min_messages = min_messages
        self.keep_recent = keep_recent
        self.tool_result_limit = tool_result_limit
        self.keep_lines = keep_lines
        self.chars_per_token = chars_per_token

    def estimate_tokens(self, messages) -> int:
        return sum(_message_chars(m) // self.chars_per_token for m in messages)

    def _over_budget(self, conv: Conversation) -> bool:
        return self.estimate_tokens(conv) >= self.max_tokens

    def compact(self, conv: Conversation) -> CompactionReport:
        report = CompactionReport(tokens_before=self.estimate_tokens(conv))
        report.tokens_after = report.tokens_before
        if report.tokens_before < self.max_tokens or len(conv) < self.min_messages:
            return report

        logger.info("=== COMPACTION: %d messages, ~%d tokens (budget %d) ===",
                    len(conv), report.tokens_before, self.max_tokens)

        for tier, step in ((1, self._truncate_tool_results),
                           (2, self._stub_stale_results),
                           (3, self._summarize_middle)):
            if step(conv):
                report.tiers.append(tier)
                logger.info("Tier %d applied, now ~%d tokens", tier, self.estimate_tokens(conv))
            if not self._over_budget(conv):
                break

        report.tokens_after = self.estimate_tokens(conv)
        logger.info("Compaction done: %d -> %d tokens, tiers %s",
                    report.tokens_before, report.tokens_after, report.tiers)
        return report

    # -------- tiers --------

    def _truncate_tool_results(self, conv: Conversation) -> bool:
        changed = False
        for msg in conv.messages:
            if not isinstance(msg, ToolMessage) or len(msg.content) <= self.tool_result_limit:
                continue
            shorter = _truncate_lines(msg.content, self.keep_lines)
            if len(shorter) < len(msg.content):
                logger.debug("Truncated tool result %s: %d -> %d chars",
                             msg.tool_call_id, len(msg.content), len(shorter))
                msg.content = shorter
                changed = True
        return changed

    def _stub_stale_results(self, conv: Conversation) -> bool:
        changed = False
        cutoff = len(conv) - self.keep_recent
        for msg in conv.messages[1:max(cutoff, 1)]:
            if isinstance(msg, ToolMessage) and len(msg.content) > TRIVIAL_CHARS:
                msg.content = STALE_PLACEHOLDER
                changed = True
        return changed

    def _summarize_middle(self, conv: Conversation) -> bool:
        start = 1
        end = len(conv) - self.keep_recent
        # a tool result must stay with the assistant message that requested it
        while start < end < len(conv) and isinstance(conv[end], ToolMessage):
            end -= 1
        if end <= start:
            return False
        middle = conv.messages[start:end]
        if len(middle) == 1 and isinstance(middle[0], SystemMessage) \
                and middle[0].content.startswith("[Context compacted"):
            return False

        parts = []
        for msg in middle:
            if isinstance(msg, ToolMessage):
                continue
            preview = (msg.content or "")[:PREVIEW_CHARS]
            if preview:
                parts.append(f"[{msg.role}] {preview}...")
        summary = SUMMARY_HEADER.format(n=len(middle))
        if parts:
            summary += "\n" + "\n".join(parts)

        logger.debug("Summarizing messages %d..%d", start, end)
        conv.replace_span(start, end, [SystemMessage(summary)])
        return True
