"""Conversation data model: messages, tool invocation records, token usage."""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union


@dataclass
class ToolInvocationRecord:
    """One tool call as the model emitted it: an id, a name and raw JSON arguments."""
    id: str
    name: str
    arguments: str = "{}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int = 0) -> Optional["ToolInvocationRecord"]:
        """Parse one wire tool call. A missing id falls back to call_<index>."""
        if not isinstance(data, dict):
            return None
        fn = data.get("function") or {}
        name = fn.get("name") if isinstance(fn, dict) else None
        if not isinstance(name, str) or not name:
            return None
        args = fn.get("arguments")
        if not isinstance(args, str):
            args = "{}" if args is None else json.dumps(args)
        call_id = data.get("id")
        if not isinstance(call_id, str) or not call_id:
            call_id = f"call_{index}"
        return cls(id=call_id, name=name, arguments=args)


@dataclass
class ToolResult:
    """Outcome of one tool execution. Failures are values, never exceptions."""
    success: bool
    output: str

    def to_json(self) -> str:
        return json.dumps({"success": self.success, "output": self.output}, ensure_ascii=False)

    @classmethod
    def ok(cls, output: str) -> "ToolResult":
        return cls(True, output)

    @classmethod
    def fail(cls, output: str) -> "ToolResult":
        return cls(False, output)


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(self.prompt_tokens + other.prompt_tokens,
                          self.completion_tokens + other.completion_tokens)

    def __iadd__(self, other: "TokenUsage") -> "TokenUsage":
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        return self

    def __bool__(self) -> bool:
        return self.total > 0

    @classmethod
    def from_dict(cls, data: Any) -> Optional["TokenUsage"]:
        if not isinstance(data, dict):
            return None
        prompt = data.get("prompt_tokens")
        completion = data.get("completion_tokens")
        if not isinstance(prompt, int) or not isinstance(completion, int):
            return None
        return cls(prompt, completion)


# -------- messages --------

@dataclass
class SystemMessage:
    content: str
    role: str = field(default="system", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": "system", "content": self.content}


@dataclass
class UserMessage:
    content: str
    role: str = field(default="user", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": "user", "content": self.content}


@dataclass
class AssistantMessage:
    content: Optional[str] = ""
    tool_calls: List[ToolInvocationRecord] = field(default_factory=list)
    # provider's own message dict; echoed verbatim when present
    raw: Optional[Dict[str, Any]] = None
    role: str = field(default="assistant", init=False)

    def __post_init__(self):
        if self.content is None and not self.tool_calls:
            raise ValueError("assistant message without tool calls needs content")

    def to_dict(self) -> Dict[str, Any]:
        if self.raw is not None:
            return self.raw
        msg: Dict[str, Any] = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            msg["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        return msg

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "AssistantMessage":
        calls = []
        for i, tc in enumerate(raw.get("tool_calls") or []):
            rec = ToolInvocationRecord.from_dict(tc, i)
            if rec is not None:
                calls.append(rec)
        content = raw.get("content")
        if not isinstance(content, str):
            content = None if calls else ""
        return cls(content=content, tool_calls=calls, raw=raw)


@dataclass
class ToolMessage:
    tool_call_id: str
    content: str
    role: str = field(default="tool", init=False)

    def __post_init__(self):
        if not isinstance(self.tool_call_id, str) or not self.tool_call_id:
            raise ValueError("tool message requires a tool_call_id")

    def to_dict(self) -> Dict[str, Any]:
        return {"role": "tool", "tool_call_id": self.tool_call_id, "content": self.content}


Message = Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage]


def message_from_dict(data: Dict[str, Any]) -> Message:
    """Rebuild a typed message from its wire form (used when restoring sessions)."""
    role = data.get("role")
    content = data.get("content")
    if role == "system":
        return SystemMessage(content or "")
    if role == "user":
        return UserMessage(content if isinstance(content, str) else json.dumps(content))
    if role == "assistant":
        return AssistantMessage.from_raw(data)
    if role == "tool":
        return ToolMessage(tool_call_id=data.get("tool_call_id") or "", content=content or "")
    raise ValueError(f"unknown message role: {role!r}")


class Conversation:
    """Ordered message log. Index 0 is always the system prompt."""

    def __init__(self, system_prompt: str, messages: Optional[List[Message]] = None):
        self._messages: List[Message] = [SystemMessage(system_prompt)]
        for m in messages or []:
            self.append(m)

    @classmethod
    def from_dicts(cls, data: List[Dict[str, Any]]) -> "Conversation":
        if not data or data[0].get("role") != "system":
            raise ValueError("conversation must start with a system message")
        conv = cls(data[0].get("content") or "")
        for d in data[1:]:
            conv.append(message_from_dict(d))
        return conv

    @property
    def system_prompt(self) -> str:
        return self._messages[0].content

    @property
    def messages(self) -> List[Message]:
        return self._messages

    def append(self, msg: Message) -> None:
        self._messages.append(msg)

    def reset(self, system_prompt: str) -> None:
        """Start over with a fresh system prompt (new / cd / clear)."""
        self._messages = [SystemMessage(system_prompt)]

    def replace_span(self, start: int, end: int, replacement: List[Message]) -> None:
        """Replace messages[start:end]. Index 0 can never be part of the span."""
        if start < 1 or end < start or end > len(self._messages):
            raise ValueError(f"invalid span {start}:{end}")
        self._messages[start:end] = replacement

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [m.to_dict() for m in self._messages]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __getitem__(self, idx):
        return self._messages[idx]


@dataclass
class ChatResponse:
    content: str = ""
    tool_calls: List[ToolInvocationRecord] = field(default_factory=list)
    raw_message: Dict[str, Any] = field(default_factory=lambda: {"role": "assistant", "content": ""})
    # content was already rendered while streaming
    streamed: bool = False
    usage: Optional[TokenUsage] = None

    def to_message(self) -> AssistantMessage:
        content = self.content if self.content or not self.tool_calls else None
        return AssistantMessage(content=content, tool_calls=list(self.tool_calls),
                                raw=self.raw_message)
