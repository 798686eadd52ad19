"""Model backends: an OpenAI-compatible chat completions client and a stub."""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .config import BackendSpec
from .messages import ChatResponse, TokenUsage, ToolInvocationRecord
from .ui import Renderer, QuietRenderer

logger = logging.getLogger("codeloop.backend")

SSE_PREFIX = "data: "
SSE_DONE = "[DONE]"


class BackendError(RuntimeError):
    """The request never produced a usable response. The turn is aborted."""


def _first_choice(payload: Dict[str, Any]) -> Dict[str, Any]:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def _is_fence(line: str) -> bool:
    return line.lstrip().startswith("```")


@dataclass
class _PendingToolCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


class StreamAccumulator:
    """Rebuilds a ChatResponse from server-sent event lines.

    Text is rendered line by line as it arrives. Tool call fragments are keyed
    by their `index`; ids and names are kept once seen and arguments are
    concatenated in arrival order.
    """

    def __init__(self, renderer: Optional[Renderer] = None):
        self.ui = renderer or QuietRenderer()
        self.content = ""
        self.usage: Optional[TokenUsage] = None
        self._line_buffer = ""
        self._in_code_block = False
        self._started = False
        self._calls: Dict[int, _PendingToolCall] = {}

    def feed(self, line: str) -> bool:
        """Consume one line. Returns False once the end sentinel is seen."""
        if not line.startswith(SSE_PREFIX):
            return True
        data = line[len(SSE_PREFIX):].strip()
        if data == SSE_DONE:
            return False
        try:
            chunk = json.loads(data)
        except ValueError:
            logger.debug("Skipping malformed frame: %r", data[:200])
            return True
        if not isinstance(chunk, dict):
            return True

        usage = TokenUsage.from_dict(chunk.get("usage"))
        if usage is not None:
            self.usage = usage

        delta = _first_choice(chunk).get("delta")
        if not isinstance(delta, dict):
            return True

        token = delta.get("content")
        if isinstance(token, str) and token:
            self._add_text(token)

        tool_calls = delta.get("tool_calls")
        if isinstance(tool_calls, list):
            for tc in tool_calls:
                if isinstance(tc, dict):
                    self._add_tool_delta(tc)
        return True

    def _add_text(self, token: str) -> None:
        if not self._started:
            self.ui.stream_start()
            self._started = True
        self.content += token
        self._line_buffer += token
        while "\n" in self._line_buffer:
            line, self._line_buffer = self._line_buffer.split("\n", 1)
            self._emit(line)

    def _emit(self, line: str) -> None:
        fence = _is_fence(line)
        if fence:
            self._in_code_block = not self._in_code_block
        self.ui.stream_line(line, self._in_code_block and not fence)

    def _add_tool_delta(self, tc: Dict[str, Any]) -> None:
        idx = tc.get("index")
        if not isinstance(idx, int):
            idx = 0
        pending = self._calls.setdefault(idx, _PendingToolCall())

        call_id = tc.get("id")
        if isinstance(call_id, str) and call_id:
            pending.id = call_id
        fn = tc.get("function")
        if isinstance(fn, dict):
            name = fn.get("name")
            if isinstance(name, str) and name:
                pending.name = name
            args = fn.get("arguments")
            if isinstance(args, str):
                pending.arguments += args

    def finish(self) -> ChatResponse:
        if self._line_buffer:
            if not self._started:
                self.ui.stream_start()
                self._started = True
            self._emit(self._line_buffer)
            self._line_buffer = ""
        if self._started:
            self.ui.stream_end()

        calls = [
            ToolInvocationRecord(p.id or f"call_{idx}", p.name, p.arguments or "{}")
            for idx, p in sorted(self._calls.items()) if p.name
        ]
        dropped = len(self._calls) - len(calls)
        if dropped:
            logger.debug("Dropped %d tool call(s) without a name", dropped)

        raw: Dict[str, Any] = {"role": "assistant", "content": self.content}
        if calls:
            raw["content"] = self.content or None
            raw["tool_calls"] = [c.to_dict() for c in calls]
        return ChatResponse(content=self.content, tool_calls=calls, raw_message=raw,
                            streamed=self._started, usage=self.usage)


def parse_completion(payload: Dict[str, Any]) -> ChatResponse:
    """Blocking /chat/completions response body -> ChatResponse."""
    message = _first_choice(payload).get("message")
    if not isinstance(message, dict):
        message = None

    content = message.get("content") if message else None
    content = content if isinstance(content, str) else ""

    calls: List[ToolInvocationRecord] = []
    wire_calls = (message or {}).get("tool_calls") or []
    for i, tc in enumerate(wire_calls):
        rec = ToolInvocationRecord.from_dict(tc, i)
        if rec is not None:
            calls.append(rec)

    raw = message if message is not None else {"role": "assistant", "content": content}
    if any(not (isinstance(tc, dict) and tc.get("id")) for tc in wire_calls):
        # echo the synthesized ids so tool replies still pair up
        raw = dict(raw, tool_calls=[c.to_dict() for c in calls])
    return ChatResponse(content=content, tool_calls=calls, raw_message=raw,
                        streamed=False, usage=TokenUsage.from_dict(payload.get("usage")))


class ModelBackend:
    name = "backend"

    def chat_with_tools(self, messages: List[Dict[str, Any]],
                        tools: Optional[List[Dict[str, Any]]] = None) -> ChatResponse:
        raise NotImplementedError

    def chat_stream(self, messages: List[Dict[str, Any]],
                    tools: Optional[List[Dict[str, Any]]] = None) -> ChatResponse:
        return self.chat_with_tools(messages, tools)

    def close(self) -> None:
        pass


class ApiBackend(ModelBackend):
    """Any OpenAI-compatible endpoint (OpenRouter, OpenAI, Ollama, ...)."""

    def __init__(self, spec: BackendSpec, client: Optional[httpx.Client] = None,
                 renderer: Optional[Renderer] = None):
        self.spec = spec
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=spec.timeout)
        self.ui = renderer or QuietRenderer()

    @property
    def name(self) -> str:
        return self.spec.model

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.spec.key:
            headers["Authorization"] = f"Bearer {self.spec.key}"
        return headers

    def _body(self, messages, tools, stream: bool) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self.spec.model,
            "messages": messages,
            "max_tokens": self.spec.max_tokens,
            "temperature": self.spec.temperature,
        }
        if tools:
            body["tools"] = tools
        if stream:
            body["stream"] = True
            body["stream_options"] = {"include_usage": True}
        return body

    def chat_with_tools(self, messages, tools=None) -> ChatResponse:
        logger.debug("POST %s (%d messages)", self.spec.chat_url, len(messages))
        try:
            resp = self.client.post(self.spec.chat_url, json=self._body(messages, tools, False),
                                    headers=self._headers())
        except httpx.HTTPError as e:
            raise BackendError(f"API request failed: {e}") from e
        if resp.is_error:
            raise BackendError(f"API request failed: HTTP {resp.status_code}: {resp.text[:500]}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise BackendError(f"API returned a non-JSON body: {e}") from e
        if not isinstance(payload, dict):
            raise BackendError("API returned an unexpected body")
        return parse_completion(payload)

    def chat_stream(self, messages, tools=None) -> ChatResponse:
        logger.debug("POST %s stream (%d messages)", self.spec.chat_url, len(messages))
        acc = StreamAccumulator(self.ui)
        try:
            with self.client.stream("POST", self.spec.chat_url, json=self._body(messages, tools, True),
                                    headers=self._headers()) as resp:
                if resp.is_error:
                    resp.read()
                    raise BackendError(f"API stream request failed: HTTP {resp.status_code}: "
                                       f"{resp.text[:500]}")
                try:
                    for line in resp.iter_lines():
                        if not acc.feed(line):
                            break
                except httpx.HTTPError as e:
                    # keep whatever arrived before the connection dropped
                    logger.debug("Stream interrupted: %s", e)
        except httpx.HTTPError as e:
            raise BackendError(f"API stream request failed: {e}") from e
        return acc.finish()

    def close(self) -> None:
        if self._owns_client:
            self.client.close()


STUB_GREETING = "Hello! I'm codeloop. Give me a coding task and I'll get to work."


class StubBackend(ModelBackend):
    """Offline backend for demos and tests; no model involved."""

    name = "stub"

    def chat_with_tools(self, messages, tools=None) -> ChatResponse:
        last = messages[-1].get("content") if messages else ""
        last = last if isinstance(last, str) else ""

        if any(m.get("role") == "tool" for m in messages):
            call = ToolInvocationRecord("stub_1", "submit", json.dumps({"summary": "Explored the workspace."}))
            content = ""
        elif len(last) < 20:
            return ChatResponse(content=STUB_GREETING,
                                raw_message={"role": "assistant", "content": STUB_GREETING})
        else:
            call = ToolInvocationRecord("stub_0", "run_command", json.dumps({"command": "ls -la"}))
            content = "Let me explore the project."

        raw = {"role": "assistant", "content": content or None, "tool_calls": [call.to_dict()]}
        return ChatResponse(content=content, tool_calls=[call], raw_message=raw)


def create_backend(spec: Optional[BackendSpec], renderer: Optional[Renderer] = None) -> ModelBackend:
    if spec is None:
        return StubBackend()
    return ApiBackend(spec, renderer=renderer)
