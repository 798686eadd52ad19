from .config import BackendSpec, Autonomy, MAX_TURNS, resolve_backend
from .messages import Conversation, ChatResponse, ToolInvocationRecord, ToolResult, TokenUsage
from .backend import ApiBackend, StubBackend, BackendError
from .scheduler import ToolScheduler, BatchOutcome
from .compaction import Compactor
from .runtime import Agent, TurnResult

__all__ = [
    "BackendSpec", "Autonomy", "MAX_TURNS", "resolve_backend",
    "Conversation", "ChatResponse", "ToolInvocationRecord", "ToolResult", "TokenUsage",
    "ApiBackend", "StubBackend", "BackendError",
    "ToolScheduler", "BatchOutcome", "Compactor", "Agent", "TurnResult",
]
