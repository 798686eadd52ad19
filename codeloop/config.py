from __future__ import annotations
import enum
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

# Hard cap on model round-trips per user message
MAX_TURNS = 7

DEFAULT_API_URL = "https://openrouter.ai/api/v1"
DEFAULT_API_MODEL = "anthropic/claude-sonnet-4"
OLLAMA_URL = "http://localhost:11434/v1"
OLLAMA_MODEL = "qwen2.5-coder:7b"

CONFIG_DIR = Path.home() / ".codeloop"


@dataclass
class BackendSpec:
    url: str
    model: str
    key: Optional[str] = None
    max_tokens: int = 1024
    temperature: float = 0.7
    timeout: float = 120.0

    @property
    def chat_url(self) -> str:
        return f"{self.url.rstrip('/')}/chat/completions"


@dataclass
class ProviderPreset:
    name: str
    url: str
    default_model: str
    needs_key: bool = True


PROVIDER_PRESETS = {
    "openrouter": ProviderPreset("OpenRouter", DEFAULT_API_URL, DEFAULT_API_MODEL),
    "openai": ProviderPreset("OpenAI", "https://api.openai.com/v1", "gpt-4o"),
    "anthropic": ProviderPreset("Anthropic", "https://api.anthropic.com/v1", "claude-sonnet-4-20250514"),
    "ollama": ProviderPreset("Ollama (local)", OLLAMA_URL, OLLAMA_MODEL, needs_key=False),
}


class Autonomy(str, enum.Enum):
    """How much the agent may do to files without asking."""

    SUGGEST = "suggest"      # show diff, ask before each write/edit
    AUTO_EDIT = "auto-edit"  # show collapsed diff, apply automatically
    FULL_AUTO = "full-auto"  # apply silently

    @classmethod
    def parse(cls, value: Optional[str]) -> "Autonomy":
        v = (value or "").strip().lower()
        if v == "suggest":
            return cls.SUGGEST
        if v in ("full", "full-auto"):
            return cls.FULL_AUTO
        return cls.AUTO_EDIT

    @property
    def confirm_writes(self) -> bool:
        return self is Autonomy.SUGGEST

    @property
    def collapse_diffs(self) -> bool:
        return self is Autonomy.AUTO_EDIT

    def __str__(self) -> str:
        return self.value


# -------- config file --------

def config_path(config_dir: Optional[Path] = None) -> Path:
    return (config_dir or CONFIG_DIR) / "config.json"


def load_config(config_dir: Optional[Path] = None) -> dict:
    path = config_path(config_dir)
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, json.JSONDecodeError):
        return {}


def save_config(config: dict, config_dir: Optional[Path] = None) -> Path:
    path = config_path(config_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)
    return path


# -------- logging --------

def configure_logging(debug: bool = False, log_path: Optional[str] = None) -> None:
    """Route codeloop's debug logs to a file. Terminal output never goes through logging."""
    logger = logging.getLogger("codeloop")
    if not debug:
        logger.setLevel(logging.WARNING)
        return
    logger.setLevel(logging.DEBUG)
    path = log_path or os.path.join(os.getcwd(), "codeloop_debug.log")
    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        handler = logging.FileHandler(path, mode="w")
        handler.setLevel(logging.DEBUG)
        formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)


# -------- backend resolution --------

def detect_ollama(timeout: float = 1.0) -> bool:
    """Quick check whether an Ollama server is listening locally."""
    try:
        httpx.get("http://localhost:11434/api/tags", timeout=timeout)
        return True
    except httpx.HTTPError:
        return False


def resolve_backend(backend: str = "auto",
                    api_url: Optional[str] = None,
                    api_key: Optional[str] = None,
                    api_model: Optional[str] = None,
                    max_tokens: int = 1024,
                    config_dir: Optional[Path] = None) -> Optional[BackendSpec]:
    """Pick a backend spec. Returns None when the stub backend should be used.

    auto: explicit/env key -> saved config -> local Ollama -> stub
    """
    api_url = api_url or os.environ.get("CODELOOP_API_URL")
    api_key = api_key or os.environ.get("CODELOOP_API_KEY")
    api_model = api_model or os.environ.get("CODELOOP_API_MODEL")

    if backend == "stub":
        return None
    if backend == "api":
        return BackendSpec(url=api_url or DEFAULT_API_URL, model=api_model or DEFAULT_API_MODEL,
                           key=api_key, max_tokens=max_tokens)
    if backend == "ollama":
        return BackendSpec(url=api_url or OLLAMA_URL, model=api_model or OLLAMA_MODEL,
                           key=None, max_tokens=max_tokens)

    if api_key:
        return BackendSpec(url=api_url or DEFAULT_API_URL, model=api_model or DEFAULT_API_MODEL,
                           key=api_key, max_tokens=max_tokens)

    saved = load_config(config_dir)
    # a saved Ollama setup stores an empty key
    if "api_key" in saved:
        return BackendSpec(url=api_url or saved.get("api_url") or DEFAULT_API_URL,
                           model=api_model or saved.get("api_model") or DEFAULT_API_MODEL,
                           key=saved["api_key"] or None, max_tokens=max_tokens)

    if detect_ollama():
        return BackendSpec(url=OLLAMA_URL, model=api_model or OLLAMA_MODEL, key=None, max_tokens=max_tokens)

    return None
