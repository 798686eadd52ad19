from __future__ import annotations
import os
import sys
from pathlib import Path
from typing import Optional

import typer
from rich import print
from dotenv import load_dotenv

from .backend import BackendError, create_backend
from .config import (
    PROVIDER_PRESETS, Autonomy, config_path, configure_logging, load_config, resolve_backend, save_config,
)
from .runtime import Agent
from .repl import Repl
from .sessions import SessionManager
from .tools.git_tools import is_git_repo
from .ui import Renderer

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(add_completion=False, help="codeloop: tool-calling coding agent for any OpenAI-compatible API")

BACKENDS = ("auto", "api", "ollama", "stub")


@app.command()
def models():
    """List the built-in provider presets."""
    for key, p in PROVIDER_PRESETS.items():
        print(f"[bold]{key}[/bold] -> {p.default_model} [dim]({p.url})[/dim]"
              f"{'' if p.needs_key else ' (no key needed)'}")


@app.command()
def sessions(delete: Optional[str] = typer.Option(None, help="Delete the session with this id")):
    """List saved sessions, newest first."""
    manager = SessionManager()
    if delete:
        if manager.delete(delete):
            print(f"[green]Deleted session {delete}[/green]")
        else:
            print(f"[red]No session {delete}[/red]")
            raise typer.Exit(1)
        return
    found = manager.list_sessions()
    if not found:
        print("[dim]No saved sessions.[/dim]")
        return
    for s in found:
        print(f"[cyan]{s.id}[/cyan] [dim]{s.created_at}[/dim] {s.preview}")


@app.command()
def config(api_url: Optional[str] = typer.Option(None, help="API base URL to save"),
           api_key: Optional[str] = typer.Option(None, help="API key to save (empty string for none)"),
           api_model: Optional[str] = typer.Option(None, help="Model name to save")):
    """Show or update the saved backend settings."""
    current = load_config()
    updates = {"api_url": api_url, "api_key": api_key, "api_model": api_model}
    if all(v is None for v in updates.values()):
        if not current:
            print(f"[dim]No saved config ({config_path()})[/dim]")
            return
        for key, value in current.items():
            if key == "api_key" and value:
                value = mask_key(value)
            print(f"[bold]{key}[/bold] = {value}")
        return
    current.update({k: v for k, v in updates.items() if v is not None})
    path = save_config(current)
    print(f"[green]Saved config to {path}[/green]")


def mask_key(key: str) -> str:
    return key[:4] + "..." if len(key) > 8 else "***"


def resume_target(manager: SessionManager, resume: Optional[str], continue_latest: bool) -> Optional[str]:
    """Session id to resume: an explicit id wins over --continue."""
    if resume or not continue_latest:
        return resume
    latest = manager.latest()
    if latest is None:
        print("[yellow]No previous session found, starting new session.[/yellow]")
        return None
    print(f"[green]Continuing session: {latest.id}[/green]")
    return latest.id


@app.command()
def run(backend: str = typer.Option("auto", help="Backend: auto, api, ollama or stub"),
        api_url: Optional[str] = typer.Option(None, help="API base URL (default: OpenRouter)"),
        api_key: Optional[str] = typer.Option(None, help="API key"),
        api_model: Optional[str] = typer.Option(None, help="Model name for API calls"),
        workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help="Working directory (defaults to cwd)"),
        max_tokens: int = typer.Option(1024, help="Max tokens to generate per response"),
        prompt: Optional[str] = typer.Option(None, "--prompt", "-p", help="Run a single prompt and exit"),
        autonomy: str = typer.Option("auto-edit", help="Autonomy level: suggest, auto-edit, full-auto"),
        resume: Optional[str] = typer.Option(None, help="Resume a previous session by ID"),
        continue_latest: bool = typer.Option(False, "--continue", help="Continue the most recent session"),
        no_stream: bool = typer.Option(False, "--no-stream", help="Disable token streaming"),
        debug: bool = typer.Option(False, help="Write debug logs to codeloop_debug.log")):
    """Start the interactive agent (or run one prompt with -p)."""
    if backend not in BACKENDS:
        raise typer.BadParameter(f"backend must be one of {', '.join(BACKENDS)}")
    ws = str(workspace) if workspace else os.getcwd()
    if not os.path.isdir(ws):
        raise typer.BadParameter("workspace must be a directory")

    configure_logging(debug)
    renderer = Renderer()
    spec = resolve_backend(backend, api_url=api_url, api_key=api_key, api_model=api_model,
                           max_tokens=max_tokens)
    model = create_backend(spec, renderer=renderer)

    try:
        if prompt is not None:
            # non-interactive runs never commit and always use auto-edit
            agent = Agent(model, ws, autonomy=Autonomy.AUTO_EDIT, renderer=renderer, stream=not no_stream)
            conv = agent.new_conversation()
            try:
                result = agent.run_turn(conv, prompt)
            except BackendError as e:
                renderer.error(f"  Error: {e}")
                raise typer.Exit(1)
            if result.usage:
                renderer.usage(result.usage)
            return

        agent = Agent(model, ws, autonomy=Autonomy.parse(autonomy), renderer=renderer,
                      auto_commit=is_git_repo(ws), stream=not no_stream)
        manager = SessionManager()
        Repl(agent, renderer, manager, resume=resume_target(manager, resume, continue_latest)).run()
    finally:
        model.close()


def main():
    # If no arguments provided or no recognized command, default to 'run'
    if len(sys.argv) == 1 or sys.argv[1] not in ("models", "run", "sessions", "config", "--help"):
        sys.argv.insert(1, "run")
    app()


if __name__ == "__main__":
    main()
