"""Terminal rendering for the agent loop (rich-based)."""
from __future__ import annotations
import difflib
from typing import List, Optional, Tuple

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.text import Text
from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

from .messages import TokenUsage

# $ per million tokens, used only for the rough cost line
PROMPT_PRICE = 3.0
COMPLETION_PRICE = 15.0


def estimate_cost(usage: TokenUsage) -> float:
    return (usage.prompt_tokens * PROMPT_PRICE + usage.completion_tokens * COMPLETION_PRICE) / 1_000_000


def _fmt_tokens(total: int) -> str:
    return f"{total / 1000:.1f}k" if total >= 1000 else str(total)


def _normalized_lines(text: str) -> List[str]:
    lines = text.splitlines(True)
    if lines and not lines[-1].endswith("\n"):
        lines[-1] += "\n"
    return lines


def unified_diff(path: str, old: str, new: str) -> str:
    return "".join(difflib.unified_diff(_normalized_lines(old), _normalized_lines(new),
                                        fromfile=f"a/{path}", tofile=f"b/{path}"))


def diff_stats(path: str, old: str, new: str) -> Tuple[int, int]:
    """(added, removed) line counts between two versions of a file."""
    diff = unified_diff(path, old, new)
    if not diff:
        return 0, 0
    try:
        patch = PatchSet(diff)
        return sum(f.added for f in patch), sum(f.removed for f in patch)
    except UnidiffParseError:
        lines = diff.splitlines()[2:]
        return (sum(1 for l in lines if l.startswith("+")),
                sum(1 for l in lines if l.startswith("-")))


class Renderer:
    """Everything the engine prints goes through here."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    # ---------- status lines ----------
    def tool_action(self, action: str, detail: str) -> None:
        self.console.print(f"  [bold cyan]{escape(action):>6}[/bold cyan] [dim]{escape(detail)}[/dim]")

    def dim(self, text: str) -> None:
        self.console.print(f"[dim]{escape(text)}[/dim]")

    def success(self, text: str) -> None:
        self.console.print(f"[green]{escape(text)}[/green]")

    def error(self, text: str) -> None:
        self.console.print(f"[red]{escape(text)}[/red]")

    def turn_indicator(self, turn: int, max_turns: int) -> None:
        # green early, yellow mid, red near the limit
        if turn <= max_turns // 3:
            color = "bright_green"
        elif turn <= 2 * max_turns // 3:
            color = "bright_yellow"
        else:
            color = "red"
        self.console.print(f"  [dim][[/dim][bold {color}]{turn}[/bold {color}][dim]/{max_turns}][/dim]", end=" ")

    def thinking(self) -> None:
        self.console.print("[dim]thinking...[/dim]")

    # ---------- assistant text ----------
    def assistant(self, text: str) -> None:
        self.console.print()
        self.console.print(Markdown(text))

    def stream_start(self) -> None:
        self.console.print()
        self.console.print("  [bold bright_magenta]✦ codeloop[/bold bright_magenta]")

    def stream_line(self, line: str, in_code_block: bool) -> None:
        self.console.print(render_streaming_line(line, in_code_block))

    def stream_end(self) -> None:
        self.console.print()

    # ---------- diffs ----------
    def diff(self, path: str, old: str, new: str) -> bool:
        """Print a colored unified diff. Returns False when nothing changed."""
        diff = unified_diff(path, old, new)
        if not diff:
            return False
        for line in diff.splitlines():
            if line.startswith(("---", "+++")):
                self.console.print(f"    [dim]{escape(line)}[/dim]")
            elif line.startswith("+"):
                self.console.print(f"    [green]{escape(line)}[/green]")
            elif line.startswith("-"):
                self.console.print(f"    [red]{escape(line)}[/red]")
            elif line.startswith("@@"):
                self.console.print(f"    [cyan]{escape(line)}[/cyan]")
            else:
                self.console.print(f"    {escape(line)}")
        return True

    def diff_summary(self, path: str, old: str, new: str) -> bool:
        """One-line +adds -dels summary instead of the full diff."""
        adds, dels = diff_stats(path, old, new)
        if not adds and not dels:
            return False
        self.console.print(f"    [dim]{escape(path)}:[/dim] [green]+{adds}[/green] [red]-{dels}[/red]")
        return True

    def confirm(self, prompt: str) -> bool:
        answer = self.console.input(f"  [bold]{escape(prompt)}[/bold] [dim]\\[Y/n][/dim] ").strip().lower()
        return answer in ("", "y", "yes")

    # ---------- usage ----------
    def usage(self, usage: TokenUsage) -> None:
        self.console.print(f"  [dim]∙ {_fmt_tokens(usage.total)} tokens  ∙ ~${estimate_cost(usage):.4f}[/dim]")

    def session_cost(self, usage: TokenUsage) -> None:
        self.console.print()
        self.console.print("  [bold]≡ Session Usage[/bold]")
        self.console.print(f"  [dim]{'─' * 25}[/dim]")
        self.console.print(f"  [bright_cyan]▸[/bright_cyan] [dim]Prompt:[/dim]     [bold]{usage.prompt_tokens}[/bold]")
        self.console.print(f"  [bright_magenta]▸[/bright_magenta] [dim]Completion:[/dim] [bold]{usage.completion_tokens}[/bold]")
        self.console.print(f"  [bright_green]▸[/bright_green] [dim]Total:[/dim]      [bold]{_fmt_tokens(usage.total)}[/bold]")
        self.console.print(f"  [bright_yellow]▸[/bright_yellow] [dim]Cost:[/dim]       [bold]${estimate_cost(usage):.4f}[/bold]")
        self.console.print()


class QuietRenderer(Renderer):
    """Swallows output (non-interactive runs, tests). Keeps a transcript in `lines`."""

    def __init__(self, auto_confirm: bool = True):
        super().__init__(Console(quiet=True))
        self.auto_confirm = auto_confirm
        self.lines: List[str] = []
        self.streamed: List[str] = []

    def tool_action(self, action, detail):
        self.lines.append(f"{action} {detail}")

    def dim(self, text):
        self.lines.append(text)

    def success(self, text):
        self.lines.append(text)

    def error(self, text):
        self.lines.append(text)

    def stream_line(self, line, in_code_block):
        self.streamed.append(line)

    def confirm(self, prompt):
        self.lines.append(prompt)
        return self.auto_confirm


def render_streaming_line(line: str, in_code_block: bool) -> Text:
    """Lightweight markdown for one streamed line."""
    if in_code_block:
        return Text.assemble(("│ ", "dim"), line)

    trimmed = line.lstrip()
    if trimmed.startswith("```"):
        lang = trimmed.strip("`").strip()
        if lang:
            return Text.assemble(("╭── ", "dim"), (lang, "bold bright_cyan"), (" " + "─" * 27, "dim"))
        return Text("─" * 34, style="dim")
    for marker in ("### ", "## "):
        if trimmed.startswith(marker):
            return Text("  " + trimmed[len(marker):], style="bold")
    if trimmed.startswith("# "):
        return Text("  " + trimmed[2:], style="bold cyan")
    if trimmed.startswith(("- ", "* ")):
        return Text.assemble("    ", ("•", "cyan"), " ", Text.from_markup(_inline(trimmed[2:])))
    head, sep, rest = trimmed.partition(". ")
    if sep and head.isdigit() and len(head) <= 2:
        return Text.assemble("    ", (head + ".", "cyan"), " ", Text.from_markup(_inline(rest)))
    return Text.assemble("  ", Text.from_markup(_inline(line)))


def _inline(text: str) -> str:
    """**bold** and `code` spans to rich markup; everything else escaped."""
    out: List[str] = []
    i = 0
    while i < len(text):
        if text.startswith("**", i):
            close = text.find("**", i + 2)
            if close > i + 2:
                out.append(f"[bold]{escape(text[i + 2:close])}[/bold]")
                i = close + 2
                continue
        if text[i] == "`":
            close = text.find("`", i + 1)
            if close > i + 1:
                out.append(f"[yellow]{escape(text[i + 1:close])}[/yellow]")
                i = close + 1
                continue
        nxt = min([p for p in (text.find("**", i + 1), text.find("`", i + 1)) if p > 0] or [len(text)])
        out.append(escape(text[i:nxt]))
        i = nxt
    return "".join(out)
