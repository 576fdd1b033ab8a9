# display.py
# All terminal output for the buildloop CLI.
#
# The agent never prints. It emits events; ConsoleObserver turns them into
# calls to the named functions below. Swap this file to change the entire UI.
#
# Colour language:
#   cyan    - request boundaries and phases
#   blue    - model text
#   magenta - reasoning shown after thinking
#   yellow  - file operations in progress
#   green   - success / completion
#   red     - failed tool calls

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from buildloop.events import (
    AgentEvent,
    FileOperation,
    MessagePersisted,
    PhaseChanged,
    ReasoningDelta,
    RequestComplete,
    TextDelta,
    ThinkingComplete,
    ToolFinished,
    ToolStarted,
)
from buildloop.models import Phase

console = Console()

PHASE_LABELS = {
    Phase.THINKING: "Thinking…",
    Phase.REASONING: "Reasoning",
    Phase.CODE_WRITING: "Writing code…",
    Phase.BUILDING: "Building",
    Phase.COMPLETED: "Completed",
}


def configure_logging(level: str = "INFO") -> None:
    """Route every logger through rich. Call once, from the entry point."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


# ---------------------------------------------------------------------------
# Request boundaries
# ---------------------------------------------------------------------------


def banner(model: str, workspace: str, dry_run: bool) -> None:
    mode = "[yellow]dry run[/yellow]" if dry_run else "[green]live[/green]"
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]buildloop[/bold cyan]\n"
            "[dim]Coding agent turn loop[/dim]\n\n"
            f"[dim]Model     :[/dim] [white]{escape(model)}[/white]\n"
            f"[dim]Workspace :[/dim] [white]{escape(workspace)}[/white]\n"
            f"[dim]Mode      :[/dim] {mode}",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def prompt_received(prompt: str) -> None:
    console.print()
    console.print(Rule("[cyan]NEW REQUEST[/cyan]", style="cyan"))
    console.print(
        Panel(
            Text(prompt, style="white"),
            title=_label("USER PROMPT", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


def final_result(result: str) -> None:
    console.print()
    console.print(
        Panel(
            Text(result),
            title=_label("RESULT", "green"),
            border_style="green",
            padding=(1, 2),
        )
    )
    console.print()


def request_failed(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            Text(reason, style="bold white"),
            title=_label("REQUEST FAILED", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()


# ---------------------------------------------------------------------------
# Stream
# ---------------------------------------------------------------------------


def phase_changed(phase: Phase) -> None:
    console.print()
    color = "green" if phase is Phase.COMPLETED else "cyan"
    console.print(_label(phase.value.upper(), color), f"[{color}] {PHASE_LABELS[phase]}[/{color}]")


def thinking_complete(seconds: int) -> None:
    console.print(f"  [dim]Thought for {seconds} second{'s' if seconds != 1 else ''}[/dim]")


def text_delta(text: str) -> None:
    console.print(text, style="blue", end="", markup=False, highlight=False)


def reasoning_delta(text: str) -> None:
    console.print(text, style="magenta", end="", markup=False, highlight=False)


def file_operation(state: str, path: str) -> None:
    if state in ("creating", "editing"):
        console.print(f"\n  [yellow]↳ {state.capitalize()}[/yellow] [white]{escape(path)}[/white]…", end="")
    else:
        console.print(f"  [bold green]✓ {state.capitalize()}[/bold green]")


def tool_started(name: str, path: str | None) -> None:
    target = f"  [dim]{escape(_mono(path, 60))}[/dim]" if path else ""
    console.print(f"\n  [cyan]Tool[/cyan]  [bold white]{escape(name)}[/bold white]{target}", end="")


def tool_finished(name: str, is_error: bool) -> None:
    if is_error:
        console.print(f"  [bold red]✗ {escape(name)} failed[/bold red]")
    else:
        console.print("  [green]✓[/green]")


def request_complete(input_tokens: int, output_tokens: int) -> None:
    console.print(f"  [dim]Tokens: {input_tokens} in / {output_tokens} out[/dim]")


class ConsoleObserver:
    """Event sink that renders the agent's progress to the terminal."""

    def __call__(self, event: AgentEvent) -> None:
        if isinstance(event, PhaseChanged):
            phase_changed(event.phase)
        elif isinstance(event, ThinkingComplete):
            thinking_complete(event.duration_seconds)
        elif isinstance(event, TextDelta):
            text_delta(event.text)
        elif isinstance(event, ReasoningDelta):
            reasoning_delta(event.text)
        elif isinstance(event, FileOperation):
            file_operation(event.state, event.path)
        elif isinstance(event, ToolStarted):
            tool_started(event.name, event.path)
        elif isinstance(event, ToolFinished):
            tool_finished(event.name, event.is_error)
        elif isinstance(event, RequestComplete):
            request_complete(event.input_tokens, event.output_tokens)
        elif isinstance(event, MessagePersisted):
            console.print(f"  [dim]message {event.message_id}[/dim]")
