"""CI-style terminal display for job execution.

Single-line step format with status icons, durations, and indentation for
steps nested inside composite actions.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from .steps.types import JobResult


# Shared console instance
console = Console()

ICONS = {
    "rocket": "🚀",
    "check": "✓",
    "cross": "✗",
    "warning": "⚠",
    "info": "ℹ",
    "stop": "⏹",
    "file": "📄",
    "arrow": "❯",
    "diamond": "◆",
}


@dataclass
class StatusIcons:
    """Status icons with colors for CI-style display."""

    RUNNING = "[cyan][bold]•[/bold][/cyan]"
    SUCCESS = "[green][bold]✓[/bold][/green]"
    FAILED = "[red][bold]✗[/bold][/red]"
    SKIPPED = "[yellow]⏭[/yellow]"
    CANCELLED = "[magenta]⏹[/magenta]"
    CONTINUED = "[yellow][bold]![/bold][/yellow]"


MESSAGE_STYLES = {
    "debug": "dim",
    "group": "bold",
    "notice": "cyan",
    "warning": "yellow",
    "error": "red",
}


def _get_indent(depth: int) -> str:
    return "    " * depth


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs:02d}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes:02d}m"


def print_job_header(job_name: str, workdir: str, step_count: int) -> None:
    """Print job header with key configuration."""
    console.print()
    console.print(f"[bold]Workdir:[/bold] {escape(workdir)}")
    console.print(f"[bold]Job:[/bold] {escape(job_name)} [dim]| Steps: {step_count}[/dim]")
    console.print()


def print_step_start(label: str, depth: int = 0) -> None:
    """Format: [•] Step name  running..."""
    console.print(
        f"{_get_indent(depth)}[{StatusIcons.RUNNING}] {escape(label)}  [dim]running...[/dim]"
    )


def print_step_complete(label: str, duration: float, depth: int = 0) -> None:
    """Format: [✓] Step name  1.2s"""
    console.print(
        f"{_get_indent(depth)}[{StatusIcons.SUCCESS}] {escape(label)}  "
        f"[dim]{format_duration(duration)}[/dim]"
    )


def print_step_failed(
    label: str,
    duration: float,
    error: Optional[str] = None,
    continued: bool = False,
    depth: int = 0,
) -> None:
    """Format: [✗] Step name  1.2s, followed by the error message."""
    indent = _get_indent(depth)
    icon = StatusIcons.CONTINUED if continued else StatusIcons.FAILED
    suffix = " [yellow](continue-on-error)[/yellow]" if continued else ""
    console.print(
        f"{indent}[{icon}] {escape(label)}{suffix}  [dim]{format_duration(duration)}[/dim]"
    )
    if error:
        console.print(f"{indent}    [red]Error: {escape(error)}[/red]")


def print_step_cancelled(
    label: str,
    duration: float,
    reason: Optional[str] = None,
    depth: int = 0,
) -> None:
    """Format: [⏹] Step name  1.2s, followed by the reason."""
    indent = _get_indent(depth)
    console.print(
        f"{indent}[{StatusIcons.CANCELLED}] {escape(label)}  [dim]{format_duration(duration)}[/dim]"
    )
    if reason:
        console.print(f"{indent}    [magenta]{escape(reason)}[/magenta]")


def print_step_skipped(label: str, reason: str, depth: int = 0) -> None:
    """Format: [⏭] Step name — reason"""
    console.print(
        f"{_get_indent(depth)}[{StatusIcons.SKIPPED}] {escape(label)} [dim]— {escape(reason)}[/dim]"
    )


def print_step_output(output: str, depth: int = 0) -> None:
    """Print captured step output, indented under the step line."""
    indent = _get_indent(depth + 1)
    for line in output.rstrip().splitlines():
        console.print(f"{indent}[dim]|[/dim] {escape(line)}", highlight=False)


def print_command_message(level: str, message: str, depth: int = 0) -> None:
    """Print a ::warning::/::error:: style annotation."""
    style = MESSAGE_STYLES.get(level, "white")
    console.print(
        f"{_get_indent(depth + 1)}[{style}]{level}: {escape(message)}[/{style}]"
    )


def print_job_interrupted() -> None:
    console.print()
    console.print("[yellow]Cancellation requested, running cleanup steps...[/yellow]")


def print_job_summary(result: "JobResult", started_at: float) -> None:
    """Print compact job summary.

    Format: ────────────────────────────────────
            ✓ Job succeeded | 3 steps | 56.2s
    """
    from .steps.types import StepStatus

    elapsed = time.time() - started_at
    console.print()
    console.print("─" * 40)

    step_count = len(result.step_results)
    duration_str = format_duration(elapsed)
    if result.conclusion == StepStatus.SUCCESS:
        headline = f"[green]{ICONS['check']} Job succeeded[/green]"
    elif result.conclusion == StepStatus.CANCELLED:
        headline = f"[magenta]{ICONS['stop']} Job cancelled[/magenta]"
    else:
        headline = f"[red]{ICONS['cross']} Job failed[/red]"

    console.print(f"{headline} | {step_count} steps | {duration_str}")
    if result.error:
        console.print(f"[red]{escape(result.error)}[/red]")
    console.print()
