"""Display adapter shared by the engine, the runners and the CLI.

Usage:
    from localci.display_adapter import get_display

    display = get_display()
    display.print_step_start(unit)
    display.print_step_result(unit, result, duration)

Verbose mode additionally prints captured step output and debug messages:
    DisplayAdapter.use_verbose = True
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Iterable, Optional, Set

from . import display as display_module
from .steps.types import Stage, StepStatus

if TYPE_CHECKING:
    from .steps.plan import PlanUnit
    from .steps.types import JobResult, StepResult

MASK = "***"


def step_label(unit: "PlanUnit") -> str:
    """Hosted-runner style label: 'Pre Checkout', 'Checkout', 'Post Checkout'."""
    name = unit.step.display_name
    if unit.stage == Stage.PRE:
        return f"Pre {name}"
    if unit.stage == Stage.POST:
        return f"Post {name}"
    return name


class DisplayAdapter:
    """Adapter that formats engine events through the display module."""

    # Global switch - set before creating instances
    use_verbose: bool = False

    _instance: Optional["DisplayAdapter"] = None

    @classmethod
    def get_instance(cls) -> "DisplayAdapter":
        """Get or create the singleton adapter instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None

    def __init__(self) -> None:
        self._display = display_module
        self._verbose = self.use_verbose
        self._masks: Set[str] = set()

    @property
    def console(self):
        """Get the Rich console instance."""
        return self._display.console

    # =========================================================================
    # Secrets
    # =========================================================================

    def add_masks(self, values: Iterable[str]) -> None:
        """Register values that must never be printed."""
        self._masks.update(v for v in values if v)

    def mask(self, text: Optional[str]) -> str:
        if not text:
            return ""
        # Longest first so a secret containing another is fully masked
        for secret in sorted(self._masks, key=len, reverse=True):
            text = text.replace(secret, MASK)
        return text

    # =========================================================================
    # Job Display
    # =========================================================================

    def print_job_header(self, job_name: str, workdir: str, step_count: int) -> None:
        self._display.print_job_header(job_name, workdir, step_count)

    def print_job_summary(self, result: "JobResult", started_at: float) -> None:
        self._display.print_job_summary(result, started_at)

    def print_job_interrupted(self) -> None:
        self._display.print_job_interrupted()

    def print_job_error(self, error: str) -> None:
        self.console.print(f"[bold red]Error: {self.mask(error)}[/bold red]")

    # =========================================================================
    # Step Display
    # =========================================================================

    def print_step_start(self, unit: "PlanUnit") -> float:
        """Print step start indicator and return the start timestamp."""
        self._display.print_step_start(step_label(unit), unit.depth)
        return time.time()

    def print_step_skipped(self, unit: "PlanUnit", reason: str) -> None:
        self._display.print_step_skipped(step_label(unit), reason, unit.depth)

    def print_step_result(
        self,
        unit: "PlanUnit",
        result: "StepResult",
        duration: float,
    ) -> None:
        """Print step completion result."""
        label = step_label(unit)
        error = self.mask(result.error) or None

        if result.outcome == StepStatus.SUCCESS:
            self._display.print_step_complete(label, duration, unit.depth)
        elif result.outcome == StepStatus.CANCELLED:
            self._display.print_step_cancelled(label, duration, error, unit.depth)
        else:
            continued = result.conclusion == StepStatus.SUCCESS
            self._display.print_step_failed(label, duration, error, continued, unit.depth)

    def print_step_output(self, unit: "PlanUnit", output: Optional[str]) -> None:
        """Print step output (verbose mode only)."""
        if self._verbose and output and output.strip():
            self._display.print_step_output(self.mask(output), unit.depth)

    def print_command_message(self, unit: "PlanUnit", level: str, message: str) -> None:
        """Print a workflow command annotation; debug only in verbose mode."""
        if level == "debug" and not self._verbose:
            return
        self._display.print_command_message(level, self.mask(message), unit.depth)


def get_display() -> DisplayAdapter:
    """Get the display adapter instance."""
    return DisplayAdapter.get_instance()
