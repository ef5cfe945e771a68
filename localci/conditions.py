"""Status conditions for steps and hooks.

Expression evaluation happens upstream; what reaches the engine is either a
literal boolean or one of the status functions below, evaluated when the
step or hook is about to run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from localci.steps.types import Condition, StepResult, StepStatus


@dataclass
class ConditionView:
    """Read-only view of the job handed to condition predicates.

    Attributes:
        job_status: success, failure or cancelled, as of now
        step_result: Main result of the step owning the hook (None if not run)
        results: All main results recorded so far
    """

    job_status: StepStatus = StepStatus.SUCCESS
    step_result: Optional[StepResult] = None
    results: Dict[str, StepResult] = field(default_factory=dict)


class ConditionError(ValueError):
    """Raised when a condition string is not a literal or status function."""

    pass


def always() -> Callable[[ConditionView], bool]:
    """Run regardless of job status."""
    return lambda view: True


def success() -> Callable[[ConditionView], bool]:
    """Run only while no earlier step has failed or the job was cancelled."""
    return lambda view: view.job_status == StepStatus.SUCCESS


def failure() -> Callable[[ConditionView], bool]:
    """Run only when an earlier step has failed."""
    return lambda view: view.job_status == StepStatus.FAILURE


def cancelled() -> Callable[[ConditionView], bool]:
    """Run only when the job was cancelled."""
    return lambda view: view.job_status == StepStatus.CANCELLED


_STATUS_FUNCTIONS: Dict[str, Callable[[], Callable[[ConditionView], bool]]] = {
    "always()": always,
    "success()": success,
    "failure()": failure,
    "cancelled()": cancelled,
}


def parse_condition(value: Any, default: Condition = True) -> Condition:
    """Turn an 'if:' style value into a Condition.

    Accepts booleans, "true"/"false" and the four status functions,
    optionally wrapped in ${{ }}.

    Raises:
        ConditionError: For anything that would need expression evaluation
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if not isinstance(value, str):
        raise ConditionError(f"Unsupported condition value: {value!r}")

    text = value.strip()
    if text.startswith("${{") and text.endswith("}}"):
        text = text[3:-2].strip()
    if not text:
        return default

    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered in _STATUS_FUNCTIONS:
        return _STATUS_FUNCTIONS[lowered]()

    raise ConditionError(
        f"Unsupported condition '{value}': only true, false, always(), "
        f"success(), failure() and cancelled() are evaluated locally"
    )


def evaluate(condition: Condition, view: ConditionView) -> bool:
    """Evaluate a condition against the current view of the job."""
    if isinstance(condition, bool):
        return condition
    return bool(condition(view))
