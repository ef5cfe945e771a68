"""Type definitions for resolved steps, actions and step results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

# A condition is either a literal decided upstream or a predicate over a
# ConditionView (see localci.conditions), evaluated when the unit is pending.
Condition = Union[bool, Callable[[Any], bool]]


class StepKind(Enum):
    """How a step's work is carried out."""

    RUN = "run"
    USES_COMMAND = "uses-command"
    USES_CONTAINER = "uses-container"
    USES_COMPOSITE = "uses-composite"


class Stage(Enum):
    """Lifecycle stage of a step in the job timeline."""

    PRE = "pre"
    MAIN = "main"
    POST = "post"


class StepStatus(Enum):
    """State of a step (or hook) in the execution state machine."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (StepStatus.PENDING, StepStatus.RUNNING)


class RunnableKind(Enum):
    """What a runner has to do to execute a runnable."""

    SCRIPT = "script"  # inline script executed through a shell template
    EXEC = "exec"  # argv executed directly
    CONTAINER = "container"  # image run in a throwaway container


@dataclass(frozen=True)
class Runnable:
    """A concrete unit of work handed to a StepRunner.

    Attributes:
        kind: How the runnable is executed
        script: Script body for SCRIPT runnables
        shell: Shell name or template containing {0} for SCRIPT runnables
        argv: Command line for EXEC runnables
        image: Image reference for CONTAINER runnables
        entrypoint: Optional entrypoint override for CONTAINER runnables
        args: Arguments passed to the container entrypoint
        working_directory: Directory to run in (defaults to the workspace)
    """

    kind: RunnableKind
    script: Optional[str] = None
    shell: Optional[str] = None
    argv: Tuple[str, ...] = ()
    image: Optional[str] = None
    entrypoint: Optional[str] = None
    args: Tuple[str, ...] = ()
    working_directory: Optional[str] = None


@dataclass(frozen=True)
class ActionEntrypoints:
    """Entrypoints declared by a resolved action.

    Attributes:
        main: Runnable for the main body (None only for composite actions)
        pre: Optional setup runnable, run before any main step of the job
        pre_condition: Condition for the pre hook (defaults to always)
        post: Optional cleanup runnable, run after all main steps
        post_condition: Condition for the post hook (defaults to always)
        outputs: Composite outputs as "<child-id>.<output>" references
        action_path: Directory the action was loaded from, if any
    """

    main: Optional[Runnable] = None
    pre: Optional[Runnable] = None
    pre_condition: Condition = True
    post: Optional[Runnable] = None
    post_condition: Condition = True
    outputs: Dict[str, str] = field(default_factory=dict)
    action_path: Optional[str] = None


@dataclass
class Step:
    """A resolved step of a job.

    Composite steps own their children exclusively; the resolver guarantees
    the tree is acyclic.

    Attributes:
        id: Stable identifier, unique within its step list
        kind: How the step runs
        name: Display name
        condition: Pre-evaluated boolean or predicate (defaults to true)
        continue_on_error: Whether a failure still lets later steps run
        timeout_minutes: Optional hard deadline for each runnable of the step
        env: Step-level environment variables
        inputs: Action inputs ('with:'), stringified only at the process boundary
        action: Entrypoints of the step's action (main holds the script for run steps)
        children: Child steps of a composite action
        uses: Original action reference, for display and errors
    """

    id: str
    kind: StepKind
    name: str = ""
    condition: Condition = True
    continue_on_error: bool = False
    timeout_minutes: Optional[float] = None
    env: Dict[str, str] = field(default_factory=dict)
    inputs: Dict[str, Any] = field(default_factory=dict)
    action: ActionEntrypoints = field(default_factory=ActionEntrypoints)
    children: List[Step] = field(default_factory=list)
    uses: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.uses or self.id

    @property
    def is_composite(self) -> bool:
        return self.kind == StepKind.USES_COMPOSITE


@dataclass(frozen=True)
class StepResult:
    """Immutable outcome of one step or hook.

    Attributes:
        outcome: Raw result of running
        conclusion: Outcome adjusted by continue-on-error
        outputs: Outputs the step produced
        error: Error attached to the step, if any
    """

    outcome: StepStatus
    conclusion: StepStatus
    outputs: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class JobResult:
    """The engine's externally visible artifact for one job run.

    Attributes:
        name: Job name
        conclusion: success, failure or cancelled
        step_results: Main results keyed by qualified step key
        hook_results: Pre/post hook results keyed by (step key, stage)
        env: Final environment of the job's top-level scope
        path: Final path prepend entries of the top-level scope
        summary: Concatenated step summaries
        error: Job-level error (e.g. resolver failure) if any
    """

    name: str
    conclusion: StepStatus
    step_results: Dict[str, StepResult] = field(default_factory=dict)
    hook_results: Dict[Tuple[str, Stage], StepResult] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    path: List[str] = field(default_factory=list)
    summary: str = ""
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.conclusion == StepStatus.SUCCESS


@dataclass
class ResolutionState:
    """Tracks composite actions being resolved.

    Used for circular dependency detection and depth limiting.

    Attributes:
        resolution_stack: Stack of action identifiers being resolved
        max_depth: Maximum allowed nesting depth
    """

    resolution_stack: List[str] = field(default_factory=list)
    max_depth: int = 10

    def push(self, action_id: str) -> None:
        """Push an action onto the resolution stack.

        Raises:
            CircularDependencyError: If action_id is already in stack
            MaxDepthExceededError: If max depth would be exceeded
        """
        from localci.steps.errors import (
            CircularDependencyError,
            MaxDepthExceededError,
        )

        if action_id in self.resolution_stack:
            chain = self.resolution_stack + [action_id]
            raise CircularDependencyError(
                f"Circular dependency detected: {' → '.join(chain)}",
                chain=chain,
            )

        if len(self.resolution_stack) >= self.max_depth:
            raise MaxDepthExceededError(
                f"Maximum nesting depth ({self.max_depth}) exceeded. "
                f"Current stack: {' → '.join(self.resolution_stack)}",
                depth=len(self.resolution_stack),
                max_depth=self.max_depth,
            )

        self.resolution_stack.append(action_id)

    def pop(self) -> str:
        """Pop the most recent action from the resolution stack."""
        return self.resolution_stack.pop()

    @property
    def depth(self) -> int:
        """Current nesting depth."""
        return len(self.resolution_stack)
