"""Flattening of a resolved step tree into an execution plan.

The recursive nesting of composite actions is resolved once, up front, into
a FIFO pre queue, an ordered main queue and a LIFO post stack. Executing the
plan then needs no recursion, and the ordering guarantees can be checked on
the plan alone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from localci.steps.errors import CircularDependencyError
from localci.steps.types import Runnable, Stage, Step

KEY_SEPARATOR = "/"

# Main-phase timeline events
ENTER = "enter"
MAIN = "main"
EXIT = "exit"
SKIP = "skip"


@dataclass(frozen=True)
class PlanUnit:
    """One schedulable unit of the plan: a step at a given stage.

    Attributes:
        step: The step this unit belongs to
        stage: pre, main or post
        key: Step id qualified by enclosing composites ("outer/inner")
        scope: Keys of the enclosing composites, outermost first
    """

    step: Step
    stage: Stage
    key: str
    scope: Tuple[str, ...] = ()

    @property
    def runnable(self) -> Optional[Runnable]:
        action = self.step.action
        if self.stage == Stage.PRE:
            return action.pre
        if self.stage == Stage.POST:
            return action.post
        return action.main

    @property
    def depth(self) -> int:
        return len(self.scope)


@dataclass(frozen=True)
class CompositeGroup:
    """A composite step and its slice [start, end) of the main queue."""

    unit: PlanUnit
    start: int
    end: int

    @property
    def key(self) -> str:
        return self.unit.key


@dataclass(frozen=True)
class TimelineEntry:
    """One event of the main phase, in declaration order.

    ENTER and EXIT bracket the children of a composite step, MAIN is a unit
    of the main queue and SKIP a step whose condition was literally false.
    """

    event: str
    unit: PlanUnit


@dataclass
class ExecutionPlan:
    """Derived, per-run plan of a job.

    Attributes:
        pre_queue: Pre hooks in declaration order
        main_queue: Main units of non-composite steps in declaration order
        post_stack: Post hooks; pop from the end to execute
        skipped: Steps whose condition was literally false
        groups: Composite steps with their main-queue slices
        timeline: Main-phase events in declaration order
    """

    pre_queue: List[PlanUnit] = field(default_factory=list)
    main_queue: List[PlanUnit] = field(default_factory=list)
    post_stack: List[PlanUnit] = field(default_factory=list)
    skipped: List[PlanUnit] = field(default_factory=list)
    groups: List[CompositeGroup] = field(default_factory=list)
    timeline: List[TimelineEntry] = field(default_factory=list)

    def composite_steps(self) -> Dict[str, Step]:
        return {group.key: group.unit.step for group in self.groups}

    def post_order(self) -> List[str]:
        """Keys in the order the post stack will be drained."""
        return [unit.key for unit in reversed(self.post_stack)]


def qualify(scope: Tuple[str, ...], step_id: str) -> str:
    """Qualified key of a step within its enclosing composites."""
    if not scope:
        return step_id
    return scope[-1] + KEY_SEPARATOR + step_id


def build_plan(steps: Sequence[Step]) -> ExecutionPlan:
    """Flatten a step tree into an ExecutionPlan.

    Pure function of the tree. A step whose condition is literally false is
    recorded as skipped and none of its hooks or children are scheduled.

    Raises:
        CircularDependencyError: If a step object is nested inside itself
    """
    plan = ExecutionPlan()
    _flatten(steps, (), plan, ())
    return plan


def _flatten(
    steps: Sequence[Step],
    scope: Tuple[str, ...],
    plan: ExecutionPlan,
    ancestry: Tuple[int, ...],
) -> None:
    for step in steps:
        if id(step) in ancestry:
            raise CircularDependencyError(
                f"Step '{step.id}' is nested inside itself",
                chain=list(scope) + [step.id],
            )

        key = qualify(scope, step.id)

        main_unit = PlanUnit(step, Stage.MAIN, key, scope)

        if step.condition is False:
            plan.skipped.append(main_unit)
            plan.timeline.append(TimelineEntry(SKIP, main_unit))
            continue

        if step.action.pre is not None:
            plan.pre_queue.append(PlanUnit(step, Stage.PRE, key, scope))

        if step.action.post is not None:
            plan.post_stack.append(PlanUnit(step, Stage.POST, key, scope))

        if step.is_composite:
            start = len(plan.main_queue)
            plan.timeline.append(TimelineEntry(ENTER, main_unit))
            _flatten(step.children, scope + (key,), plan, ancestry + (id(step),))
            plan.timeline.append(TimelineEntry(EXIT, main_unit))
            plan.groups.append(CompositeGroup(unit=main_unit, start=start, end=len(plan.main_queue)))
        elif step.action.main is not None:
            plan.main_queue.append(main_unit)
            plan.timeline.append(TimelineEntry(MAIN, main_unit))
