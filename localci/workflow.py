"""Job driver that runs one job's steps through the execution plan."""

from __future__ import annotations

import asyncio
import signal
import sys
import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Set, Tuple

from .config import EngineConfig
from .context import ExecutionContext
from .display_adapter import get_display
from .executor import StepExecutor, conclude, skipped_result
from .runners import default_registry
from .steps.errors import ResolverError
from .steps.plan import ENTER, EXIT, MAIN, SKIP, ExecutionPlan, PlanUnit, build_plan, qualify
from .steps.types import JobResult, Stage, Step, StepResult, StepStatus
from .steps.validator import stringify_input

if TYPE_CHECKING:
    from .runners.base import StepRunner
    from .steps.resolver import ActionResolver

ScopePath = Tuple[str, ...]

_UNSUCCESSFUL = (StepStatus.FAILURE, StepStatus.CANCELLED)


def fold_conclusion(results: Sequence[StepResult], cancelled: bool = False) -> StepStatus:
    """Job conclusion from recorded step and hook conclusions."""
    conclusions = [r.conclusion for r in results]
    if StepStatus.FAILURE in conclusions:
        return StepStatus.FAILURE
    if cancelled or StepStatus.CANCELLED in conclusions:
        return StepStatus.CANCELLED
    return StepStatus.SUCCESS


class JobRunner:
    """Runs the steps of a single job with hosted-runner ordering.

    Pre hooks run first in declaration order, then main steps in declaration
    order (composite children flattened in place), then every post hook in
    reverse registration order, even after a failure or a cancellation.
    """

    def __init__(
        self,
        steps: Sequence[Any],
        runner: Optional["StepRunner"] = None,
        config: Optional[EngineConfig] = None,
        resolver: Optional["ActionResolver"] = None,
        name: str = "job",
        env: Optional[Dict[str, str]] = None,
    ) -> None:
        """Initialize the job runner.

        Args:
            steps: Resolved Step objects, or raw step definitions when a
                resolver is given
            runner: Runner for all runnables (process/container registry by default)
            config: Engine settings
            resolver: Resolves raw step definitions into Steps
            name: Job name for display and the JobResult
            env: Job-level environment seeded into the top-level scope
        """
        self.steps = list(steps)
        self.config = config or EngineConfig()
        self.runner = runner or default_registry(self.config.workdir)
        self.resolver = resolver
        self.name = name
        self.env = dict(env or {})
        self.executor = StepExecutor(self.runner, self.config)

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._cancel_event: Optional[asyncio.Event] = None
        self._cancel_requested = False
        self._handling_signals = False

        # Per-run state
        self.context = ExecutionContext()
        self._scopes: Dict[ScopePath, ExecutionContext] = {}
        self._halted: Set[ScopePath] = set()
        self._skipped_scopes: Set[ScopePath] = set()
        self._composites: Dict[str, Step] = {}
        self._started_at: Dict[str, float] = {}
        self._scope_of: Dict[str, ScopePath] = {}

        self._display = get_display()

    # =========================================================================
    # Entry points
    # =========================================================================

    def run(self, handle_signals: bool = False) -> JobResult:
        """Run the job to completion on a fresh event loop.

        Args:
            handle_signals: Turn the first Ctrl-C into a cooperative
                cancellation; a second Ctrl-C interrupts immediately
        """
        return asyncio.run(self.run_async(handle_signals=handle_signals))

    def cancel(self) -> None:
        """Request cancellation. Safe to call from any thread.

        Pending steps are skipped, the running step is interrupted, and post
        hooks of started steps still run before the job reports cancelled.
        """
        self._cancel_requested = True
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._set_cancelled)

    def _set_cancelled(self) -> None:
        if self._cancel_event is not None and not self._cancel_event.is_set():
            self._cancel_event.set()
            self._display.print_job_interrupted()

    def _on_interrupt(self) -> None:
        if self._cancel_requested and self._loop is not None:
            # Restore the default handler so the next Ctrl-C raises KeyboardInterrupt
            self._loop.remove_signal_handler(signal.SIGINT)
            self._handling_signals = False
        self.cancel()

    async def run_async(self, handle_signals: bool = False) -> JobResult:
        """Run the job on the current event loop."""
        started_at = time.time()
        self._loop = asyncio.get_running_loop()
        self._cancel_event = asyncio.Event()
        if self._cancel_requested:
            self._cancel_event.set()

        if handle_signals and sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._on_interrupt)
            self._handling_signals = True

        try:
            try:
                steps = self._resolve()
                plan = build_plan(steps)
            except ResolverError as e:
                self._display.print_job_error(str(e))
                result = JobResult(name=self.name, conclusion=StepStatus.FAILURE, error=str(e))
                self._display.print_job_summary(result, started_at)
                return result

            self._reset(plan)
            self._display.print_job_header(self.name, str(self.config.workdir), len(steps))

            await self._run_pre(plan)
            await self._run_main(plan)
            await self._run_post(plan)

            result = self._build_result()
            self._display.print_job_summary(result, started_at)
            return result
        finally:
            if self._handling_signals:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._handling_signals = False
            self._loop = None

    def _resolve(self) -> List[Step]:
        if self.resolver is not None:
            return self.resolver.resolve(self.steps)
        return list(self.steps)

    def _reset(self, plan: ExecutionPlan) -> None:
        env = dict(self.config.env)
        env.update(self.env)
        self.context = ExecutionContext(env=env)
        self._scopes = {(): self.context}
        self._halted = set()
        self._skipped_scopes = set()
        self._composites = plan.composite_steps()
        self._started_at = {}
        self._scope_of = {entry.unit.key: entry.unit.scope for entry in plan.timeline}

    # =========================================================================
    # Scopes and job status
    # =========================================================================

    def scope_for(self, path: ScopePath) -> ExecutionContext:
        """Scope for a composite path, created from its parent on first use."""
        if path not in self._scopes:
            parent = self.scope_for(path[:-1])
            composite = self._composites[path[-1]]
            inputs = {name: stringify_input(value) for name, value in composite.inputs.items()}
            self._scopes[path] = parent.new_scope(inputs)
        return self._scopes[path]

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def job_status(self, path: ScopePath = ()) -> StepStatus:
        """success, failure or cancelled, as seen from a scope path.

        Counts the main results of the top-level scope and of every enclosing
        composite, plus all hook results. Failures inside a composite reach
        the outer scopes through the composite's own conclusion.
        """
        records = self.context.records
        visible = [
            result
            for key, result in records.results.items()
            if path[: len(self._scope_of.get(key, ()))] == self._scope_of.get(key, ())
        ]
        return fold_conclusion(
            visible + list(records.hook_results.values()),
            cancelled=self.cancelled,
        )

    def _is_halted(self, path: ScopePath) -> bool:
        return any(path[:i] in self._halted for i in range(len(path) + 1))

    def _halt_on_failure(self, unit: PlanUnit, result: StepResult) -> None:
        """A failing unit stops the remaining main steps of its scope."""
        if result.conclusion in _UNSUCCESSFUL:
            self._halted.add(unit.scope)

    def _blocked_reason(self, unit: PlanUnit) -> Optional[str]:
        """Why a pending main unit must be skipped without evaluation, if at all."""
        if any(unit.scope[:i] in self._skipped_scopes for i in range(1, len(unit.scope) + 1)):
            return "composite action skipped"
        # Status-function conditions decide for themselves after a failure
        if self._is_halted(unit.scope) and not callable(unit.step.condition):
            return "previous step failed"
        return None

    def _record_skip(self, unit: PlanUnit, reason: str) -> None:
        self._display.print_step_skipped(unit, reason)
        self.context.record_result(unit.key, skipped_result(reason))

    # =========================================================================
    # Phases
    # =========================================================================

    async def _run_pre(self, plan: ExecutionPlan) -> None:
        """Run pre hooks in declaration order in the top-level scope."""
        for unit in plan.pre_queue:
            result = await self.executor.execute(
                unit, self.context, self.job_status(), self._cancel_event
            )
            self.context.record_hook_result(unit.key, Stage.PRE, result)

            if result.outcome in _UNSUCCESSFUL:
                # The owning step fails now and its main body never runs
                main_result = StepResult(
                    outcome=result.outcome,
                    conclusion=result.conclusion,
                    error=f"Pre hook failed: {result.error}" if result.error else "Pre hook failed",
                )
                self.context.record_result(unit.key, main_result)
                self._halt_on_failure(unit, main_result)

    async def _run_main(self, plan: ExecutionPlan) -> None:
        """Run main units in declaration order, entering and leaving composites."""
        for entry in plan.timeline:
            unit = entry.unit
            if entry.event == SKIP:
                self._record_skip(unit, "condition is false")
            elif entry.event == ENTER:
                self._enter_composite(unit)
            elif entry.event == EXIT:
                self._exit_composite(unit)
            elif entry.event == MAIN:
                await self._run_main_unit(unit)

    async def _run_main_unit(self, unit: PlanUnit) -> None:
        if self.context.result_of(unit.key) is not None:
            # Already failed by its pre hook
            return

        reason = self._blocked_reason(unit)
        if reason is not None:
            self._record_skip(unit, reason)
            return

        result = await self.executor.execute(
            unit, self.scope_for(unit.scope), self.job_status(unit.scope), self._cancel_event
        )
        self.context.record_result(unit.key, result)
        self._halt_on_failure(unit, result)

    def _enter_composite(self, unit: PlanUnit) -> None:
        path = unit.scope + (unit.key,)
        parent = self.scope_for(unit.scope)

        if self.context.result_of(unit.key) is not None:
            self._skipped_scopes.add(path)
            return

        reason = self._blocked_reason(unit)
        if reason is None and self.cancelled:
            reason = "job cancelled"
        if reason is None:
            if not self.executor.should_run(unit, parent, self.job_status(unit.scope)):
                reason = "condition is false"

        if reason is not None:
            self._record_skip(unit, reason)
            self._skipped_scopes.add(path)
            return

        self.context.mark_started(unit.key)
        self._started_at[unit.key] = self._display.print_step_start(unit)
        self.scope_for(path)

    def _exit_composite(self, unit: PlanUnit) -> None:
        """Conclude a composite step from its direct children."""
        if self.context.result_of(unit.key) is not None:
            return

        step = unit.step
        failed_child: Optional[str] = None
        outcome = StepStatus.SUCCESS
        for child in step.children:
            child_result = self.context.result_of(qualify(unit.scope + (unit.key,), child.id))
            if child_result is None:
                continue
            if child_result.conclusion == StepStatus.FAILURE:
                outcome = StepStatus.FAILURE
                failed_child = failed_child or child.id
            elif child_result.conclusion == StepStatus.CANCELLED and outcome != StepStatus.FAILURE:
                outcome = StepStatus.CANCELLED
                failed_child = failed_child or child.id

        outputs = self._composite_outputs(unit)
        for name, value in outputs.items():
            self.context.set_output(unit.key, name, value)

        result = StepResult(
            outcome=outcome,
            conclusion=conclude(outcome, step.continue_on_error),
            outputs=outputs,
            error=f"Step '{failed_child}' did not succeed" if failed_child else None,
        )
        self.context.record_result(unit.key, result)
        started_at = self._started_at.pop(unit.key, time.time())
        self._display.print_step_result(unit, result, time.time() - started_at)
        self._halt_on_failure(unit, result)

    def _composite_outputs(self, unit: PlanUnit) -> Dict[str, str]:
        """Resolve '<child-id>.<output>' references of a composite action."""
        path = unit.scope + (unit.key,)
        outputs: Dict[str, str] = {}
        for name, reference in unit.step.action.outputs.items():
            child_id, _, output_name = reference.partition(".")
            child_outputs = self.context.outputs_of(qualify(path, child_id))
            outputs[name] = child_outputs.get(output_name, "")
        return outputs

    async def _run_post(self, plan: ExecutionPlan) -> None:
        """Drain the post stack, last registered first.

        Posts ignore the job's cancellation signal but keep their own timeout.
        """
        post_stack = list(plan.post_stack)
        while post_stack:
            unit = post_stack.pop()
            if not self.context.has_started(unit.key):
                reason = "step did not run"
                self._display.print_step_skipped(unit, reason)
                self.context.record_hook_result(unit.key, Stage.POST, skipped_result(reason))
                continue

            result = await self.executor.execute(
                unit, self.scope_for(unit.scope), self.job_status(unit.scope), None
            )
            self.context.record_hook_result(unit.key, Stage.POST, result)

    def _build_result(self) -> JobResult:
        records = self.context.records
        summary = "\n".join(s.rstrip("\n") for s in records.summaries)
        return JobResult(
            name=self.name,
            conclusion=self.job_status(),
            step_results=dict(records.results),
            hook_results=dict(records.hook_results),
            env=self.context.effective_env(),
            path=self.context.effective_path(),
            summary=summary + "\n" if summary else "",
        )
