"""Step execution state machine.

Each plan unit (a step's pre hook, main body or post hook) is driven through

    pending -> running -> success | failure | cancelled
    pending -> skipped | cancelled

by StepExecutor.execute, which owns the step-scoped env files, invokes the
runner under the step's deadline and the job's cancellation signal, and
folds what the step wrote back into the job-wide records.
"""

from __future__ import annotations

import asyncio
import os
import time
from typing import Dict, FrozenSet, Optional

from localci.commands import CommandProcessor, CommandResult
from localci.conditions import ConditionView, evaluate
from localci.config import EngineConfig
from localci.context import ExecutionContext
from localci.display_adapter import get_display
from localci.envfile import EnvFiles, FileCommandUpdate, env_file_session, read_file_commands
from localci.runners.base import RunnerResult, StepRunner
from localci.runners.container import container_path
from localci.steps.errors import (
    InvalidTransitionError,
    ProtocolParseError,
    StepCancelledError,
    StepTimeoutError,
)
from localci.steps.plan import PlanUnit
from localci.steps.types import Condition, RunnableKind, Stage, StepResult, StepStatus
from localci.steps.validator import input_env, input_env_name

TRANSITIONS: Dict[StepStatus, FrozenSet[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.RUNNING, StepStatus.SKIPPED, StepStatus.CANCELLED}),
    StepStatus.RUNNING: frozenset({StepStatus.SUCCESS, StepStatus.FAILURE, StepStatus.CANCELLED}),
    StepStatus.SUCCESS: frozenset(),
    StepStatus.FAILURE: frozenset(),
    StepStatus.SKIPPED: frozenset(),
    StepStatus.CANCELLED: frozenset(),
}


class StepMachine:
    """Status of one plan unit, guarded by the transition table."""

    def __init__(self, key: str) -> None:
        self.key = key
        self.status = StepStatus.PENDING

    def transition(self, new_status: StepStatus) -> StepStatus:
        """Move to new_status.

        Raises:
            InvalidTransitionError: If the table does not allow the move
        """
        if new_status not in TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Step '{self.key}': illegal transition "
                f"{self.status.value} -> {new_status.value}"
            )
        self.status = new_status
        return new_status


def conclude(outcome: StepStatus, continue_on_error: bool) -> StepStatus:
    """Conclusion of a unit from its outcome and continue-on-error."""
    if continue_on_error and outcome in (StepStatus.FAILURE, StepStatus.CANCELLED):
        return StepStatus.SUCCESS
    return outcome


def skipped_result(reason: Optional[str] = None) -> StepResult:
    return StepResult(outcome=StepStatus.SKIPPED, conclusion=StepStatus.SKIPPED, error=reason)


class StepExecutor:
    """Runs plan units one at a time against an ExecutionContext scope."""

    def __init__(
        self,
        runner: StepRunner,
        config: Optional[EngineConfig] = None,
        commands: Optional[CommandProcessor] = None,
    ) -> None:
        self.runner = runner
        self.config = config or EngineConfig()
        self.commands = commands or CommandProcessor(self.config.allow_unsecure_commands)

    def condition_for(self, unit: PlanUnit) -> Condition:
        action = unit.step.action
        if unit.stage == Stage.PRE:
            return action.pre_condition
        if unit.stage == Stage.POST:
            return action.post_condition
        return unit.step.condition

    def should_run(self, unit: PlanUnit, scope: ExecutionContext, status: StepStatus) -> bool:
        """Evaluate the unit's condition against the current job status."""
        view = ConditionView(
            job_status=status,
            step_result=scope.result_of(unit.key),
            results=dict(scope.records.results),
        )
        return evaluate(self.condition_for(unit), view)

    def skip(self, unit: PlanUnit, reason: str) -> StepResult:
        """Move a pending unit straight to skipped."""
        StepMachine(unit.key).transition(StepStatus.SKIPPED)
        get_display().print_step_skipped(unit, reason)
        return skipped_result(reason)

    async def execute(
        self,
        unit: PlanUnit,
        scope: ExecutionContext,
        status: StepStatus,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StepResult:
        """Drive one plan unit from pending to a terminal state.

        Args:
            unit: The pre, main or post unit to run
            scope: Scope the step runs in
            status: Job status as of now (success, failure or cancelled)
            cancel_event: Job cancellation signal; post hooks pass None

        Returns:
            The unit's StepResult. Recording it is left to the caller.
        """
        display = get_display()
        machine = StepMachine(unit.key)

        if unit.stage != Stage.POST and cancel_event is not None and cancel_event.is_set():
            return self.skip(unit, "job cancelled")

        if not self.should_run(unit, scope, status):
            return self.skip(unit, "condition is false")

        runnable = unit.runnable
        if runnable is None:
            return self.skip(unit, "nothing to run")

        machine.transition(StepStatus.RUNNING)
        if unit.stage != Stage.POST:
            scope.mark_started(unit.key)
        started_at = display.print_step_start(unit)

        step = unit.step
        timeout = step.timeout_minutes * 60 if step.timeout_minutes else None
        runner_result: Optional[RunnerResult] = None
        update: Optional[FileCommandUpdate] = None
        outcome = StepStatus.FAILURE
        error: Optional[str] = None
        fatal = False
        interrupted = False

        with env_file_session(self.config.temp_dir) as files:
            env = self.build_env(unit, scope, files)
            try:
                runner_result = await self._invoke(unit, env, files, timeout, cancel_event)
            except StepTimeoutError as e:
                outcome, error = StepStatus.CANCELLED, str(e)
            except StepCancelledError as e:
                outcome, error, interrupted = StepStatus.CANCELLED, str(e), True
            except Exception as e:
                # Missing binaries, container start failures and the like
                outcome, error = StepStatus.FAILURE, f"{type(e).__name__}: {e}"

            if runner_result is not None:
                try:
                    update = read_file_commands(files)
                except ProtocolParseError as e:
                    outcome, error, fatal = StepStatus.FAILURE, str(e), True
                else:
                    if runner_result.success:
                        outcome = StepStatus.SUCCESS
                    else:
                        outcome = StepStatus.FAILURE
                        error = runner_result.error or f"Exit code {runner_result.exit_code}"

        if update is not None:
            scope.merge_from_step_output(
                unit.key,
                env=update.env,
                path=update.path,
                outputs=update.outputs,
                state=update.state,
            )
            if update.summary:
                scope.records.summaries.append(update.summary)

        if runner_result is not None:
            self._apply_commands(unit, scope, self.commands.process(runner_result.output))
            display.print_step_output(unit, runner_result.output)

        machine.transition(outcome)
        # Malformed env files and job cancellation are never downgraded
        if fatal or interrupted:
            conclusion = outcome
        else:
            conclusion = conclude(outcome, unit.step.continue_on_error)
        result = StepResult(
            outcome=outcome,
            conclusion=conclusion,
            outputs=scope.outputs_of(unit.key) if unit.stage == Stage.MAIN else {},
            error=error,
        )
        display.print_step_result(unit, result, time.time() - started_at)
        return result

    async def _invoke(
        self,
        unit: PlanUnit,
        env: Dict[str, str],
        files: EnvFiles,
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> RunnerResult:
        """Run the unit's runnable, racing its deadline and the cancel signal.

        Raises:
            StepTimeoutError: The deadline passed before the runner returned
            StepCancelledError: The job was cancelled while the runner ran
        """
        run_task = asyncio.ensure_future(self.runner.run(unit.runnable, env, files, timeout))
        waiters = {run_task}
        cancel_task: Optional[asyncio.Future] = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            run_task.cancel()
            raise
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        if run_task in done:
            try:
                return run_task.result()
            except asyncio.TimeoutError:
                raise StepTimeoutError(unit.key, timeout or 0) from None

        # Interrupt the runner; it stops its child process before returning
        run_task.cancel()
        await asyncio.gather(run_task, return_exceptions=True)

        if cancel_task is not None and cancel_task in done:
            raise StepCancelledError(unit.key)
        raise StepTimeoutError(unit.key, timeout or 0)

    def build_env(self, unit: PlanUnit, scope: ExecutionContext, files: EnvFiles) -> Dict[str, str]:
        """Environment handed to the runner for one unit.

        Later layers win: host environment, scope env with job-wide env-file
        updates, step env, inputs, env-file paths, saved state, then the
        runner variables. Container units get a container PATH instead of
        the host one.
        """
        step = unit.step
        env: Dict[str, str] = dict(os.environ) if self.config.inherit_env else {}
        env.update(scope.effective_env())
        env.update(step.env)

        # Composite inputs first so a step's own inputs take precedence
        env.update({input_env_name(name): value for name, value in scope.inputs.items()})
        env.update(input_env(step.inputs))

        env.update(files.as_env())
        for name, value in scope.state_of(unit.key).items():
            env[f"STATE_{name}"] = value

        env["CI"] = "true"
        env["GITHUB_ACTIONS"] = "true"
        env["GITHUB_ACTION"] = unit.key
        env["GITHUB_WORKSPACE"] = str(self.config.workdir)
        if step.action.action_path:
            env["GITHUB_ACTION_PATH"] = step.action.action_path

        entries = scope.effective_path()
        runnable = unit.runnable
        if runnable is not None and runnable.kind == RunnableKind.CONTAINER:
            # The host search path means nothing inside the image
            env.pop("PATH", None)
            if entries:
                env["PATH"] = container_path(entries)
        elif entries:
            if env.get("PATH"):
                entries.append(env["PATH"])
            env["PATH"] = os.pathsep.join(entries)

        return env

    def _apply_commands(self, unit: PlanUnit, scope: ExecutionContext, commands: CommandResult) -> None:
        display = get_display()
        display.add_masks(commands.masks)
        for level, message in commands.messages:
            display.print_command_message(unit, level, message)
        for command in commands.ignored:
            display.print_command_message(
                unit,
                "warning",
                f"The '{command}' command is disabled. Set allow_unsecure_commands to enable it.",
            )
        if commands.env or commands.path or commands.outputs or commands.state:
            scope.merge_from_step_output(
                unit.key,
                env=commands.env,
                path=commands.path,
                outputs=commands.outputs,
                state=commands.state,
            )
