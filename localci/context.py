"""Execution context: scoped environment and job-wide step records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from localci.envfile import merge_path
from localci.steps.errors import DuplicateResultError
from localci.steps.types import Stage, StepResult


@dataclass
class StepRecords:
    """Job-wide records shared by every scope of one job.

    Attributes:
        results: Main results keyed by qualified step key (write-once)
        hook_results: Pre/post results keyed by (step key, stage) (write-once)
        outputs: Outputs keyed by step key
        state: Values saved through GITHUB_STATE, keyed by step key
        started: Keys of steps whose pre or main entered the running state
        summaries: Step summaries in the order they were written
        env: Variables set through GITHUB_ENV or set-env by any step
        path: Entries added through GITHUB_PATH or add-path, newest first
    """

    results: Dict[str, StepResult] = field(default_factory=dict)
    hook_results: Dict[Tuple[str, Stage], StepResult] = field(default_factory=dict)
    outputs: Dict[str, Dict[str, str]] = field(default_factory=dict)
    state: Dict[str, Dict[str, str]] = field(default_factory=dict)
    started: Set[str] = field(default_factory=set)
    summaries: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    path: List[str] = field(default_factory=list)


@dataclass
class ExecutionContext:
    """Holds environment, path and step records during job execution.

    One root context exists per job; each composite action invocation runs
    in a child scope seeded with a snapshot of its parent's env and path and
    its own inputs. Updates a step writes through env files or workflow
    commands are job-wide: they go to the shared records and are layered
    over the scope's own values by effective_env() and effective_path().
    """

    env: Dict[str, str] = field(default_factory=dict)
    path: List[str] = field(default_factory=list)
    inputs: Dict[str, str] = field(default_factory=dict)
    parent: Optional[ExecutionContext] = None
    records: StepRecords = field(default_factory=StepRecords)

    def new_scope(self, inputs: Optional[Dict[str, str]] = None) -> ExecutionContext:
        """Create a child scope from a snapshot of this one.

        Args:
            inputs: Stringified inputs of the composite action owning the scope
        """
        return ExecutionContext(
            env=dict(self.env),
            path=list(self.path),
            inputs=dict(inputs or {}),
            parent=self,
            records=self.records,
        )

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def merge_from_step_output(
        self,
        step_key: str,
        env: Optional[Dict[str, str]] = None,
        path: Optional[List[str]] = None,
        outputs: Optional[Dict[str, str]] = None,
        state: Optional[Dict[str, str]] = None,
    ) -> None:
        """Apply parsed env-file updates from a step that ran in this scope.

        Env and path updates are recorded job-wide, so later steps in any
        scope and post hooks of earlier steps see them.
        """
        if env:
            self.records.env.update(env)
        if path:
            self.records.path = merge_path(self.records.path, path)
        if outputs:
            self.records.outputs.setdefault(step_key, {}).update(outputs)
        if state:
            self.records.state.setdefault(step_key, {}).update(state)

    def effective_env(self) -> Dict[str, str]:
        """Scope env with job-wide env-file updates on top."""
        env = dict(self.env)
        env.update(self.records.env)
        return env

    def effective_path(self) -> List[str]:
        """Job-wide path entries followed by the scope's own."""
        return merge_path(self.path, self.records.path)

    def set_output(self, step_key: str, name: str, value: str) -> None:
        self.records.outputs.setdefault(step_key, {})[name] = value

    def record_result(self, step_key: str, result: StepResult) -> None:
        """Record a step's main result.

        Raises:
            DuplicateResultError: If a result was already recorded for step_key
        """
        if step_key in self.records.results:
            raise DuplicateResultError(step_key)
        self.records.results[step_key] = result

    def record_hook_result(self, step_key: str, stage: Stage, result: StepResult) -> None:
        """Record a pre or post hook result.

        Raises:
            DuplicateResultError: If this hook already has a result
        """
        if (step_key, stage) in self.records.hook_results:
            raise DuplicateResultError(f"{step_key} ({stage.value})")
        self.records.hook_results[(step_key, stage)] = result

    def result_of(self, step_key: str) -> Optional[StepResult]:
        return self.records.results.get(step_key)

    def outputs_of(self, step_key: str) -> Dict[str, str]:
        """Outputs recorded for a step, or empty if it never ran."""
        return dict(self.records.outputs.get(step_key, {}))

    def state_of(self, step_key: str) -> Dict[str, str]:
        return dict(self.records.state.get(step_key, {}))

    def mark_started(self, step_key: str) -> None:
        self.records.started.add(step_key)

    def has_started(self, step_key: str) -> bool:
        return step_key in self.records.started
