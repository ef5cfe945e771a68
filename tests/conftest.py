"""Shared test fixtures and configuration."""

import inspect
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Union
from unittest.mock import MagicMock, patch

import pytest

from localci.config import EngineConfig
from localci.runners.base import RunnerResult, StepRunner
from localci.steps.types import (
    ActionEntrypoints,
    Runnable,
    RunnableKind,
    Step,
    StepKind,
)

Behavior = Union[int, RunnerResult, Callable[..., Any]]


@pytest.fixture(autouse=True)
def mock_display_adapter():
    """Auto-mock the display adapter for all tests.

    This prevents actual terminal output during tests and provides
    a consistent mock interface for display operations.
    """
    mock_display = MagicMock()
    mock_display.console = MagicMock()
    mock_display.print_step_start.return_value = 0.0

    with patch("localci.display_adapter.DisplayAdapter.get_instance", return_value=mock_display):
        with patch("localci.display_adapter.get_display", return_value=mock_display):
            # Also patch where the engine imported it
            with patch("localci.executor.get_display", return_value=mock_display):
                with patch("localci.workflow.get_display", return_value=mock_display):
                    with patch("localci.cli.get_display", return_value=mock_display):
                        yield mock_display


class FakeRunner(StepRunner):
    """Scripted runner keyed by each runnable's script.

    A behavior is an exit code, a RunnerResult, or a callable taking
    (runnable, env, files) that may be async and may write to the env files.
    Scripts without a behavior succeed.
    """

    def __init__(self, behaviors: Optional[Dict[str, Behavior]] = None) -> None:
        self.behaviors: Dict[str, Behavior] = dict(behaviors or {})
        self.calls: List[str] = []
        self.envs: Dict[str, Dict[str, str]] = {}
        self.timeouts: Dict[str, Optional[float]] = {}

    async def run(self, runnable, env, files, timeout=None) -> RunnerResult:
        key = runnable.script or ""
        self.calls.append(key)
        self.envs[key] = dict(env)
        self.timeouts[key] = timeout

        behavior = self.behaviors.get(key, 0)
        if callable(behavior):
            behavior = behavior(runnable, env, files)
            if inspect.isawaitable(behavior):
                behavior = await behavior
            if behavior is None:
                behavior = 0

        if isinstance(behavior, RunnerResult):
            return behavior
        return RunnerResult(
            exit_code=behavior,
            error=f"Process completed with exit code {behavior}" if behavior else None,
            output="",
        )


def _script(script: Optional[str]) -> Optional[Runnable]:
    if script is None:
        return None
    return Runnable(kind=RunnableKind.SCRIPT, script=script)


def make_run_step(step_id: str, script: Optional[str] = None, **kwargs: Any) -> Step:
    """A run step whose script defaults to its id."""
    return Step(
        id=step_id,
        kind=StepKind.RUN,
        action=ActionEntrypoints(main=_script(script or step_id)),
        **kwargs,
    )


def make_action_step(
    step_id: str,
    main: Optional[str] = None,
    pre: Optional[str] = None,
    post: Optional[str] = None,
    pre_condition: Any = True,
    post_condition: Any = True,
    **kwargs: Any,
) -> Step:
    """A command action step with optional pre and post hooks."""
    return Step(
        id=step_id,
        kind=StepKind.USES_COMMAND,
        action=ActionEntrypoints(
            main=_script(main or step_id),
            pre=_script(pre),
            pre_condition=pre_condition,
            post=_script(post),
            post_condition=post_condition,
        ),
        **kwargs,
    )


def make_composite(
    step_id: str,
    children: List[Step],
    outputs: Optional[Dict[str, str]] = None,
    **kwargs: Any,
) -> Step:
    """A composite action step owning its children."""
    return Step(
        id=step_id,
        kind=StepKind.USES_COMPOSITE,
        action=ActionEntrypoints(outputs=dict(outputs or {})),
        children=children,
        **kwargs,
    )


def append_file(path, text: str) -> None:
    """Append to an env file the way a step would."""
    with open(path, "a", encoding="utf-8") as f:
        f.write(text)


@pytest.fixture
def build() -> SimpleNamespace:
    """Step builders and a FakeRunner factory for engine tests."""
    return SimpleNamespace(
        run=make_run_step,
        action=make_action_step,
        composite=make_composite,
        append=append_file,
        runner=FakeRunner,
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def engine_config(tmp_path) -> EngineConfig:
    """Engine config isolated from the host environment."""
    return EngineConfig(
        workdir=tmp_path,
        temp_dir=tmp_path / ".localci-tmp",
        inherit_env=False,
    )
