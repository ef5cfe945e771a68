"""Resolver for step definitions and their 'uses:' action references."""

from __future__ import annotations

import re
import shlex
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set

import yaml

from localci.conditions import ConditionError, always, parse_condition
from localci.config import string_map
from localci.steps.errors import ActionNotFoundError, ActionParseError
from localci.steps.types import (
    ActionEntrypoints,
    ResolutionState,
    Runnable,
    RunnableKind,
    Step,
    StepKind,
)
from localci.steps.validator import validate_inputs

ACTION_FILENAMES = ("action.yml", "action.yaml")
DOCKER_PREFIX = "docker://"
NODE_BINARY = "node"

_REMOTE_PATTERN = re.compile(r"^(?P<owner>[^/@]+)/(?P<repo>[^/@]+)(?:/(?P<path>[^@]+))?@(?P<ref>.+)$")
_OUTPUT_REFERENCE = re.compile(r"^\$\{\{\s*steps\.([\w-]+)\.outputs\.([\w-]+)\s*\}\}$")


class ActionResolver(ABC):
    """Turns step definitions into resolved Step trees.

    Implementations must reject cyclic composite references before
    returning; the engine only reads what they produce.
    """

    @abstractmethod
    def resolve(self, definitions: Sequence[Dict[str, Any]]) -> List[Step]:
        """Resolve a job's step definitions.

        Raises:
            ResolverError: If any step or action cannot be resolved
        """
        pass


class LocalActionResolver(ActionResolver):
    """Resolves steps against actions available on the local filesystem.

    Supports three kinds of 'uses:' references:
    - ./path: Action directory relative to the workspace
    - docker://image: Container step
    - owner/repo[/path]@ref: Action in the pre-populated action cache,
      stored as 'owner-repo[-path]@ref'

    Attributes:
        workdir: Workspace root that ./path references are relative to
        action_cache_dir: Directory of pre-fetched remote actions
        default_shell: Shell for run steps without 'shell:'
        max_depth: Maximum composite nesting depth
    """

    def __init__(
        self,
        workdir: Path,
        action_cache_dir: Optional[Path] = None,
        default_shell: Optional[str] = None,
        max_depth: int = 10,
    ):
        self.workdir = Path(workdir)
        self.action_cache_dir = action_cache_dir
        self.default_shell = default_shell
        self.max_depth = max_depth
        self._cache: Dict[Path, Dict[str, Any]] = {}

    def resolve(self, definitions: Sequence[Dict[str, Any]]) -> List[Step]:
        """Resolve a job's step definitions into Steps.

        Raises:
            ActionNotFoundError: If an action reference cannot be found
            ActionParseError: If a step or action definition is invalid
            CircularDependencyError: If composite actions reference each other
            MaxDepthExceededError: If composite nesting is too deep
            RequiredInputMissingError: If a required action input is missing
        """
        state = ResolutionState(max_depth=self.max_depth)
        return self._resolve_steps(definitions, "job", state)

    def clear_cache(self) -> None:
        """Clear the parsed action metadata cache."""
        self._cache.clear()

    # =========================================================================
    # Steps
    # =========================================================================

    def _resolve_steps(
        self,
        definitions: Sequence[Any],
        source: str,
        state: ResolutionState,
    ) -> List[Step]:
        steps: List[Step] = []
        seen_ids: Set[str] = set()

        for idx, definition in enumerate(definitions):
            if not isinstance(definition, dict):
                raise ActionParseError(
                    source,
                    f"Step at index {idx} must be a dictionary, got: {type(definition).__name__}",
                )

            step = self._resolve_step(definition, idx, source, state)
            if step.id in seen_ids:
                raise ActionParseError(source, f"Duplicate step id '{step.id}'")
            seen_ids.add(step.id)
            steps.append(step)

        return steps

    def _resolve_step(
        self,
        definition: Dict[str, Any],
        idx: int,
        source: str,
        state: ResolutionState,
    ) -> Step:
        step_source = f"{source} step {idx + 1}"
        run = definition.get("run")
        uses = definition.get("uses")

        if run is not None and uses is not None:
            raise ActionParseError(step_source, "A step cannot have both 'run' and 'uses'")
        if run is None and uses is None:
            raise ActionParseError(step_source, "A step must have either 'run' or 'uses'")

        try:
            condition = parse_condition(definition.get("if"))
        except ConditionError as e:
            raise ActionParseError(step_source, str(e))

        step = Step(
            id=str(definition.get("id") or f"__{idx}"),
            kind=StepKind.RUN,
            name=str(definition.get("name") or ""),
            condition=condition,
            continue_on_error=_parse_flag(definition.get("continue-on-error", False), step_source),
            timeout_minutes=_parse_timeout(definition.get("timeout-minutes"), step_source),
            env=string_map(definition.get("env")),
            uses=uses,
        )

        if run is not None:
            step.action = ActionEntrypoints(
                main=Runnable(
                    kind=RunnableKind.SCRIPT,
                    script=str(run),
                    shell=definition.get("shell") or self.default_shell,
                    working_directory=self._working_directory(definition),
                )
            )
            return step

        provided = definition.get("with") or {}
        if not isinstance(provided, dict):
            raise ActionParseError(step_source, "'with' must be a mapping")

        uses = str(uses)
        if uses.startswith(DOCKER_PREFIX):
            step.kind = StepKind.USES_CONTAINER
            step.inputs = dict(provided)
            step.action = ActionEntrypoints(
                main=Runnable(
                    kind=RunnableKind.CONTAINER,
                    image=uses[len(DOCKER_PREFIX):],
                    entrypoint=provided.get("entrypoint"),
                    args=tuple(shlex.split(str(provided.get("args", "")))),
                )
            )
            return step

        action_dir = self._find_action(uses)
        metadata = self._load_action(action_dir)
        step.inputs = validate_inputs(uses, metadata.get("inputs") or {}, provided)
        self._apply_runs(step, uses, action_dir, metadata, state)
        return step

    def _working_directory(self, definition: Dict[str, Any]) -> Optional[str]:
        working_directory = definition.get("working-directory")
        if not working_directory:
            return None
        return str(self.workdir / str(working_directory))

    # =========================================================================
    # Actions
    # =========================================================================

    def _find_action(self, uses: str) -> Path:
        """Locate the directory of an action reference.

        Raises:
            ActionNotFoundError: If no action metadata file exists there
        """
        searched_paths: List[str] = []

        if uses.startswith("./") or uses.startswith("../"):
            action_dir = (self.workdir / uses).resolve()
        else:
            match = _REMOTE_PATTERN.match(uses)
            if not match:
                raise ActionNotFoundError(
                    uses,
                    message=f"Invalid 'uses' format: '{uses}'. "
                    f"Expected './path', 'docker://image' or 'owner/repo[/path]@ref'",
                )
            if self.action_cache_dir is None:
                raise ActionNotFoundError(
                    uses,
                    message=f"Action not found: {uses}\n"
                    f"Remote actions are not fetched; configure an action cache directory",
                )
            name = f"{match.group('owner')}-{match.group('repo')}"
            if match.group("path"):
                name += "-" + match.group("path").strip("/").replace("/", "-")
            action_dir = Path(self.action_cache_dir) / f"{name}@{match.group('ref')}"

        for filename in ACTION_FILENAMES:
            candidate = action_dir / filename
            searched_paths.append(str(candidate))
            if candidate.exists():
                return action_dir

        raise ActionNotFoundError(uses, searched_paths)

    def _load_action(self, action_dir: Path) -> Dict[str, Any]:
        """Parse action metadata, cached per directory.

        Raises:
            ActionParseError: If the file cannot be parsed or is invalid
        """
        if action_dir in self._cache:
            return self._cache[action_dir]

        action_file = action_dir / ACTION_FILENAMES[0]
        if not action_file.exists():
            action_file = action_dir / ACTION_FILENAMES[1]

        try:
            with open(action_file, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ActionParseError(str(action_file), f"YAML parse error: {e}")
        except OSError as e:
            raise ActionParseError(str(action_file), f"File read error: {e}")

        if not isinstance(data, dict):
            raise ActionParseError(str(action_file), "Action file must contain a YAML dictionary")

        runs = data.get("runs")
        if not isinstance(runs, dict) or not runs.get("using"):
            raise ActionParseError(str(action_file), "Missing 'runs.using'")

        inputs = data.get("inputs") or {}
        if not isinstance(inputs, dict):
            raise ActionParseError(str(action_file), "'inputs' must be a mapping")

        data["_file"] = str(action_file)
        self._cache[action_dir] = data
        return data

    def _apply_runs(
        self,
        step: Step,
        uses: str,
        action_dir: Path,
        metadata: Dict[str, Any],
        state: ResolutionState,
    ) -> None:
        """Fill in a step's kind, entrypoints and children from 'runs:'."""
        source = metadata["_file"]
        runs = metadata["runs"]
        using = str(runs["using"]).lower()

        try:
            pre_condition = parse_condition(runs.get("pre-if"), default=always())
            post_condition = parse_condition(runs.get("post-if"), default=always())
        except ConditionError as e:
            raise ActionParseError(source, str(e))

        step.env = {**string_map(runs.get("env")), **step.env}

        if using.startswith("node"):
            step.kind = StepKind.USES_COMMAND
            if not runs.get("main"):
                raise ActionParseError(source, "A node action must define 'runs.main'")

            def node(script: Optional[str]) -> Optional[Runnable]:
                if not script:
                    return None
                return Runnable(kind=RunnableKind.EXEC, argv=(NODE_BINARY, str(action_dir / script)))

            step.action = ActionEntrypoints(
                main=node(runs["main"]),
                pre=node(runs.get("pre")),
                pre_condition=pre_condition,
                post=node(runs.get("post")),
                post_condition=post_condition,
                action_path=str(action_dir),
            )

        elif using == "docker":
            step.kind = StepKind.USES_CONTAINER
            image = str(runs.get("image") or "")
            if not image.startswith(DOCKER_PREFIX):
                raise ActionParseError(
                    source, f"Only prebuilt 'docker://' images are supported, got: {image!r}"
                )
            image = image[len(DOCKER_PREFIX):]
            args = tuple(str(arg) for arg in runs.get("args") or [])

            def container(entrypoint: Optional[str]) -> Runnable:
                return Runnable(
                    kind=RunnableKind.CONTAINER, image=image, entrypoint=entrypoint, args=args
                )

            step.action = ActionEntrypoints(
                main=container(runs.get("entrypoint")),
                pre=container(runs["pre-entrypoint"]) if runs.get("pre-entrypoint") else None,
                pre_condition=pre_condition,
                post=container(runs["post-entrypoint"]) if runs.get("post-entrypoint") else None,
                post_condition=post_condition,
                action_path=str(action_dir),
            )

        elif using == "composite":
            step.kind = StepKind.USES_COMPOSITE
            children = runs.get("steps")
            if not isinstance(children, list) or not children:
                raise ActionParseError(source, "A composite action must define 'runs.steps'")

            state.push(str(action_dir))
            try:
                step.children = self._resolve_steps(children, source, state)
            finally:
                state.pop()

            step.action = ActionEntrypoints(
                outputs=_composite_outputs(metadata.get("outputs") or {}, source),
                action_path=str(action_dir),
            )

        else:
            raise ActionParseError(
                source,
                f"The runs.using key must be one of: composite, docker, node12, node16, node20; got {using}",
            )


def _composite_outputs(outputs: Any, source: str) -> Dict[str, str]:
    """Normalise '${{ steps.<id>.outputs.<name> }}' values to '<id>.<name>'."""
    if not isinstance(outputs, dict):
        raise ActionParseError(source, "'outputs' must be a mapping")

    result: Dict[str, str] = {}
    for name, spec in outputs.items():
        value = spec.get("value") if isinstance(spec, dict) else spec
        match = _OUTPUT_REFERENCE.match(str(value or "").strip())
        if not match:
            raise ActionParseError(
                source,
                f"Output '{name}' must be a single '${{{{ steps.<id>.outputs.<name> }}}}' reference",
            )
        result[str(name)] = f"{match.group(1)}.{match.group(2)}"
    return result


def _parse_flag(value: Any, source: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "false"):
        return text == "true"
    raise ActionParseError(source, f"'continue-on-error' must be true or false, got: {value!r}")


def _parse_timeout(value: Any, source: str) -> Optional[float]:
    if value is None:
        return None
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        raise ActionParseError(source, f"'timeout-minutes' must be a number, got: {value!r}")
    if minutes <= 0:
        raise ActionParseError(source, "'timeout-minutes' must be positive")
    return minutes
