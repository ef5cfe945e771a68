"""Configuration dataclasses and YAML loading for localci."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

CONFIG_FILENAMES = (".localci.yml", ".localci.yaml")
WORKFLOWS_DIR = Path(".github") / "workflows"
ENV_PREFIX = "LOCALCI_"

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class EngineConfig:
    """Engine settings for one project.

    Attributes:
        workdir: Workspace directory steps run in (GITHUB_WORKSPACE)
        temp_dir: Where step-scoped env files are created (system temp if None)
        default_shell: Shell for run steps without 'shell:' (bash, else sh)
        inherit_env: Whether steps see the host environment
        env: Extra variables seeded into the job's top-level scope
        allow_unsecure_commands: Honour ::set-env:: and ::add-path::
        action_cache_dir: Directory holding pre-fetched owner/repo@ref actions
        verbose: Print step output and debug messages
        max_depth: Maximum composite action nesting depth
    """

    workdir: Path = field(default_factory=Path.cwd)
    temp_dir: Optional[Path] = None
    default_shell: Optional[str] = None
    inherit_env: bool = True
    env: Dict[str, str] = field(default_factory=dict)
    allow_unsecure_commands: bool = False
    action_cache_dir: Optional[Path] = None
    verbose: bool = False
    max_depth: int = 10


@dataclass
class WorkflowInfo:
    """Metadata about a discovered workflow file."""

    name: str  # From the 'name' field in YAML
    file_path: Path  # Absolute path to the workflow file


@dataclass
class JobDefinition:
    """A job as written in a workflow file; steps are resolved later."""

    id: str
    name: str
    steps: List[Dict[str, Any]] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    default_shell: Optional[str] = None  # From defaults.run.shell


@dataclass
class WorkflowFile:
    """A parsed workflow file."""

    name: str
    file_path: Path
    jobs: Dict[str, JobDefinition] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    return bool(value)


def string_map(value: Any) -> Dict[str, str]:
    """Env mappings as strings; YAML booleans become true/false."""
    if not isinstance(value, dict):
        return {}
    result: Dict[str, str] = {}
    for key, item in value.items():
        if isinstance(item, bool):
            result[str(key)] = "true" if item else "false"
        elif item is None:
            result[str(key)] = ""
        else:
            result[str(key)] = str(item)
    return result


def _read_yaml(file_path: Path) -> Any:
    with open(file_path, "r") as f:
        return yaml.safe_load(f)


def load_config(
    project_path: Path,
    environ: Optional[Mapping[str, str]] = None,
) -> EngineConfig:
    """Load engine settings for a project.

    Reads .localci.yml (or .localci.yaml) from the project root when present,
    then applies LOCALCI_* environment overrides.

    Args:
        project_path: Path to the project root
        environ: Environment to read overrides from (defaults to os.environ)
    """
    project_path = Path(project_path).resolve()
    environ = os.environ if environ is None else environ

    data: Dict[str, Any] = {}
    for filename in CONFIG_FILENAMES:
        config_path = project_path / filename
        if config_path.exists():
            loaded = _read_yaml(config_path)
            if loaded is not None and not isinstance(loaded, dict):
                raise ValueError(f"{config_path} must contain a YAML dictionary")
            data = loaded or {}
            break

    def _path(value: Any) -> Optional[Path]:
        if not value:
            return None
        candidate = Path(str(value)).expanduser()
        return candidate if candidate.is_absolute() else project_path / candidate

    config = EngineConfig(
        workdir=project_path,
        temp_dir=_path(data.get("temp_dir")),
        default_shell=data.get("shell"),
        inherit_env=_as_bool(data.get("inherit_env", True)),
        env=string_map(data.get("env")),
        allow_unsecure_commands=_as_bool(data.get("allow_unsecure_commands", False)),
        action_cache_dir=_path(data.get("action_cache")),
        verbose=_as_bool(data.get("verbose", False)),
        max_depth=int(data.get("max_depth", 10)),
    )

    # Environment overrides
    if environ.get(ENV_PREFIX + "SHELL"):
        config.default_shell = environ[ENV_PREFIX + "SHELL"]
    if environ.get(ENV_PREFIX + "TEMP_DIR"):
        config.temp_dir = _path(environ[ENV_PREFIX + "TEMP_DIR"])
    if environ.get(ENV_PREFIX + "ACTION_CACHE"):
        config.action_cache_dir = _path(environ[ENV_PREFIX + "ACTION_CACHE"])
    if ENV_PREFIX + "INHERIT_ENV" in environ:
        config.inherit_env = _as_bool(environ[ENV_PREFIX + "INHERIT_ENV"])
    if ENV_PREFIX + "ALLOW_UNSECURE_COMMANDS" in environ:
        config.allow_unsecure_commands = _as_bool(environ[ENV_PREFIX + "ALLOW_UNSECURE_COMMANDS"])
    if ENV_PREFIX + "VERBOSE" in environ:
        config.verbose = _as_bool(environ[ENV_PREFIX + "VERBOSE"])

    return config


def _parse_job(job_id: str, job_data: Dict[str, Any]) -> JobDefinition:
    defaults = job_data.get("defaults") or {}
    run_defaults = defaults.get("run") or {} if isinstance(defaults, dict) else {}
    return JobDefinition(
        id=job_id,
        name=str(job_data.get("name") or job_id),
        steps=list(job_data.get("steps") or []),
        env=string_map(job_data.get("env")),
        default_shell=run_defaults.get("shell"),
    )


def load_workflow(workflow_path: Path) -> WorkflowFile:
    """Load and parse a workflow file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not a valid workflow
    """
    workflow_path = Path(workflow_path)
    if not workflow_path.exists():
        raise FileNotFoundError(f"Workflow file not found at:\n  {workflow_path}")

    is_valid, error = validate_workflow_file(workflow_path)
    if not is_valid:
        raise ValueError(f"{workflow_path}: {error}")

    data = _read_yaml(workflow_path)
    jobs = {
        str(job_id): _parse_job(str(job_id), job_data)
        for job_id, job_data in data["jobs"].items()
    }

    return WorkflowFile(
        name=str(data.get("name") or workflow_path.stem),
        file_path=workflow_path.resolve(),
        jobs=jobs,
        env=string_map(data.get("env")),
    )


def discover_workflows(project_path: Path) -> List[WorkflowInfo]:
    """Discover workflow files under .github/workflows.

    Files that are not valid workflows (no 'jobs' mapping, broken YAML) are
    left out.

    Args:
        project_path: Path to the project root

    Returns:
        List of WorkflowInfo sorted by name
    """
    workflows_dir = Path(project_path) / WORKFLOWS_DIR

    if not workflows_dir.exists():
        return []

    workflows: List[WorkflowInfo] = []

    for pattern in ("*.yml", "*.yaml"):
        for file_path in workflows_dir.glob(pattern):
            if not file_path.is_file():
                continue

            try:
                data = _read_yaml(file_path)
            except (yaml.YAMLError, OSError):
                continue

            if isinstance(data, dict) and isinstance(data.get("jobs"), dict):
                workflows.append(
                    WorkflowInfo(
                        name=str(data.get("name") or file_path.stem),
                        file_path=file_path.resolve(),
                    )
                )

    # Sort by name for consistent ordering
    workflows.sort(key=lambda w: w.name.lower())

    return workflows


def validate_workflow_file(file_path: Path) -> Tuple[bool, Optional[str]]:
    """Validate that a file is a workflow with at least one job with steps.

    Args:
        file_path: Path to the workflow file

    Returns:
        Tuple of (is_valid, error_message). If valid, error_message is None.
    """
    if not file_path.exists():
        return False, f"File not found: {file_path}"

    if not file_path.is_file():
        return False, f"Not a file: {file_path}"

    try:
        data = _read_yaml(file_path)
    except yaml.YAMLError as e:
        return False, f"Invalid YAML: {e}"

    if not isinstance(data, dict):
        return False, "Workflow file must contain a YAML dictionary"

    jobs = data.get("jobs")
    if not isinstance(jobs, dict) or not jobs:
        return False, "Missing or empty 'jobs' mapping"

    for job_id, job_data in jobs.items():
        if not isinstance(job_data, dict):
            return False, f"Job '{job_id}' must be a mapping"
        if "uses" in job_data:
            return False, f"Job '{job_id}' calls a reusable workflow, which is not supported"
        if not isinstance(job_data.get("steps"), list):
            return False, f"Job '{job_id}' has no 'steps' list"

    return True, None


def find_job(workflow: WorkflowFile, name: str) -> Optional[JobDefinition]:
    """Find a job by id or name (case-insensitive).

    Args:
        workflow: Parsed workflow file
        name: Job id or name to search for

    Returns:
        Matching JobDefinition or None if not found
    """
    if name in workflow.jobs:
        return workflow.jobs[name]

    name_lower = name.lower()

    # First try exact match
    for job in workflow.jobs.values():
        if job.id.lower() == name_lower or job.name.lower() == name_lower:
            return job

    # Then try partial match (single match only)
    matches = [j for j in workflow.jobs.values() if name_lower in j.name.lower()]

    if len(matches) == 1:
        return matches[0]

    return None
