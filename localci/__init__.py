"""localci: run CI workflow jobs locally with hosted-runner step semantics."""

from .cli import main
from .config import (
    EngineConfig,
    JobDefinition,
    WorkflowFile,
    WorkflowInfo,
    discover_workflows,
    find_job,
    load_config,
    load_workflow,
    validate_workflow_file,
)
from .context import ExecutionContext, StepRecords
from .display import ICONS, console
from .envfile import EnvFiles, env_file_session, merge_path, parse_env_file, parse_path_file
from .executor import StepExecutor
from .runners import ContainerRunner, ProcessRunner, RunnerRegistry, RunnerResult, StepRunner
from .selector import select_job_interactive, select_workflow_interactive
from .steps import JobResult, Step, StepKind, StepResult, StepStatus, build_plan
from .workflow import JobRunner

__all__ = [
    # CLI
    "main",
    # Config
    "EngineConfig",
    "JobDefinition",
    "WorkflowFile",
    "WorkflowInfo",
    "discover_workflows",
    "find_job",
    "load_config",
    "load_workflow",
    "validate_workflow_file",
    # Context
    "ExecutionContext",
    "StepRecords",
    # Display
    "ICONS",
    "console",
    # Env files
    "EnvFiles",
    "env_file_session",
    "merge_path",
    "parse_env_file",
    "parse_path_file",
    # Execution
    "StepExecutor",
    "JobRunner",
    # Runners
    "ContainerRunner",
    "ProcessRunner",
    "RunnerRegistry",
    "RunnerResult",
    "StepRunner",
    # Selector
    "select_job_interactive",
    "select_workflow_interactive",
    # Steps
    "JobResult",
    "Step",
    "StepKind",
    "StepResult",
    "StepStatus",
    "build_plan",
]
