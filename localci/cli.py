"""
localci CLI

Runs one job of a CI workflow on the local machine with hosted-runner step
ordering and environment-file semantics.

Usage:
    localci /path/to/project
    localci .  # current directory
"""

import argparse
import sys
from pathlib import Path
from typing import Dict, List, NoReturn, Optional

import yaml
from rich import box
from rich.panel import Panel
from rich.text import Text

from localci.config import (
    WORKFLOWS_DIR,
    discover_workflows,
    find_job,
    load_config,
    load_workflow,
    validate_workflow_file,
)
from localci.display import ICONS
from localci.display_adapter import DisplayAdapter, get_display
from localci.selector import (
    format_job_list,
    format_workflow_list,
    select_job_interactive,
    select_workflow_interactive,
)
from localci.steps.resolver import LocalActionResolver
from localci.steps.types import StepStatus
from localci.workflow import JobRunner

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


def _error_panel(message: str) -> NoReturn:
    """Print an error panel and exit with the failure code."""
    console = get_display().console
    console.print()
    console.print(
        Panel(
            Text.from_markup(message),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=box.ROUNDED,
            expand=False,
        )
    )
    console.print()
    sys.exit(EXIT_FAILURE)


def parse_env_overrides(values: Optional[List[str]]) -> Dict[str, str]:
    """Parse repeated --env KEY=VALUE arguments.

    Raises:
        ValueError: If a value has no '=' or an empty key
    """
    env: Dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid --env value '{item}', expected KEY=VALUE")
        env[key] = value
    return env


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="localci",
        description="Run a CI workflow job locally",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
{ICONS['rocket']} Examples:
    localci /path/to/project
    localci .
    localci . -w "CI" -j build
    localci . -f .github/workflows/ci.yml --env DEBUG=1

{ICONS['file']} Workflow files:
    - Located in: <project>/{WORKFLOWS_DIR}/
    - Extensions: .yml or .yaml
        """,
    )
    parser.add_argument(
        "project_path",
        nargs="?",
        default=".",
        help="Path to the project (default: current directory)",
    )
    parser.add_argument(
        "-w",
        "--workflow",
        dest="workflow_name",
        default=None,
        help="Name of the workflow to run (from 'name' field in workflow file)",
    )
    parser.add_argument(
        "-f",
        "--file",
        dest="workflow_file",
        default=None,
        help="Direct path to a workflow file",
    )
    parser.add_argument(
        "-j",
        "--job",
        dest="job_name",
        default=None,
        help="Job id or name to run (prompted for when the workflow has several)",
    )
    parser.add_argument(
        "--env",
        action="append",
        metavar="KEY=VALUE",
        help="Extra job environment variable (repeatable)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Print step output and debug messages",
    )
    return parser


def _select_workflow_file(args: argparse.Namespace, project_path: Path) -> Path:
    if args.workflow_name and args.workflow_file:
        _error_panel(
            f"[bold red]{ICONS['cross']} Cannot use both -w/--workflow and "
            f"-f/--file flags together[/bold red]"
        )

    if args.workflow_file:
        workflow_file = Path(args.workflow_file).resolve()
        is_valid, error_msg = validate_workflow_file(workflow_file)
        if not is_valid:
            _error_panel(
                f"[bold red]{ICONS['cross']} Invalid workflow file![/bold red]\n\n"
                f"[white]File:[/white] [cyan]{workflow_file}[/cyan]\n\n"
                f"[white]Error:[/white] {error_msg}"
            )
        return workflow_file

    workflows = discover_workflows(project_path)
    if not workflows:
        _error_panel(
            f"[bold red]{ICONS['cross']} No workflow files found![/bold red]\n\n"
            f"[white]Create a workflow file in:[/white]\n"
            f"  [cyan]{project_path / WORKFLOWS_DIR}[/cyan]"
        )

    if args.workflow_name:
        name_lower = args.workflow_name.lower()
        matches = [w for w in workflows if w.name.lower() == name_lower]
        if not matches:
            matches = [w for w in workflows if name_lower in w.name.lower()]
        if len(matches) != 1:
            _error_panel(
                f"[bold red]{ICONS['cross']} Workflow '{args.workflow_name}' "
                f"not found![/bold red]\n\n"
                f"[white]Available workflows:[/white]\n"
                f"{format_workflow_list(workflows)}"
            )
        return matches[0].file_path

    if len(workflows) == 1:
        return workflows[0].file_path

    selected = select_workflow_interactive(workflows)
    if selected is None:
        get_display().console.print(f"[yellow]{ICONS['stop']} Cancelled[/yellow]")
        sys.exit(EXIT_SUCCESS)
    return selected.file_path


def main() -> None:
    """Main entry point."""
    args = build_parser().parse_args()
    project_path = Path(args.project_path).resolve()

    # Check project path exists
    if not project_path.exists():
        _error_panel(f"[bold red]{ICONS['cross']} Project path not found: {project_path}[/bold red]")

    try:
        config = load_config(project_path)
        env_overrides = parse_env_overrides(args.env)
    except (ValueError, yaml.YAMLError) as e:
        _error_panel(f"[bold red]{ICONS['cross']} Invalid configuration:[/bold red]\n\n{e}")

    # Configure display mode (must be done before any other display calls)
    config.verbose = config.verbose or args.verbose
    DisplayAdapter.use_verbose = config.verbose
    DisplayAdapter.reset()

    workflow_file = _select_workflow_file(args, project_path)

    try:
        workflow = load_workflow(workflow_file)
    except (ValueError, yaml.YAMLError) as e:
        _error_panel(f"[bold red]{ICONS['cross']} Invalid workflow file:[/bold red]\n\n{e}")

    if args.job_name:
        job = find_job(workflow, args.job_name)
        if job is None:
            _error_panel(
                f"[bold red]{ICONS['cross']} Job '{args.job_name}' not found![/bold red]\n\n"
                f"[white]Available jobs:[/white]\n"
                f"{format_job_list(workflow)}"
            )
    elif len(workflow.jobs) == 1:
        job = next(iter(workflow.jobs.values()))
    else:
        job = select_job_interactive(workflow)
        if job is None:
            get_display().console.print(f"[yellow]{ICONS['stop']} Cancelled[/yellow]")
            sys.exit(EXIT_SUCCESS)

    env = dict(workflow.env)
    env.update(job.env)
    env.update(env_overrides)

    resolver = LocalActionResolver(
        workdir=config.workdir,
        action_cache_dir=config.action_cache_dir,
        default_shell=job.default_shell or config.default_shell,
        max_depth=config.max_depth,
    )
    runner = JobRunner(
        job.steps,
        config=config,
        resolver=resolver,
        name=f"{workflow.name} / {job.name}",
        env=env,
    )

    try:
        result = runner.run(handle_signals=True)
    except KeyboardInterrupt:
        get_display().console.print()
        get_display().console.print(f"\n[yellow]{ICONS['stop']} Aborted[/yellow]")
        sys.exit(EXIT_CANCELLED)

    if result.conclusion == StepStatus.SUCCESS:
        sys.exit(EXIT_SUCCESS)
    if result.conclusion == StepStatus.CANCELLED:
        sys.exit(EXIT_CANCELLED)
    sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
