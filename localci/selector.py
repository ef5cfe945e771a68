"""Interactive workflow and job selection using questionary."""

from typing import List, Optional

import questionary

from .config import JobDefinition, WorkflowFile, WorkflowInfo
from .display import ICONS, console


def _ask(message: str, choices: List[questionary.Choice]) -> object:
    # Add cancel option
    choices.append(
        questionary.Choice(
            title="Cancel",
            value=None,
        )
    )

    return questionary.select(
        message,
        choices=choices,
        use_arrow_keys=True,
        use_shortcuts=False,
        pointer=ICONS["arrow"],
        qmark=ICONS["diamond"],
    ).ask()


def select_workflow_interactive(
    workflows: List[WorkflowInfo],
) -> Optional[WorkflowInfo]:
    """Show interactive picker for workflow selection.

    Args:
        workflows: List of discovered workflows

    Returns:
        Selected workflow or None if cancelled
    """
    if not workflows:
        return None

    # Format: "Workflow Name (filename.yml)"
    choices = [
        questionary.Choice(title=f"{w.name} ({w.file_path.name})", value=w)
        for w in workflows
    ]

    console.print()
    console.print(f"[bold cyan]{ICONS['file']} Multiple workflows found[/bold cyan]")
    console.print()

    selected = _ask("Select a workflow to run:", choices)

    # questionary may return a string (like "Cancel") instead of None
    # when the user cancels. Treat any other value as cancellation.
    if not isinstance(selected, WorkflowInfo):
        return None

    return selected


def select_job_interactive(workflow: WorkflowFile) -> Optional[JobDefinition]:
    """Show interactive picker for the job to run from a workflow.

    Returns:
        Selected job or None if cancelled
    """
    if not workflow.jobs:
        return None

    # Format: "Job name (job-id, N steps)"
    choices = [
        questionary.Choice(
            title=f"{job.name} ({job.id}, {len(job.steps)} steps)",
            value=job,
        )
        for job in workflow.jobs.values()
    ]

    console.print()
    console.print(
        f"[bold cyan]{ICONS['file']} {workflow.name} has {len(workflow.jobs)} jobs[/bold cyan]"
    )
    console.print()

    selected = _ask("Select a job to run:", choices)

    if not isinstance(selected, JobDefinition):
        return None

    return selected


def format_workflow_list(workflows: List[WorkflowInfo]) -> str:
    """Format workflow list for display in error messages."""
    return "\n".join(f"  - {w.name} ({w.file_path.name})" for w in workflows)


def format_job_list(workflow: WorkflowFile) -> str:
    """Format job list for display in error messages."""
    return "\n".join(f"  - {job.id} ({job.name})" for job in workflow.jobs.values())
