"""Process runner: scripts through a shell, or argv executed directly."""

import asyncio
import shlex
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

from ..steps.types import RunnableKind
from .base import RunnerResult, StepRunner

if TYPE_CHECKING:
    from ..envfile import EnvFiles
    from ..steps.types import Runnable


# Shell templates; {0} is replaced by the path of the script file
SHELL_TEMPLATES: Dict[str, str] = {
    "bash": "bash --noprofile --norc -eo pipefail {0}",
    "sh": "sh -e {0}",
    "python": "python {0}",
    "pwsh": "pwsh -command \". '{0}'\"",
    "powershell": "powershell -command \". '{0}'\"",
    "cmd": "cmd /D /E:ON /V:OFF /S /C \"CALL \"{0}\"\"",
}

SCRIPT_EXTENSIONS: Dict[str, str] = {
    "python": ".py",
    "pwsh": ".ps1",
    "powershell": ".ps1",
    "cmd": ".cmd",
}


def default_shell() -> str:
    """bash when available, sh otherwise."""
    return "bash" if shutil.which("bash") else "sh"


def shell_command(shell: Optional[str], script_path: str) -> List[str]:
    """Build the argv that runs a script file with the given shell.

    Args:
        shell: Shell name or custom template containing {0}
        script_path: Path of the script file

    Raises:
        ValueError: If a custom template does not contain {0}
    """
    shell = shell or default_shell()
    template = SHELL_TEMPLATES.get(shell, shell)
    if "{0}" not in template:
        raise ValueError(f"Custom shell '{shell}' must contain a {{0}} placeholder")
    return [part.replace("{0}", script_path) for part in shlex.split(template)]


class ProcessRunner(StepRunner):
    """Execute runnables as local child processes."""

    def __init__(self, workdir: Optional[Path] = None) -> None:
        self.workdir = workdir or Path.cwd()

    async def run(
        self,
        runnable: "Runnable",
        env: Dict[str, str],
        files: "EnvFiles",
        timeout: Optional[float] = None,
    ) -> RunnerResult:
        """Run a SCRIPT or EXEC runnable and capture its combined output."""
        if runnable.kind == RunnableKind.SCRIPT:
            argv = self._prepare_script(runnable, files)
        elif runnable.kind == RunnableKind.EXEC:
            argv = list(runnable.argv)
        else:
            return RunnerResult(
                exit_code=1,
                error=f"ProcessRunner cannot execute {runnable.kind.value} runnables",
            )

        if not argv:
            return RunnerResult(exit_code=1, error="Nothing to execute")

        cwd = runnable.working_directory or str(self.workdir)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            return RunnerResult(exit_code=127, error=f"Failed to start '{argv[0]}': {e}")

        try:
            stdout_bytes, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            # Kill the process on timeout or cancellation
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        output = stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else ""
        exit_code = process.returncode or 0

        return RunnerResult(
            exit_code=exit_code,
            error=f"Process completed with exit code {exit_code}" if exit_code else None,
            output=output,
        )

    def _prepare_script(self, runnable: "Runnable", files: "EnvFiles") -> List[str]:
        """Write the script into the step directory and build its command line."""
        shell = runnable.shell or default_shell()
        extension = SCRIPT_EXTENSIONS.get(shell, ".sh")
        script_path = files.directory / f"script{extension}"
        script_path.write_text(runnable.script or "", encoding="utf-8")
        return shell_command(shell, str(script_path))
