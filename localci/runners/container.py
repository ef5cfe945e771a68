"""Container runner: executes container runnables with the docker CLI.

Images are expected to be present or pullable by the docker CLI itself; the
runner does not build images.
"""

import asyncio
import os
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

from ..steps.types import RunnableKind
from .base import RunnerResult, StepRunner

if TYPE_CHECKING:
    from ..envfile import EnvFiles
    from ..steps.types import Runnable


# Host variables that must not leak into the container
HOST_ONLY_VARIABLES = frozenset(
    {"PATH", "HOME", "HOSTNAME", "PWD", "OLDPWD", "SHLVL", "TERM", "TMPDIR", "_"}
)

# Search path of common Linux base images
DEFAULT_CONTAINER_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"


def container_path(entries: List[str], image_path: str = DEFAULT_CONTAINER_PATH) -> str:
    """PATH to use inside a container: added entries, then the image's own."""
    return ":".join(list(entries) + [image_path])


class ContainerRunner(StepRunner):
    """Run container runnables in throwaway containers."""

    def __init__(self, workdir: Optional[Path] = None, docker: str = "docker") -> None:
        self.workdir = workdir or Path.cwd()
        self.docker = docker

    def build_command(
        self,
        runnable: "Runnable",
        env: Dict[str, str],
        files: "EnvFiles",
    ) -> List[str]:
        """Build the docker CLI command line for a runnable.

        The workspace and the env-file directory are mounted at the same
        paths inside the container, so GITHUB_ENV and friends stay valid.
        Variable values are passed through the client environment, not argv.
        PATH is the exception: the client keeps the host search path, so a
        PATH in env, already built with container_path(), is passed by value.
        """
        workdir = runnable.working_directory or str(self.workdir)
        command = [
            self.docker,
            "run",
            "--rm",
            "-v",
            f"{self.workdir}:{self.workdir}",
            "-v",
            f"{files.directory}:{files.directory}",
            "-w",
            workdir,
        ]
        if env.get("PATH"):
            command.extend(["-e", f"PATH={env['PATH']}"])
        for key in sorted(env):
            if key not in HOST_ONLY_VARIABLES:
                command.extend(["-e", key])
        if runnable.entrypoint:
            command.extend(["--entrypoint", runnable.entrypoint])
        command.append(runnable.image or "")
        command.extend(runnable.args)
        return command

    async def run(
        self,
        runnable: "Runnable",
        env: Dict[str, str],
        files: "EnvFiles",
        timeout: Optional[float] = None,
    ) -> RunnerResult:
        """Run a CONTAINER runnable and capture its combined output."""
        if runnable.kind != RunnableKind.CONTAINER or not runnable.image:
            return RunnerResult(exit_code=1, error="ContainerRunner requires a container image")

        if shutil.which(self.docker) is None:
            return RunnerResult(exit_code=127, error=f"'{self.docker}' executable not found")

        command = self.build_command(runnable, env, files)
        client_env = os.environ.copy()
        client_env.update({key: value for key, value in env.items() if key != "PATH"})

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                env=client_env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            return RunnerResult(exit_code=127, error=f"Failed to start container: {e}")

        try:
            stdout_bytes, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        output = stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else ""
        exit_code = process.returncode or 0

        return RunnerResult(
            exit_code=exit_code,
            error=f"Container exited with code {exit_code}" if exit_code else None,
            output=output,
        )
