"""Runner registry and exports for step runners."""

from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

from ..steps.types import RunnableKind
from .base import RunnerResult, StepRunner
from .container import ContainerRunner, container_path
from .process import ProcessRunner, shell_command

if TYPE_CHECKING:
    from ..envfile import EnvFiles
    from ..steps.types import Runnable


class RunnerRegistry(StepRunner):
    """Dispatches each runnable to the runner registered for its kind.

    Use this registry to register and retrieve runners by runnable kind.
    """

    def __init__(self) -> None:
        self._runners: Dict[RunnableKind, StepRunner] = {}

    def register(self, kind: RunnableKind, runner: StepRunner) -> None:
        """Register a runner for a runnable kind."""
        self._runners[kind] = runner

    def get(self, kind: RunnableKind) -> StepRunner:
        """Get the runner for a runnable kind.

        Raises:
            ValueError: If no runner is registered for the kind
        """
        if kind not in self._runners:
            available = ", ".join(k.value for k in self._runners)
            raise ValueError(f"No runner for {kind.value} runnables. Available: {available}")
        return self._runners[kind]

    def available(self) -> List[RunnableKind]:
        """List all registered runnable kinds."""
        return list(self._runners.keys())

    async def run(
        self,
        runnable: "Runnable",
        env: Dict[str, str],
        files: "EnvFiles",
        timeout: Optional[float] = None,
    ) -> RunnerResult:
        return await self.get(runnable.kind).run(runnable, env, files, timeout)


def default_registry(workdir: Optional[Path] = None) -> RunnerRegistry:
    """Registry with the built-in process and container runners."""
    registry = RunnerRegistry()
    process_runner = ProcessRunner(workdir)
    registry.register(RunnableKind.SCRIPT, process_runner)
    registry.register(RunnableKind.EXEC, process_runner)
    registry.register(RunnableKind.CONTAINER, ContainerRunner(workdir))
    return registry


__all__ = [
    "ContainerRunner",
    "ProcessRunner",
    "RunnerRegistry",
    "RunnerResult",
    "StepRunner",
    "container_path",
    "default_registry",
    "shell_command",
]
