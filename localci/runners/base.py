"""Base runner abstraction for executing one unit of work."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional

if TYPE_CHECKING:
    from ..envfile import EnvFiles
    from ..steps.types import Runnable


@dataclass
class RunnerResult:
    """Result of running a runnable."""

    exit_code: int
    error: Optional[str] = None
    output: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and self.error is None


class StepRunner(ABC):
    """Abstract base class for step runners.

    A runner only executes the command or container and makes the env-file
    paths (already present in ``env``) available to the child process. It
    never interprets the env files itself.

    To add a new runner:
    1. Create a new class inheriting from StepRunner
    2. Implement the run coroutine
    3. Register it for a RunnableKind in runners/__init__.py
    """

    @abstractmethod
    async def run(
        self,
        runnable: "Runnable",
        env: Dict[str, str],
        files: "EnvFiles",
        timeout: Optional[float] = None,
    ) -> RunnerResult:
        """Execute a runnable.

        Args:
            runnable: What to execute
            env: Complete environment for the child process
            files: Step-scoped env files (their paths are also in env)
            timeout: Deadline in seconds, None for no deadline

        Returns:
            RunnerResult with the exit code and captured output

        Raises:
            asyncio.CancelledError: When the engine interrupts the call; the
                runner must stop its child process before re-raising
        """
        pass
