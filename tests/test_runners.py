"""Tests for process and container runners."""

import asyncio
import os
import sys
from pathlib import Path

import pytest

from localci.envfile import env_file_session
from localci.runners import (
    ContainerRunner,
    ProcessRunner,
    RunnerRegistry,
    RunnerResult,
    container_path,
    default_registry,
    shell_command,
)
from localci.runners.container import DEFAULT_CONTAINER_PATH
from localci.steps.types import Runnable, RunnableKind

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell required")


def base_env() -> dict:
    return {"PATH": os.environ.get("PATH", os.defpath)}


class TestShellCommand:
    """Tests for shell templates."""

    def test_known_shells(self) -> None:
        assert shell_command("sh", "/tmp/s.sh") == ["sh", "-e", "/tmp/s.sh"]
        assert shell_command("bash", "/tmp/s.sh") == [
            "bash",
            "--noprofile",
            "--norc",
            "-eo",
            "pipefail",
            "/tmp/s.sh",
        ]

    def test_custom_template(self) -> None:
        assert shell_command("perl {0}", "/tmp/s") == ["perl", "/tmp/s"]

    def test_custom_template_without_placeholder(self) -> None:
        with pytest.raises(ValueError, match="placeholder"):
            shell_command("zsh", "/tmp/s")


class TestProcessRunner:
    """Tests for running scripts and argv locally."""

    @pytest.mark.asyncio
    async def test_script_sees_env_and_writes_env_file(self, tmp_path: Path) -> None:
        """Test a script can read its env and append to GITHUB_ENV."""
        runner = ProcessRunner(tmp_path)
        script = 'echo "hello $NAME"\necho "FROM_SCRIPT=1" >> "$GITHUB_ENV"\n'
        with env_file_session(tmp_path / "tmp") as files:
            env = {**base_env(), **files.as_env(), "NAME": "world"}
            result = await runner.run(Runnable(kind=RunnableKind.SCRIPT, script=script, shell="sh"), env, files)
            written = files.env.read_text()

        assert result.success
        assert result.output.strip() == "hello world"
        assert written == "FROM_SCRIPT=1\n"

    @pytest.mark.asyncio
    async def test_exit_code(self, tmp_path: Path) -> None:
        runner = ProcessRunner(tmp_path)
        with env_file_session(tmp_path / "tmp") as files:
            result = await runner.run(
                Runnable(kind=RunnableKind.SCRIPT, script="exit 4", shell="sh"), base_env(), files
            )

        assert result.exit_code == 4
        assert result.error == "Process completed with exit code 4"
        assert not result.success

    @pytest.mark.asyncio
    async def test_working_directory(self, tmp_path: Path) -> None:
        sub = tmp_path / "sub"
        sub.mkdir()
        runner = ProcessRunner(tmp_path)
        with env_file_session(tmp_path / "tmp") as files:
            result = await runner.run(
                Runnable(kind=RunnableKind.SCRIPT, script="pwd", shell="sh", working_directory=str(sub)),
                base_env(),
                files,
            )

        assert Path(result.output.strip()).resolve() == sub.resolve()

    @pytest.mark.asyncio
    async def test_exec_runnable(self, tmp_path: Path) -> None:
        runner = ProcessRunner(tmp_path)
        with env_file_session(tmp_path / "tmp") as files:
            result = await runner.run(
                Runnable(kind=RunnableKind.EXEC, argv=("sh", "-c", "echo direct")), base_env(), files
            )

        assert result.output.strip() == "direct"

    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path: Path) -> None:
        runner = ProcessRunner(tmp_path)
        with env_file_session(tmp_path / "tmp") as files:
            result = await runner.run(
                Runnable(kind=RunnableKind.EXEC, argv=("definitely-not-a-real-binary-xyz",)),
                base_env(),
                files,
            )

        assert result.exit_code == 127
        assert "Failed to start" in result.error

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, tmp_path: Path) -> None:
        runner = ProcessRunner(tmp_path)
        with env_file_session(tmp_path / "tmp") as files:
            with pytest.raises(asyncio.TimeoutError):
                await runner.run(
                    Runnable(kind=RunnableKind.SCRIPT, script="sleep 30", shell="sh"),
                    base_env(),
                    files,
                    timeout=0.2,
                )

    @pytest.mark.asyncio
    async def test_rejects_container_runnables(self, tmp_path: Path) -> None:
        runner = ProcessRunner(tmp_path)
        with env_file_session(tmp_path / "tmp") as files:
            result = await runner.run(
                Runnable(kind=RunnableKind.CONTAINER, image="alpine"), base_env(), files
            )

        assert result.exit_code == 1


class TestContainerRunner:
    """Tests for docker command construction."""

    def test_build_command(self, tmp_path: Path) -> None:
        """Test mounts, env names, entrypoint and args."""
        runner = ContainerRunner(tmp_path)
        runnable = Runnable(
            kind=RunnableKind.CONTAINER,
            image="alpine:3.19",
            entrypoint="/bin/sh",
            args=("-c", "echo hi"),
        )
        with env_file_session(tmp_path / "tmp") as files:
            command = runner.build_command(runnable, {"HOME": "/root", "B": "2", "A": "1"}, files)
            directory = files.directory

        assert command[:3] == ["docker", "run", "--rm"]
        assert f"{tmp_path}:{tmp_path}" in command
        assert f"{directory}:{directory}" in command
        assert command[command.index("-w") + 1] == str(tmp_path)
        env_names = [command[i + 1] for i, part in enumerate(command) if part == "-e"]
        assert env_names == ["A", "B"]
        assert command[-4:] == ["/bin/sh", "alpine:3.19", "-c", "echo hi"]

    def test_path_entries_reach_container(self, tmp_path: Path) -> None:
        """Test a container PATH with added entries is passed by value."""
        runner = ContainerRunner(tmp_path)
        path = container_path(["/opt/tool/bin"])
        with env_file_session(tmp_path / "tmp") as files:
            command = runner.build_command(
                Runnable(kind=RunnableKind.CONTAINER, image="alpine"),
                {"PATH": path, "FOO": "1"},
                files,
            )

        env_args = [command[i + 1] for i, part in enumerate(command) if part == "-e"]
        assert env_args == [f"PATH={path}", "FOO"]
        assert path == f"/opt/tool/bin:{DEFAULT_CONTAINER_PATH}"

    def test_container_path_keeps_entry_order(self) -> None:
        assert container_path(["/a", "/b"], image_path="/usr/bin") == "/a:/b:/usr/bin"

    @pytest.mark.asyncio
    async def test_missing_docker(self, tmp_path: Path) -> None:
        runner = ContainerRunner(tmp_path, docker="no-such-docker-binary")
        with env_file_session(tmp_path / "tmp") as files:
            result = await runner.run(
                Runnable(kind=RunnableKind.CONTAINER, image="alpine"), {}, files
            )

        assert result.exit_code == 127
        assert "not found" in result.error


class TestRunnerRegistry:
    """Tests for dispatch by runnable kind."""

    def test_default_registry(self, tmp_path: Path) -> None:
        registry = default_registry(tmp_path)
        assert set(registry.available()) == set(RunnableKind)
        assert isinstance(registry.get(RunnableKind.SCRIPT), ProcessRunner)
        assert isinstance(registry.get(RunnableKind.CONTAINER), ContainerRunner)

    def test_missing_kind(self) -> None:
        with pytest.raises(ValueError, match="No runner"):
            RunnerRegistry().get(RunnableKind.EXEC)

    @pytest.mark.asyncio
    async def test_dispatch(self, fake_runner, tmp_path: Path) -> None:
        registry = RunnerRegistry()
        registry.register(RunnableKind.SCRIPT, fake_runner)
        with env_file_session(tmp_path) as files:
            result = await registry.run(Runnable(kind=RunnableKind.SCRIPT, script="x"), {}, files)

        assert isinstance(result, RunnerResult)
        assert fake_runner.calls == ["x"]
