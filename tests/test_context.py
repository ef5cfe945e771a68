"""Tests for ExecutionContext scopes and step records."""

import pytest

from localci.context import ExecutionContext
from localci.steps.errors import DuplicateResultError
from localci.steps.types import Stage, StepResult, StepStatus


def success() -> StepResult:
    return StepResult(outcome=StepStatus.SUCCESS, conclusion=StepStatus.SUCCESS)


class TestScopes:
    """Tests for child scopes and job-wide updates."""

    def test_child_starts_from_parent_snapshot(self) -> None:
        """Test a new scope sees the parent's env and path."""
        root = ExecutionContext(env={"A": "1"}, path=["/opt/a"])
        child = root.new_scope({"flag": "true"})

        assert child.env == {"A": "1"}
        assert child.path == ["/opt/a"]
        assert child.inputs == {"flag": "true"}
        assert child.parent is root
        assert not child.is_root
        assert root.is_root

    def test_file_command_updates_are_job_wide(self) -> None:
        """Test env and path written from a child scope reach every scope."""
        root = ExecutionContext(env={"A": "1"})
        child = root.new_scope()
        sibling = root.new_scope()

        child.merge_from_step_output("inner", env={"A": "2", "B": "3"}, path=["/opt/b"])

        assert root.effective_env() == {"A": "2", "B": "3"}
        assert root.effective_path() == ["/opt/b"]
        assert sibling.effective_env() == {"A": "2", "B": "3"}
        assert root.env == {"A": "1"}

    def test_later_parent_writes_seen_by_child(self) -> None:
        """Test a scope created earlier still sees later job-wide updates."""
        root = ExecutionContext()
        child = root.new_scope()
        root.merge_from_step_output("outer", env={"LATE": "1"})
        assert child.effective_env()["LATE"] == "1"

    def test_scope_env_stays_local(self) -> None:
        """Test a scope's own env is not copied back to its parent."""
        root = ExecutionContext()
        child = root.new_scope()
        child.env["OWN"] = "1"
        assert "OWN" not in root.effective_env()

    def test_records_are_shared(self) -> None:
        """Test outputs and results are job-wide across scopes."""
        root = ExecutionContext()
        child = root.new_scope()

        child.merge_from_step_output("c/inner", outputs={"x": "1"}, state={"s": "2"})
        child.record_result("c/inner", success())

        assert root.outputs_of("c/inner") == {"x": "1"}
        assert root.state_of("c/inner") == {"s": "2"}
        assert root.result_of("c/inner") == success()


class TestMergeFromStepOutput:
    """Tests for applying env-file updates."""

    def test_path_is_prepended(self) -> None:
        """Test new path entries go in front of existing ones."""
        ctx = ExecutionContext(path=["/usr/bin"])
        ctx.merge_from_step_output("s", path=["/opt/a", "/opt/b"])
        assert ctx.effective_path() == ["/opt/a", "/opt/b", "/usr/bin"]

    def test_outputs_accumulate_per_step(self) -> None:
        """Test repeated merges for one step update its outputs."""
        ctx = ExecutionContext()
        ctx.merge_from_step_output("s", outputs={"a": "1"})
        ctx.merge_from_step_output("s", outputs={"b": "2", "a": "3"})
        assert ctx.outputs_of("s") == {"a": "3", "b": "2"}

    def test_outputs_of_unknown_step_is_empty(self) -> None:
        """Test outputs of a step that never ran."""
        assert ExecutionContext().outputs_of("never") == {}

    def test_outputs_of_returns_copy(self) -> None:
        """Test callers cannot mutate the records through outputs_of."""
        ctx = ExecutionContext()
        ctx.set_output("s", "a", "1")
        ctx.outputs_of("s")["a"] = "changed"
        assert ctx.outputs_of("s") == {"a": "1"}


class TestResults:
    """Tests for write-once step results."""

    def test_record_and_read(self) -> None:
        """Test a recorded result can be read back."""
        ctx = ExecutionContext()
        ctx.record_result("s", success())
        assert ctx.result_of("s") == success()
        assert ctx.result_of("other") is None

    def test_second_record_raises(self) -> None:
        """Test results cannot be overwritten."""
        ctx = ExecutionContext()
        ctx.record_result("s", success())

        with pytest.raises(DuplicateResultError) as exc_info:
            ctx.record_result(
                "s", StepResult(outcome=StepStatus.FAILURE, conclusion=StepStatus.FAILURE)
            )

        assert exc_info.value.step_key == "s"
        assert ctx.result_of("s") == success()

    def test_hook_results_are_keyed_by_stage(self) -> None:
        """Test pre and post hooks of one step are recorded separately."""
        ctx = ExecutionContext()
        ctx.record_hook_result("s", Stage.PRE, success())
        ctx.record_hook_result("s", Stage.POST, success())

        with pytest.raises(DuplicateResultError):
            ctx.record_hook_result("s", Stage.POST, success())

    def test_started_tracking(self) -> None:
        """Test marking steps as started."""
        ctx = ExecutionContext()
        assert not ctx.has_started("s")
        ctx.new_scope().mark_started("s")
        assert ctx.has_started("s")
