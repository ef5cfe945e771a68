"""Tests for flattening step trees into execution plans."""

import pytest

from localci.steps.errors import CircularDependencyError
from localci.steps.plan import ENTER, EXIT, MAIN, SKIP, build_plan, qualify
from localci.steps.types import Stage


def keys(units):
    return [unit.key for unit in units]


class TestQueues:
    """Tests for pre, main and post ordering."""

    def test_run_steps_fill_main_queue_in_order(self, build) -> None:
        """Test run steps keep declaration order."""
        plan = build_plan([build.run("a"), build.run("b"), build.run("c")])

        assert keys(plan.main_queue) == ["a", "b", "c"]
        assert plan.pre_queue == []
        assert plan.post_stack == []

    def test_pre_queue_is_declaration_order(self, build) -> None:
        """Test pre hooks are queued first in, first out."""
        plan = build_plan(
            [
                build.action("a", pre="a-pre"),
                build.run("b"),
                build.action("c", pre="c-pre"),
            ]
        )

        assert keys(plan.pre_queue) == ["a", "c"]
        assert all(unit.stage == Stage.PRE for unit in plan.pre_queue)

    def test_post_stack_drains_in_reverse(self, build) -> None:
        """Test the last registered post hook runs first."""
        plan = build_plan(
            [
                build.action("a", post="a-post"),
                build.action("b", post="b-post"),
                build.run("c"),
            ]
        )

        assert keys(plan.post_stack) == ["a", "b"]
        assert plan.post_order() == ["b", "a"]

    def test_composite_children_nest_inside_outer_posts(self, build) -> None:
        """Test nested post hooks unwind before the outer step's post."""
        plan = build_plan(
            [
                build.action("A", post="A-post"),
                build.composite(
                    "B",
                    [
                        build.action("B1", post="B1-post"),
                        build.action("B2", post="B2-post"),
                    ],
                ),
            ]
        )

        assert plan.post_order() == ["B/B2", "B/B1", "A"]

    def test_composite_pre_hooks_flatten_in_place(self, build) -> None:
        """Test pre hooks of composite children keep declaration order."""
        plan = build_plan(
            [
                build.composite("outer", [build.action("x", pre="x-pre")]),
                build.action("y", pre="y-pre"),
            ]
        )

        assert keys(plan.pre_queue) == ["outer/x", "y"]

    def test_unit_runnable_follows_stage(self, build) -> None:
        """Test each unit exposes the runnable for its stage."""
        plan = build_plan([build.action("a", pre="a-pre", post="a-post")])

        assert plan.pre_queue[0].runnable.script == "a-pre"
        assert plan.main_queue[0].runnable.script == "a"
        assert plan.post_stack[0].runnable.script == "a-post"


class TestComposites:
    """Tests for composite flattening."""

    def test_children_are_qualified_and_scoped(self, build) -> None:
        """Test child keys carry the composite key and scope path."""
        plan = build_plan(
            [
                build.run("before"),
                build.composite("c", [build.run("one"), build.run("two")]),
                build.run("after"),
            ]
        )

        assert keys(plan.main_queue) == ["before", "c/one", "c/two", "after"]
        assert plan.main_queue[1].scope == ("c",)
        assert plan.main_queue[1].depth == 1
        assert plan.main_queue[0].depth == 0

    def test_nested_composites(self, build) -> None:
        """Test keys are qualified by the innermost composite."""
        plan = build_plan(
            [build.composite("outer", [build.composite("inner", [build.run("leaf")])])]
        )

        leaf = plan.main_queue[0]
        assert leaf.key == "outer/inner/leaf"
        assert leaf.scope == ("outer", "outer/inner")

    def test_groups_record_main_queue_slices(self, build) -> None:
        """Test each composite knows which main units it owns."""
        plan = build_plan(
            [
                build.run("a"),
                build.composite("c", [build.run("one"), build.run("two")]),
            ]
        )

        group = plan.groups[0]
        assert group.key == "c"
        assert (group.start, group.end) == (1, 3)
        assert set(plan.composite_steps()) == {"c"}

    def test_timeline_brackets_children(self, build) -> None:
        """Test ENTER and EXIT surround the children in declaration order."""
        plan = build_plan(
            [
                build.run("a"),
                build.composite("c", [build.run("one"), build.composite("empty", [])]),
                build.run("z", condition=False),
            ]
        )

        events = [(entry.event, entry.unit.key) for entry in plan.timeline]
        assert events == [
            (MAIN, "a"),
            (ENTER, "c"),
            (MAIN, "c/one"),
            (ENTER, "c/empty"),
            (EXIT, "c/empty"),
            (EXIT, "c"),
            (SKIP, "z"),
        ]


class TestSkippedSteps:
    """Tests for steps whose condition is literally false."""

    def test_false_condition_schedules_nothing(self, build) -> None:
        """Test no hooks or children are planned for a disabled step."""
        plan = build_plan(
            [
                build.action("a", pre="a-pre", post="a-post", condition=False),
                build.composite("c", [build.action("x", pre="x-pre")], condition=False),
            ]
        )

        assert plan.pre_queue == []
        assert plan.main_queue == []
        assert plan.post_stack == []
        assert keys(plan.skipped) == ["a", "c"]

    def test_callable_condition_is_still_planned(self, build) -> None:
        """Test predicates are left for evaluation at run time."""
        plan = build_plan([build.run("a", condition=lambda view: False)])

        assert keys(plan.main_queue) == ["a"]
        assert plan.skipped == []


class TestCycles:
    """Tests for cycle detection."""

    def test_step_nested_in_itself_raises(self, build) -> None:
        """Test a composite that contains itself is rejected."""
        loop = build.composite("loop", [])
        loop.children.append(loop)

        with pytest.raises(CircularDependencyError) as exc_info:
            build_plan([loop])

        assert exc_info.value.chain == ["loop", "loop"]

    def test_shared_step_in_siblings_is_allowed(self, build) -> None:
        """Test the same step object in two sibling composites is not a cycle."""
        shared = build.run("shared")
        plan = build_plan(
            [build.composite("a", [shared]), build.composite("b", [shared])]
        )

        assert keys(plan.main_queue) == ["a/shared", "b/shared"]


def test_qualify() -> None:
    """Test key qualification by the innermost scope."""
    assert qualify((), "step") == "step"
    assert qualify(("outer", "outer/inner"), "step") == "outer/inner/step"
