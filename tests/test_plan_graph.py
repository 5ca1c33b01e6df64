"""Dependency-graph queries on Plan."""

from __future__ import annotations

import pytest

from taskplan.models import (
    EffortEstimate,
    PlanStatus,
    PlanStrategy,
    ProblemAnalysis,
    Step,
    StepStatus,
    StepType,
)
from taskplan.plan import Plan


def _plan(ids: list[str], deps: dict[str, list[str]] | None = None) -> Plan:
    steps = tuple(
        Step(id=step_id, order=i, title=step_id.upper(), description=step_id, type=StepType.IMPLEMENT)
        for i, step_id in enumerate(ids, start=1)
    )
    return Plan(
        goal="test goal",
        analysis=ProblemAnalysis.simple(),
        strategy=PlanStrategy.default(),
        steps=steps,
        dependencies=deps or {},
        estimated_effort=EffortEstimate.from_steps(steps),
    )


def _ids(steps: list[Step]) -> list[str]:
    return [step.id for step in steps]


def test_linear_plan_chains_each_step_to_the_previous_one() -> None:
    plan = Plan.linear("ship it", ["Analyze", "Build", "Verify"])

    assert _ids(list(plan.steps)) == ["1", "2", "3"]
    assert [step.title for step in plan.steps] == ["Step 1", "Step 2", "Step 3"]
    assert dict(plan.dependencies) == {"2": ("1",), "3": ("2",)}
    assert plan.status == PlanStatus.DRAFT
    assert plan.version == 1
    assert plan.estimated_effort.total_steps == 3


def test_ready_steps_follow_completion_through_a_chain() -> None:
    plan = Plan.linear("g", ["a", "b"])
    assert _ids(plan.get_ready_steps()) == ["1"]

    plan = plan.with_step_status("1", StepStatus.COMPLETED)
    assert _ids(plan.get_ready_steps()) == ["2"]


def test_steps_without_dependencies_are_ready_in_plan_order() -> None:
    plan = _plan(["c", "a", "b"])
    assert _ids(plan.get_ready_steps()) == ["c", "a", "b"]


def test_skipped_dependency_unblocks_dependents() -> None:
    plan = _plan(["a", "b"], {"b": ["a"]}).with_step_status("a", StepStatus.SKIPPED)
    assert _ids(plan.get_ready_steps()) == ["b"]


def test_failed_dependency_keeps_dependents_blocked() -> None:
    plan = _plan(["a", "b"], {"b": ["a"]}).with_step_status("a", StepStatus.FAILED)
    assert plan.get_ready_steps() == []
    assert _ids(plan.get_blocked_steps()) == ["b"]


def test_in_progress_step_is_not_ready() -> None:
    plan = _plan(["a"]).with_step_status("a", StepStatus.IN_PROGRESS)
    assert plan.get_ready_steps() == []


def test_blocked_steps_include_explicitly_blocked() -> None:
    plan = _plan(["a", "b", "c"], {"b": ["a"]}).with_step_status("c", StepStatus.BLOCKED)
    assert _ids(plan.get_blocked_steps()) == ["b", "c"]


def test_dependencies_and_dependents() -> None:
    plan = _plan(["a", "b", "c"], {"b": ["a"], "c": ["a", "b"]})
    assert _ids(plan.get_dependencies("c")) == ["a", "b"]
    assert _ids(plan.get_dependents("a")) == ["b", "c"]
    assert plan.get_dependencies("a") == []
    assert plan.get_dependents("c") == []


def test_dependencies_skip_unknown_ids() -> None:
    plan = _plan(["a"], {"a": ["ghost"]})
    assert plan.get_dependencies("a") == []


def test_layers_for_a_fan_out() -> None:
    plan = _plan(["A", "B", "C"], {"B": ["A"], "C": ["A"]})
    assert [_ids(layer) for layer in plan.get_parallelizable_steps()] == [["A"], ["B", "C"]]


def test_layers_use_the_deepest_dependency() -> None:
    plan = _plan(
        ["a", "b", "c", "d"],
        {"b": ["a"], "c": ["b"], "d": ["a", "c"]},
    )
    assert [_ids(layer) for layer in plan.get_parallelizable_steps()] == [
        ["a"],
        ["b"],
        ["c"],
        ["d"],
    ]


def test_layers_never_put_a_dependency_in_its_dependents_layer() -> None:
    plan = _plan(
        ["a", "b", "c", "d", "e"],
        {"c": ["a", "b"], "d": ["a"], "e": ["d", "c"]},
    )
    layers = plan.get_parallelizable_steps()
    level = {step.id: i for i, layer in enumerate(layers) for step in layer}
    for step_id, deps in plan.dependencies.items():
        for dep in deps:
            assert level[dep] < level[step_id]
    assert sum(len(layer) for layer in layers) == 5


def test_layers_for_independent_steps() -> None:
    plan = _plan(["x", "y", "z"])
    assert [_ids(layer) for layer in plan.get_parallelizable_steps()] == [["x", "y", "z"]]


def test_layers_leave_out_cyclic_steps() -> None:
    plan = _plan(["a", "b", "c"], {"a": ["b"], "b": ["a"]})
    assert [_ids(layer) for layer in plan.get_parallelizable_steps()] == [["c"]]


@pytest.mark.parametrize(
    ("statuses", "expected"),
    [
        ({}, 0.0),
        ({"a": StepStatus.COMPLETED}, 0.5),
        ({"a": StepStatus.SKIPPED}, 0.5),
        ({"a": StepStatus.FAILED}, 0.0),
        ({"a": StepStatus.COMPLETED, "b": StepStatus.COMPLETED}, 1.0),
    ],
)
def test_progress(statuses: dict[str, StepStatus], expected: float) -> None:
    plan = _plan(["a", "b"])
    for step_id, status in statuses.items():
        plan = plan.with_step_status(step_id, status)
    assert plan.progress == expected


def test_progress_of_an_empty_plan_is_zero() -> None:
    plan = _plan([])
    assert plan.progress == 0.0
    assert not plan.is_complete


def test_is_complete_and_has_failed() -> None:
    plan = _plan(["a", "b"])
    assert not plan.is_complete
    plan = plan.with_step_status("a", StepStatus.COMPLETED).with_step_status(
        "b", StepStatus.SKIPPED
    )
    assert plan.is_complete
    assert not plan.has_failed
    assert _plan(["a"]).with_step_status("a", StepStatus.FAILED).has_failed


def test_with_step_leaves_the_original_untouched() -> None:
    plan = _plan(["a"])
    updated = plan.with_step(plan.steps[0].complete("done"))
    assert plan.steps[0].status == StepStatus.PENDING
    assert updated.steps[0].output == "done"
    assert updated.id == plan.id


def test_with_step_status_ignores_unknown_step() -> None:
    plan = _plan(["a"])
    assert plan.with_step_status("nope", StepStatus.COMPLETED) is plan


def test_dependencies_are_read_only() -> None:
    plan = _plan(["a", "b"], {"b": ["a"]})
    with pytest.raises(TypeError):
        plan.dependencies["a"] = ("b",)  # type: ignore[index]


def test_count_steps() -> None:
    plan = _plan(["a", "b", "c"]).with_step_status("b", StepStatus.COMPLETED)
    assert plan.count_steps(StepStatus.COMPLETED) == 1
    assert plan.count_steps(StepStatus.PENDING) == 2


def test_plan_dict_round_trip_keeps_identity() -> None:
    plan = _plan(["a", "b"], {"b": ["a"]}).with_status(PlanStatus.APPROVED)
    restored = Plan.from_dict(plan.to_dict())
    assert restored.id == plan.id
    assert restored.status == PlanStatus.APPROVED
    assert restored.created_at == plan.created_at
    assert dict(restored.dependencies) == {"b": ("a",)}
    assert restored.steps == plan.steps


def test_effort_breakdown_is_read_only() -> None:
    plan = _plan(["a", "b"])
    with pytest.raises(TypeError):
        plan.estimated_effort.breakdown[StepType.TEST] = 99  # type: ignore[index]
    assert dict(plan.estimated_effort.breakdown) == {StepType.IMPLEMENT: 2}


def test_layers_of_a_chain_deeper_than_the_recursion_limit() -> None:
    ids = [f"s{i}" for i in range(3000)]
    plan = _plan(ids, {ids[i]: [ids[i + 1]] for i in range(len(ids) - 1)})

    layers = plan.get_parallelizable_steps()

    assert len(layers) == 3000
    assert _ids(layers[0]) == ["s2999"]
    assert _ids(layers[-1]) == ["s0"]
