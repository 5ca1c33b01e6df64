"""Structural checks over a plan's dependency graph."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterator, Mapping, Sequence

from .models import PlanValidation, StepType

if TYPE_CHECKING:
    from .plan import Plan


def find_cycle(
    dependencies: Mapping[str, Sequence[str]],
    order: Sequence[str] = (),
) -> list[str] | None:
    """Return one dependency cycle as a closed path (``[a, b, a]``), or None.

    Depth-first walk keeping the active path; reaching a node that is still
    on the path closes a cycle. ``order`` fixes the visiting order of roots
    so the reported cycle is deterministic. The walk keeps its own stack, so
    chain depth is not bounded by the interpreter's recursion limit.
    """
    visited: set[str] = set()
    ordered = set(order)
    roots = list(order) + [key for key in dependencies if key not in ordered]

    for root in roots:
        if root in visited:
            continue
        visited.add(root)
        path = [root]
        on_path = {root}
        pending: list[Iterator[str]] = [iter(dependencies.get(root, ()))]
        while pending:
            for dep in pending[-1]:
                if dep in on_path:
                    return path[path.index(dep) :] + [dep]
                if dep not in visited:
                    visited.add(dep)
                    path.append(dep)
                    on_path.add(dep)
                    pending.append(iter(dependencies.get(dep, ())))
                    break
            else:
                pending.pop()
                on_path.discard(path.pop())
    return None


def validate_plan(plan: Plan) -> PlanValidation:
    errors: list[str] = []
    warnings: list[str] = []

    if not plan.goal.strip():
        errors.append("Plan goal is required")
    if not plan.steps:
        errors.append("Plan must have at least one step")

    step_ids = [step.id for step in plan.steps]
    seen: set[str] = set()
    duplicates: list[str] = []
    for step_id in step_ids:
        if step_id in seen and step_id not in duplicates:
            duplicates.append(step_id)
        seen.add(step_id)
    if duplicates:
        errors.append(f"Duplicate step IDs found: {', '.join(duplicates)}")

    for step_id, deps in plan.dependencies.items():
        if step_id not in seen:
            errors.append(f"Dependency references unknown step: {step_id}")
        for dep in deps:
            if dep not in seen:
                errors.append(f"Step '{step_id}' depends on unknown step: {dep}")

    cycle = find_cycle(plan.dependencies, step_ids)
    if cycle is not None:
        errors.append(
            f"Circular dependency detected: {' -> '.join(cycle)} is a circular chain"
        )

    if not plan.risks:
        warnings.append("No risks identified - consider potential issues")
    if not any(step.type == StepType.TEST for step in plan.steps):
        warnings.append("No testing steps - consider adding verification")

    return PlanValidation(
        valid=not errors,
        errors=tuple(errors),
        warnings=tuple(warnings),
    )
