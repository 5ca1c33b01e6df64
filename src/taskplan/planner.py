"""Planner port: the engine's only asynchronous boundary."""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from .analyzer import analyze_goal, suggest_strategy
from .errors import InvalidPlanError
from .models import (
    EffortEstimate,
    PlanningContext,
    PlanRisk,
    PlanStrategy,
    ProblemAnalysis,
    Step,
)
from .plan import Plan

RawPlan = Mapping[str, Any]


class Planner(Protocol):
    async def propose(self, goal: str, context: PlanningContext) -> RawPlan | Plan: ...


class LinearPlanner:
    """Fallback planner: a fixed linear chain, no model involved."""

    def __init__(
        self,
        steps: Sequence[str] = ("Analyze", "Implement", "Verify"),
        *,
        step_tokens: int = 1000,
    ) -> None:
        self.steps = tuple(steps)
        self.step_tokens = step_tokens

    async def propose(self, goal: str, context: PlanningContext) -> RawPlan:
        analysis = analyze_goal(goal)
        return {
            "goal": goal,
            "analysis": analysis.to_dict(),
            "strategy": suggest_strategy(analysis).to_dict(),
            "steps": [
                {
                    "id": str(index),
                    "title": f"Step {index}",
                    "description": description,
                    "type": "IMPLEMENT",
                    "estimated_tokens": self.step_tokens,
                }
                for index, description in enumerate(self.steps, start=1)
            ],
            "dependencies": {
                str(index): [str(index - 1)] for index in range(2, len(self.steps) + 1)
            },
        }


def plan_from_raw(
    raw: RawPlan | Plan,
    *,
    goal: str,
    minutes_per_1k_tokens: int = 2,
    confidence: float = 0.7,
) -> Plan:
    """Turn untrusted planner output into a DRAFT Plan (not yet validated).

    Malformed structure raises InvalidPlanError rather than KeyError/TypeError.
    """
    if isinstance(raw, Plan):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidPlanError([f"planner returned {type(raw).__name__}, expected a mapping"])

    raw_steps = raw.get("steps")
    if not isinstance(raw_steps, Sequence) or isinstance(raw_steps, (str, bytes)):
        raise InvalidPlanError(["planner output must contain a list of steps"])

    steps: list[Step] = []
    for index, raw_step in enumerate(raw_steps, start=1):
        if not isinstance(raw_step, Mapping) or "id" not in raw_step:
            raise InvalidPlanError([f"step #{index} must be a mapping with an id"])
        try:
            steps.append(Step.from_dict(raw_step, order=index))
        except (TypeError, ValueError) as exc:
            raise InvalidPlanError([f"step #{index}: {exc}"]) from exc

    raw_deps = raw.get("dependencies") or {}
    if not isinstance(raw_deps, Mapping):
        raise InvalidPlanError(["dependencies must be a mapping of step id to ids"])
    dependencies: dict[str, list[str]] = {}
    for key, deps in raw_deps.items():
        if isinstance(deps, (str, bytes)) or not isinstance(deps, Sequence):
            raise InvalidPlanError([f"dependencies of step '{key}' must be a list"])
        dependencies[str(key)] = [str(dep) for dep in deps]

    try:
        analysis = (
            ProblemAnalysis.from_dict(raw["analysis"])
            if raw.get("analysis")
            else analyze_goal(goal)
        )
        strategy = (
            PlanStrategy.from_dict(raw["strategy"])
            if raw.get("strategy")
            else suggest_strategy(analysis)
        )
        risks = tuple(PlanRisk.from_dict(risk) for risk in raw.get("risks") or ())
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidPlanError([f"malformed planner output: {exc}"]) from exc

    return Plan(
        goal=str(raw.get("goal") or goal),
        analysis=analysis,
        strategy=strategy,
        steps=tuple(steps),
        dependencies=dependencies,
        estimated_effort=EffortEstimate.from_steps(
            steps,
            minutes_per_1k_tokens=minutes_per_1k_tokens,
            confidence=confidence,
        ),
        risks=risks,
    )
