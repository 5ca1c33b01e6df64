"""The Plan aggregate and pure dependency-graph queries."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from .models import (
    RESOLVED_STEP_STATUSES,
    EffortEstimate,
    PlanRisk,
    PlanStatus,
    PlanStrategy,
    ProblemAnalysis,
    Step,
    StepStatus,
    StepType,
    new_id,
    utc_now,
)

if TYPE_CHECKING:
    from .models import PlanValidation


def freeze_dependencies(
    dependencies: Mapping[str, Iterable[str]] | None,
) -> Mapping[str, tuple[str, ...]]:
    if not dependencies:
        return MappingProxyType({})
    return MappingProxyType(
        {str(key): tuple(str(dep) for dep in deps) for key, deps in dependencies.items()}
    )


@dataclass(frozen=True)
class Plan:
    """A goal decomposed into steps plus a ``step -> depends-on`` map.

    Plans are values: every transition goes through ``with_*`` and yields a
    new Plan. ``dependencies`` is a read-only mapping of tuples.
    """

    goal: str
    analysis: ProblemAnalysis
    strategy: PlanStrategy
    steps: tuple[Step, ...]
    estimated_effort: EffortEstimate
    dependencies: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    risks: tuple[PlanRisk, ...] = ()
    status: PlanStatus = PlanStatus.DRAFT
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    version: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "risks", tuple(self.risks))
        object.__setattr__(self, "dependencies", freeze_dependencies(self.dependencies))

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_step(self, step_id: str) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def get_dependencies(self, step_id: str) -> list[Step]:
        out: list[Step] = []
        for dep_id in self.dependencies.get(step_id, ()):
            dep = self.get_step(dep_id)
            if dep is not None:
                out.append(dep)
        return out

    def get_dependents(self, step_id: str) -> list[Step]:
        return [
            step for step in self.steps if step_id in self.dependencies.get(step.id, ())
        ]

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _is_ready(self, step: Step, by_id: Mapping[str, Step]) -> bool:
        if step.status != StepStatus.PENDING:
            return False
        for dep_id in self.dependencies.get(step.id, ()):
            dep = by_id.get(dep_id)
            if dep is None or dep.status not in RESOLVED_STEP_STATUSES:
                return False
        return True

    def get_ready_steps(self) -> list[Step]:
        """PENDING steps whose dependencies are all completed or skipped."""
        by_id = {step.id: step for step in self.steps}
        return [step for step in self.steps if self._is_ready(step, by_id)]

    def get_blocked_steps(self) -> list[Step]:
        """Steps explicitly BLOCKED, or PENDING and still waiting on a dependency."""
        by_id = {step.id: step for step in self.steps}
        return [
            step
            for step in self.steps
            if step.status == StepStatus.BLOCKED
            or (step.status == StepStatus.PENDING and not self._is_ready(step, by_id))
        ]

    def get_parallelizable_steps(self) -> list[list[Step]]:
        """Group steps into levels by dependency depth.

        A step with no dependencies sits on level 0; any other step sits one
        level above its deepest dependency. No step depends on another step
        of its own level, so each level can run concurrently. Steps caught in
        a cycle, or waiting on one, never get a level and are left out.
        """
        step_ids = {step.id for step in self.steps}
        waiting: dict[str, int] = {}
        dependents: dict[str, list[str]] = {step_id: [] for step_id in step_ids}
        for step_id in step_ids:
            deps = {
                dep_id
                for dep_id in self.dependencies.get(step_id, ())
                if dep_id in step_ids and dep_id != step_id
            }
            waiting[step_id] = len(deps)
            for dep_id in deps:
                dependents[dep_id].append(step_id)

        levels = {step_id: 0 for step_id, count in waiting.items() if count == 0}
        queue = deque(levels)
        while queue:
            step_id = queue.popleft()
            for child in dependents[step_id]:
                levels[child] = max(levels.get(child, 0), levels[step_id] + 1)
                waiting[child] -= 1
                if waiting[child] == 0:
                    queue.append(child)

        grouped: dict[int, list[Step]] = {}
        for step in self.steps:
            if step.id in levels and waiting[step.id] == 0:
                grouped.setdefault(levels[step.id], []).append(step)
        return [grouped[level] for level in sorted(grouped)]

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    @property
    def progress(self) -> float:
        """Fraction of steps completed or skipped."""
        if not self.steps:
            return 0.0
        resolved = sum(1 for step in self.steps if step.status in RESOLVED_STEP_STATUSES)
        return resolved / len(self.steps)

    @property
    def is_complete(self) -> bool:
        return bool(self.steps) and all(
            step.status in RESOLVED_STEP_STATUSES for step in self.steps
        )

    @property
    def has_failed(self) -> bool:
        return any(step.status == StepStatus.FAILED for step in self.steps)

    def count_steps(self, status: StepStatus) -> int:
        return sum(1 for step in self.steps if step.status == status)

    # ------------------------------------------------------------------
    # Functional updates
    # ------------------------------------------------------------------

    def with_step(self, updated: Step) -> Plan:
        return replace(
            self,
            steps=tuple(updated if step.id == updated.id else step for step in self.steps),
        )

    def with_step_status(self, step_id: str, status: StepStatus) -> Plan:
        step = self.get_step(step_id)
        if step is None:
            return self
        return self.with_step(replace(step, status=status))

    def with_status(self, status: PlanStatus) -> Plan:
        return replace(self, status=status)

    def validate(self) -> PlanValidation:
        from .validate import validate_plan

        return validate_plan(self)

    # ------------------------------------------------------------------
    # Construction / plain data
    # ------------------------------------------------------------------

    @classmethod
    def linear(
        cls,
        goal: str,
        descriptions: Iterable[str],
        *,
        step_tokens: int = 1000,
        minutes_per_1k_tokens: int = 2,
        confidence: float = 0.7,
    ) -> Plan:
        """Build a strict chain: step ``i + 1`` depends only on step ``i``."""
        steps = tuple(
            Step(
                id=str(index),
                order=index,
                title=f"Step {index}",
                description=description,
                type=StepType.IMPLEMENT,
                estimated_tokens=step_tokens,
            )
            for index, description in enumerate(descriptions, start=1)
        )
        dependencies = {
            steps[index].id: (steps[index - 1].id,) for index in range(1, len(steps))
        }
        return cls(
            goal=goal,
            analysis=ProblemAnalysis.simple(),
            strategy=PlanStrategy.default(),
            steps=steps,
            dependencies=dependencies,
            estimated_effort=EffortEstimate.from_steps(
                steps,
                minutes_per_1k_tokens=minutes_per_1k_tokens,
                confidence=confidence,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "goal": self.goal,
            "status": self.status.name,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "analysis": self.analysis.to_dict(),
            "strategy": self.strategy.to_dict(),
            "steps": [step.to_dict() for step in self.steps],
            "dependencies": {key: list(deps) for key, deps in self.dependencies.items()},
            "estimated_effort": self.estimated_effort.to_dict(),
            "risks": [risk.to_dict() for risk in self.risks],
            "progress": self.progress,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Plan:
        steps = tuple(
            Step.from_dict(raw, order=index)
            for index, raw in enumerate(data.get("steps") or (), start=1)
        )
        effort_raw = data.get("estimated_effort")
        kwargs: dict[str, Any] = {}
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        if data.get("created_at"):
            kwargs["created_at"] = datetime.fromisoformat(str(data["created_at"]))
        if data.get("status"):
            kwargs["status"] = PlanStatus[str(data["status"]).upper()]
        return cls(
            goal=str(data.get("goal", "")),
            analysis=ProblemAnalysis.from_dict(data.get("analysis") or {}),
            strategy=PlanStrategy.from_dict(data.get("strategy") or {}),
            steps=steps,
            dependencies=data.get("dependencies") or {},
            estimated_effort=(
                EffortEstimate.from_dict(effort_raw)
                if effort_raw
                else EffortEstimate.from_steps(steps)
            ),
            risks=tuple(PlanRisk.from_dict(raw) for raw in data.get("risks") or ()),
            version=int(data.get("version", 1)),
            **kwargs,
        )
