"""Value types for plans: steps, analysis, strategy, effort, risk."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def _as_tuple(value: Iterable[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    return tuple(str(item) for item in value)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Scope(Enum):
    SINGLE_FILE = ("Single File", 1)
    MULTI_FILE = ("Multiple Files", 2)
    MODULE = ("Module", 3)
    CROSS_MODULE = ("Cross-Module", 4)
    PROJECT_WIDE = ("Project-Wide", 5)

    def __init__(self, display_name: str, weight: int) -> None:
        self.display_name = display_name
        self.weight = weight


class Complexity(Enum):
    TRIVIAL = ("Trivial", 1)
    SIMPLE = ("Simple", 2)
    MODERATE = ("Moderate", 3)
    COMPLEX = ("Complex", 4)
    VERY_COMPLEX = ("Very Complex", 5)

    def __init__(self, display_name: str, weight: int) -> None:
        self.display_name = display_name
        self.weight = weight


class Approach(Enum):
    INCREMENTAL = ("Incremental", "Small changes with verification at each step")
    BIG_BANG = ("Big Bang", "Complete implementation before testing")
    SPIKE_FIRST = (
        "Spike First",
        "Quick prototype to understand, then clean implementation",
    )
    TEST_FIRST = ("Test First", "Write tests before implementation")
    PARALLEL = ("Parallel", "Multiple independent work streams")

    def __init__(self, display_name: str, description: str) -> None:
        self.display_name = display_name
        self.description = description


class StepType(Enum):
    RESEARCH = ("Research", "🔍")
    DESIGN = ("Design", "📐")
    IMPLEMENT = ("Implement", "💻")
    TEST = ("Test", "🧪")
    REFACTOR = ("Refactor", "♻️")
    DOCUMENT = ("Document", "📝")
    VERIFY = ("Verify", "✅")
    CLEANUP = ("Cleanup", "🧹")

    def __init__(self, display_name: str, icon: str) -> None:
        self.display_name = display_name
        self.icon = icon


class StepStatus(Enum):
    PENDING = ("Pending", False)
    IN_PROGRESS = ("In Progress", False)
    COMPLETED = ("Completed", True)
    FAILED = ("Failed", True)
    SKIPPED = ("Skipped", True)
    BLOCKED = ("Blocked", False)

    def __init__(self, display_name: str, is_terminal: bool) -> None:
        self.display_name = display_name
        self.is_terminal = is_terminal


# COMPLETED and SKIPPED both unblock dependents.
RESOLVED_STEP_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.SKIPPED})


class PlanStatus(Enum):
    DRAFT = ("Draft", False)
    APPROVED = ("Approved", False)
    IN_PROGRESS = ("In Progress", False)
    COMPLETED = ("Completed", True)
    FAILED = ("Failed", True)
    CANCELLED = ("Cancelled", True)

    def __init__(self, display_name: str, is_terminal: bool) -> None:
        self.display_name = display_name
        self.is_terminal = is_terminal


class Impact(Enum):
    LOW = ("Low", 1)
    MEDIUM = ("Medium", 2)
    HIGH = ("High", 3)
    CRITICAL = ("Critical", 4)

    def __init__(self, display_name: str, weight: int) -> None:
        self.display_name = display_name
        self.weight = weight


class RiskLevel(Enum):
    LOW = "Low Risk"
    MEDIUM = "Medium Risk"
    HIGH = "High Risk"

    @property
    def display_name(self) -> str:
        return self.value


def _enum(cls: type[Enum], value: Any) -> Any:
    if isinstance(value, cls):
        return value
    if isinstance(value, str):
        try:
            return cls[value.strip().upper().replace("-", "_").replace(" ", "_")]
        except KeyError:
            pass
    raise ValueError(f"unknown {cls.__name__} {value!r}")


# ---------------------------------------------------------------------------
# Problem analysis / strategy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProblemAnalysis:
    scope: Scope
    complexity: Complexity
    affected_areas: tuple[str, ...] = ()
    existing_patterns: tuple[str, ...] = ()
    constraints: tuple[str, ...] = ()
    unknowns: tuple[str, ...] = ()

    @property
    def difficulty_score(self) -> int:
        """Scope weight plus complexity weight, 2..10."""
        return self.scope.weight + self.complexity.weight

    @property
    def needs_investigation(self) -> bool:
        return bool(self.unknowns)

    @classmethod
    def simple(cls) -> ProblemAnalysis:
        return cls(Scope.SINGLE_FILE, Complexity.SIMPLE)

    @classmethod
    def moderate(cls) -> ProblemAnalysis:
        return cls(Scope.MULTI_FILE, Complexity.MODERATE)

    @classmethod
    def complex(cls) -> ProblemAnalysis:
        return cls(Scope.MODULE, Complexity.COMPLEX)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope.name,
            "complexity": self.complexity.name,
            "affected_areas": list(self.affected_areas),
            "existing_patterns": list(self.existing_patterns),
            "constraints": list(self.constraints),
            "unknowns": list(self.unknowns),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProblemAnalysis:
        return cls(
            scope=_enum(Scope, data.get("scope", "MODULE")),
            complexity=_enum(Complexity, data.get("complexity", "MODERATE")),
            affected_areas=_as_tuple(data.get("affected_areas")),
            existing_patterns=_as_tuple(data.get("existing_patterns")),
            constraints=_as_tuple(data.get("constraints")),
            unknowns=_as_tuple(data.get("unknowns")),
        )


@dataclass(frozen=True)
class AlternativeApproach:
    approach: Approach
    tradeoffs: str
    when_to_use: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "approach": self.approach.name,
            "tradeoffs": self.tradeoffs,
            "when_to_use": self.when_to_use,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AlternativeApproach:
        return cls(
            approach=_enum(Approach, data["approach"]),
            tradeoffs=str(data.get("tradeoffs", "")),
            when_to_use=str(data.get("when_to_use", "")),
        )


@dataclass(frozen=True)
class PlanStrategy:
    approach: Approach
    reasoning: str
    alternatives: tuple[AlternativeApproach, ...] = ()
    checkpoints: tuple[str, ...] = ()

    @classmethod
    def default(cls) -> PlanStrategy:
        return cls(
            Approach.INCREMENTAL,
            "Incremental changes allow for easy verification and rollback",
        )

    @classmethod
    def test_first(cls) -> PlanStrategy:
        return cls(
            Approach.TEST_FIRST,
            "Writing tests first ensures requirements are clear and verifiable",
        )

    @classmethod
    def spike(cls) -> PlanStrategy:
        return cls(
            Approach.SPIKE_FIRST,
            "Prototyping first helps understand unknowns before committing",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "approach": self.approach.name,
            "reasoning": self.reasoning,
            "alternatives": [alt.to_dict() for alt in self.alternatives],
            "checkpoints": list(self.checkpoints),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PlanStrategy:
        return cls(
            approach=_enum(Approach, data.get("approach", "INCREMENTAL")),
            reasoning=str(data.get("reasoning", "")),
            alternatives=tuple(
                AlternativeApproach.from_dict(alt)
                for alt in data.get("alternatives") or ()
            ),
            checkpoints=_as_tuple(data.get("checkpoints")),
        )


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Step:
    """One unit of work. Transitions return a new Step."""

    id: str
    order: int
    title: str
    description: str
    type: StepType
    verification_criteria: str = "Step completes successfully"
    estimated_tokens: int = 1000
    can_parallelize: bool = False
    rollback_strategy: str | None = None
    status: StepStatus = StepStatus.PENDING
    output: str | None = None

    @property
    def is_actionable(self) -> bool:
        return self.status in (StepStatus.PENDING, StepStatus.BLOCKED)

    @property
    def is_complete(self) -> bool:
        return self.status in RESOLVED_STEP_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def start(self) -> Step:
        return replace(self, status=StepStatus.IN_PROGRESS)

    def complete(self, output: str | None = None) -> Step:
        return replace(self, status=StepStatus.COMPLETED, output=output)

    def fail(self, error: str | None = None) -> Step:
        return replace(self, status=StepStatus.FAILED, output=error)

    def skip(self) -> Step:
        return replace(self, status=StepStatus.SKIPPED)

    def block(self) -> Step:
        return replace(self, status=StepStatus.BLOCKED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order": self.order,
            "title": self.title,
            "description": self.description,
            "type": self.type.name,
            "verification_criteria": self.verification_criteria,
            "estimated_tokens": self.estimated_tokens,
            "can_parallelize": self.can_parallelize,
            "rollback_strategy": self.rollback_strategy,
            "status": self.status.name,
            "output": self.output,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, order: int = 0) -> Step:
        step_id = str(data["id"]).strip()
        if not step_id:
            raise ValueError("step id cannot be empty")
        title = str(data.get("title") or "").strip()
        description = str(data.get("description") or title)
        return cls(
            id=step_id,
            order=int(data.get("order", order)),
            title=title or f"Step {step_id}",
            description=description,
            type=_enum(StepType, data.get("type", "IMPLEMENT")),
            verification_criteria=str(
                data.get("verification_criteria") or "Step completes successfully"
            ),
            estimated_tokens=int(data.get("estimated_tokens", 1000)),
            can_parallelize=bool(data.get("can_parallelize", False)),
            rollback_strategy=data.get("rollback_strategy"),
            status=_enum(StepStatus, data.get("status", "PENDING")),
            output=data.get("output"),
        )


# ---------------------------------------------------------------------------
# Effort / risk / validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EffortEstimate:
    total_steps: int
    estimated_minutes: int
    confidence: float
    breakdown: Mapping[StepType, int] = field(default_factory=dict)
    token_estimate: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "breakdown", MappingProxyType(dict(self.breakdown)))

    @property
    def estimated_hours(self) -> float:
        return self.estimated_minutes / 60

    @property
    def time_string(self) -> str:
        if self.estimated_minutes < 60:
            return f"{self.estimated_minutes} minutes"
        if self.estimated_minutes < 120:
            return "about 1 hour"
        return f"about {self.estimated_minutes // 60} hours"

    @property
    def confidence_percent(self) -> str:
        return f"{int(self.confidence * 100)}%"

    @classmethod
    def from_steps(
        cls,
        steps: Iterable[Step],
        *,
        minutes_per_1k_tokens: int = 2,
        confidence: float = 0.7,
    ) -> EffortEstimate:
        steps = list(steps)
        breakdown: dict[StepType, int] = {}
        for step in steps:
            breakdown[step.type] = breakdown.get(step.type, 0) + 1
        tokens = sum(step.estimated_tokens for step in steps)
        minutes = (tokens // 1000) * minutes_per_1k_tokens
        return cls(
            total_steps=len(steps),
            estimated_minutes=max(minutes, 1),
            confidence=confidence,
            breakdown=breakdown,
            token_estimate=tokens,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_steps": self.total_steps,
            "estimated_minutes": self.estimated_minutes,
            "confidence": self.confidence,
            "breakdown": {kind.name: count for kind, count in self.breakdown.items()},
            "token_estimate": self.token_estimate,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EffortEstimate:
        return cls(
            total_steps=int(data.get("total_steps", 0)),
            estimated_minutes=int(data.get("estimated_minutes", 0)),
            confidence=float(data.get("confidence", 0.0)),
            breakdown={
                _enum(StepType, kind): int(count)
                for kind, count in (data.get("breakdown") or {}).items()
            },
            token_estimate=int(data.get("token_estimate", 0)),
        )


@dataclass(frozen=True)
class PlanRisk:
    description: str
    probability: float
    impact: Impact
    mitigation: str
    contingency: str | None = None
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        if not 0.0 <= self.probability <= 1.0:
            raise ValueError(
                f"risk probability must be within [0, 1], got {self.probability}"
            )

    @property
    def score(self) -> float:
        return self.probability * self.impact.weight

    @property
    def level(self) -> RiskLevel:
        score = self.score
        if score >= 2.0:
            return RiskLevel.HIGH
        if score >= 1.0:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    @classmethod
    def low(cls, description: str, mitigation: str) -> PlanRisk:
        return cls(description, 0.2, Impact.LOW, mitigation)

    @classmethod
    def medium(cls, description: str, mitigation: str) -> PlanRisk:
        return cls(description, 0.4, Impact.MEDIUM, mitigation)

    @classmethod
    def high(cls, description: str, mitigation: str) -> PlanRisk:
        return cls(description, 0.6, Impact.HIGH, mitigation)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "probability": self.probability,
            "impact": self.impact.name,
            "mitigation": self.mitigation,
            "contingency": self.contingency,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PlanRisk:
        kwargs: dict[str, Any] = {}
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        return cls(
            description=str(data.get("description", "")),
            probability=float(data.get("probability", 0.0)),
            impact=_enum(Impact, data.get("impact", "LOW")),
            mitigation=str(data.get("mitigation", "")),
            contingency=data.get("contingency"),
            **kwargs,
        )


@dataclass(frozen=True)
class PlanValidation:
    valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


# ---------------------------------------------------------------------------
# Planning context / bookkeeping
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlanningContext:
    project_name: str
    project_path: str
    languages: tuple[str, ...] = ()
    framework: str | None = None
    active_files: tuple[str, ...] = ()
    selected_code: str | None = None
    error_context: str | None = None

    @classmethod
    def create(cls, project_name: str, project_path: str) -> PlanningContext:
        return cls(project_name, project_path)


@dataclass(frozen=True)
class PlanExecution:
    plan_id: str
    goal: str
    start_time: datetime
    end_time: datetime | None = None

    @property
    def duration_ms(self) -> int:
        end = self.end_time or utc_now()
        return max(int((end - self.start_time).total_seconds() * 1000), 0)


@dataclass(frozen=True)
class PlanningStats:
    total_plans: int = 0
    draft_plans: int = 0
    approved_plans: int = 0
    in_progress_plans: int = 0
    completed_plans: int = 0
    failed_plans: int = 0
    cancelled_plans: int = 0
    average_steps: int = 0
    total_steps_completed: int = 0

    @property
    def success_rate(self) -> float:
        """Completed over judged (completed + failed) plans."""
        judged = self.completed_plans + self.failed_plans
        if judged == 0:
            return 0.0
        return self.completed_plans / judged

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_plans": self.total_plans,
            "draft_plans": self.draft_plans,
            "approved_plans": self.approved_plans,
            "in_progress_plans": self.in_progress_plans,
            "completed_plans": self.completed_plans,
            "failed_plans": self.failed_plans,
            "cancelled_plans": self.cancelled_plans,
            "average_steps": self.average_steps,
            "total_steps_completed": self.total_steps_completed,
            "success_rate": self.success_rate,
        }
