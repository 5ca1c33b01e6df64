from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "__version__",
    "EngineConfig",
    "EventBus",
    "InvalidPlanError",
    "Plan",
    "PlanEvent",
    "PlanningEngine",
    "Step",
]

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .config import EngineConfig
    from .engine import PlanningEngine
    from .errors import InvalidPlanError
    from .events import EventBus, PlanEvent
    from .models import Step
    from .plan import Plan


def __getattr__(name: str):
    if name == "PlanningEngine":
        from .engine import PlanningEngine

        return PlanningEngine
    if name == "Plan":
        from .plan import Plan

        return Plan
    if name == "Step":
        from .models import Step

        return Step
    if name == "EngineConfig":
        from .config import EngineConfig

        return EngineConfig
    if name == "InvalidPlanError":
        from .errors import InvalidPlanError

        return InvalidPlanError
    if name in {"EventBus", "PlanEvent"}:
        from .events import EventBus, PlanEvent

        return {"EventBus": EventBus, "PlanEvent": PlanEvent}[name]
    raise AttributeError(f"module 'taskplan' has no attribute {name!r}")
