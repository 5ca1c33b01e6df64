"""In-memory plan store."""

from __future__ import annotations

import threading
from datetime import datetime

from .models import PlanStatus
from .plan import Plan


class PlanStore:
    """Keyed collection of plans; holds the canonical copy of each one.

    Plans are immutable, so readers get the stored value itself and writers
    replace the entry wholesale.
    """

    def __init__(self) -> None:
        self._plans: dict[str, Plan] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._plans)

    def __contains__(self, plan_id: object) -> bool:
        with self._lock:
            return plan_id in self._plans

    def get(self, plan_id: str) -> Plan | None:
        with self._lock:
            return self._plans.get(plan_id)

    def put(self, plan: Plan) -> Plan:
        with self._lock:
            self._plans[plan.id] = plan
        return plan

    def remove(self, plan_id: str) -> Plan | None:
        with self._lock:
            return self._plans.pop(plan_id, None)

    def list(self, *, status: PlanStatus | None = None) -> list[Plan]:
        with self._lock:
            plans = list(self._plans.values())
        if status is not None:
            plans = [plan for plan in plans if plan.status == status]
        return plans

    def by_status(self, status: PlanStatus) -> list[Plan]:
        return self.list(status=status)

    def clear(self) -> None:
        with self._lock:
            self._plans.clear()

    def prune(self, older_than: datetime) -> list[str]:
        """Drop terminal plans created before ``older_than``. Returns removed ids."""
        with self._lock:
            removed = [
                plan_id
                for plan_id, plan in self._plans.items()
                if plan.status.is_terminal and plan.created_at < older_than
            ]
            for plan_id in removed:
                del self._plans[plan_id]
        return removed
