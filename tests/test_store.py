from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

from taskplan.models import PlanStatus, utc_now
from taskplan.plan import Plan
from taskplan.store import PlanStore


def _plan(goal: str = "goal", status: PlanStatus = PlanStatus.DRAFT) -> Plan:
    return Plan.linear(goal, ["a"]).with_status(status)


def test_put_get_remove() -> None:
    store = PlanStore()
    plan = store.put(_plan())

    assert plan.id in store
    assert len(store) == 1
    assert store.get(plan.id) is plan
    assert store.remove(plan.id) is plan
    assert store.get(plan.id) is None
    assert store.remove(plan.id) is None


def test_put_replaces_by_id() -> None:
    store = PlanStore()
    plan = store.put(_plan())
    store.put(plan.with_status(PlanStatus.APPROVED))
    assert len(store) == 1
    assert store.get(plan.id).status == PlanStatus.APPROVED


def test_list_keeps_insertion_order_and_filters() -> None:
    store = PlanStore()
    first = store.put(_plan("one"))
    second = store.put(_plan("two", PlanStatus.COMPLETED))
    third = store.put(_plan("three"))

    assert [p.id for p in store.list()] == [first.id, second.id, third.id]
    assert [p.id for p in store.by_status(PlanStatus.DRAFT)] == [first.id, third.id]
    assert store.list(status=PlanStatus.FAILED) == []


def test_clear() -> None:
    store = PlanStore()
    store.put(_plan())
    store.clear()
    assert len(store) == 0


def test_prune_drops_only_old_terminal_plans() -> None:
    store = PlanStore()
    old = utc_now() - timedelta(days=10)
    old_done = store.put(replace(_plan(status=PlanStatus.COMPLETED), created_at=old))
    old_draft = store.put(replace(_plan(), created_at=old))
    new_done = store.put(_plan(status=PlanStatus.FAILED))

    removed = store.prune(utc_now() - timedelta(days=1))

    assert removed == [old_done.id]
    assert old_draft.id in store
    assert new_done.id in store
