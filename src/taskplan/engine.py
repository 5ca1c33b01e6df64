"""Lifecycle engine: creates plans and drives plan/step state transitions.

Every public call runs under one re-entrant lock, commits the new Plan value
to the store, then dispatches its events synchronously before returning.
Unknown plan or step ids yield ``None`` and leave everything untouched.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import timedelta
from typing import Iterable, Mapping, Sequence

from .analyzer import analyze_goal, suggest_strategy
from .config import EngineConfig
from .errors import InvalidPlanError
from .events import (
    EventBus,
    Listener,
    PlanApproved,
    PlanCancelled,
    PlanCompleted,
    PlanCreated,
    PlanEvent,
    PlanFailed,
    PlanRefined,
    PlanStarted,
    StepAdded,
    StepCompleted,
    StepFailed,
    StepRemoved,
    StepSkipped,
    StepStarted,
)
from .models import (
    EffortEstimate,
    PlanExecution,
    PlanningContext,
    PlanningStats,
    PlanRisk,
    PlanStatus,
    PlanStrategy,
    PlanValidation,
    ProblemAnalysis,
    Step,
    StepStatus,
    new_id,
    utc_now,
)
from .plan import Plan
from .planner import LinearPlanner, Planner, plan_from_raw
from .store import PlanStore

logger = logging.getLogger(__name__)

_STARTABLE_PLAN = frozenset({PlanStatus.DRAFT, PlanStatus.APPROVED})
_EXECUTABLE_PLAN = frozenset({PlanStatus.DRAFT, PlanStatus.APPROVED, PlanStatus.IN_PROGRESS})
_SKIPPABLE_STEP = frozenset({StepStatus.PENDING, StepStatus.IN_PROGRESS, StepStatus.BLOCKED})


class PlanningEngine:
    def __init__(
        self,
        planner: Planner | None = None,
        *,
        store: PlanStore | None = None,
        config: EngineConfig | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.planner: Planner = planner or LinearPlanner(
            self.config.default_steps,
            step_tokens=self.config.default_step_tokens,
        )
        self.store = store or PlanStore()
        self.events = events or EventBus()
        self._lock = threading.RLock()
        self._active_plan_id: str | None = None
        self._history: dict[str, PlanExecution] = {}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _effort(self, steps: Iterable[Step]) -> EffortEstimate:
        return EffortEstimate.from_steps(
            steps,
            minutes_per_1k_tokens=self.config.minutes_per_1k_tokens,
            confidence=self.config.confidence,
        )

    def _commit(self, plan: Plan, *events: PlanEvent) -> Plan:
        self.store.put(plan)
        for event in events:
            self.events.emit(event)
        return plan

    def _store_new(self, plan: Plan) -> Plan:
        validation = plan.validate()
        if not validation.valid:
            logger.info("rejected plan for %r: %s", plan.goal, "; ".join(validation.errors))
            raise InvalidPlanError(validation.errors)
        logger.info("created plan %s with %d steps", plan.id, len(plan.steps))
        return self._commit(plan, PlanCreated(plan.id, plan.goal, len(plan.steps)))

    def _clear_active(self, plan_id: str) -> None:
        if self._active_plan_id == plan_id:
            self._active_plan_id = None

    def _finish_history(self, plan_id: str) -> PlanExecution | None:
        execution = self._history.get(plan_id)
        if execution is not None and execution.end_time is None:
            execution = replace(execution, end_time=utc_now())
            self._history[plan_id] = execution
        return execution

    def _lookup_step(self, plan_id: str, step_id: str) -> tuple[Plan, Step] | None:
        plan = self.store.get(plan_id)
        if plan is None:
            logger.debug("unknown plan %s", plan_id)
            return None
        step = plan.get_step(step_id)
        if step is None:
            logger.debug("unknown step %s in plan %s", step_id, plan_id)
            return None
        return plan, step

    def _running(self, plan: Plan, action: str) -> bool:
        if plan.status != PlanStatus.IN_PROGRESS:
            logger.debug("plan %s is %s, not %s steps", plan.id, plan.status.name, action)
            return False
        return True

    def _fresh_draft(self, plan: Plan) -> Plan:
        """Planner output always enters the store as a new, untouched DRAFT."""
        return replace(
            plan,
            id=new_id(),
            created_at=utc_now(),
            status=PlanStatus.DRAFT,
            version=1,
            steps=tuple(
                step
                if step.status == StepStatus.PENDING and step.output is None
                else replace(step, status=StepStatus.PENDING, output=None)
                for step in plan.steps
            ),
        )

    def _settle(self, plan: Plan, *events: PlanEvent) -> Plan:
        """Commit ``plan``, completing it first if it is running and every step is resolved."""
        if plan.status != PlanStatus.IN_PROGRESS or not plan.is_complete:
            return self._commit(plan, *events)

        finished = plan.with_status(PlanStatus.COMPLETED)
        execution = self._finish_history(plan.id)
        self._clear_active(plan.id)
        logger.info("plan %s completed", plan.id)
        return self._commit(
            finished,
            *events,
            PlanCompleted(
                plan.id,
                success=True,
                steps_completed=finished.count_steps(StepStatus.COMPLETED),
                duration_ms=execution.duration_ms if execution else 0,
            ),
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_simple_plan(self, goal: str, descriptions: Sequence[str]) -> Plan:
        plan = Plan.linear(
            goal,
            descriptions,
            step_tokens=self.config.default_step_tokens,
            minutes_per_1k_tokens=self.config.minutes_per_1k_tokens,
            confidence=self.config.confidence,
        )
        with self._lock:
            return self._store_new(plan)

    def create_detailed_plan(
        self,
        goal: str,
        analysis: ProblemAnalysis,
        strategy: PlanStrategy,
        steps: Sequence[Step],
        dependencies: Mapping[str, Sequence[str]] | None = None,
        risks: Sequence[PlanRisk] = (),
    ) -> Plan:
        """Store a plan with an arbitrary graph; raises InvalidPlanError if unsound."""
        plan = Plan(
            goal=goal,
            analysis=analysis,
            strategy=strategy,
            steps=tuple(steps),
            dependencies=dependencies or {},
            estimated_effort=self._effort(steps),
            risks=tuple(risks),
        )
        with self._lock:
            return self._store_new(plan)

    async def create_plan(self, goal: str, context: PlanningContext) -> Plan:
        """Ask the planner for a graph, validate it, then store it."""
        raw = await self.planner.propose(goal, context)
        plan = plan_from_raw(
            raw,
            goal=goal,
            minutes_per_1k_tokens=self.config.minutes_per_1k_tokens,
            confidence=self.config.confidence,
        )
        plan = self._fresh_draft(plan)
        with self._lock:
            return self._store_new(plan)

    async def refine_plan(
        self,
        plan_id: str,
        feedback: str,
        context: PlanningContext | None = None,
    ) -> Plan | None:
        """Re-plan a DRAFT plan with feedback; keeps the id and bumps the version."""
        with self._lock:
            plan = self.store.get(plan_id)
            if plan is None:
                return None
            if plan.status != PlanStatus.DRAFT:
                logger.debug("refusing to refine plan %s in %s", plan_id, plan.status.name)
                return plan

        context = context or PlanningContext.create("", "")
        raw = await self.planner.propose(f"{plan.goal}\n\nFeedback: {feedback}", context)
        proposed = plan_from_raw(
            raw,
            goal=plan.goal,
            minutes_per_1k_tokens=self.config.minutes_per_1k_tokens,
            confidence=self.config.confidence,
        )
        validation = proposed.validate()
        if not validation.valid:
            raise InvalidPlanError(validation.errors)

        with self._lock:
            current = self.store.get(plan_id)
            if current is None:
                return None
            if current.status != PlanStatus.DRAFT or current.version != plan.version:
                logger.debug("plan %s changed while refining; keeping it", plan_id)
                return current
            refined = replace(
                self._fresh_draft(proposed),
                id=plan.id,
                created_at=plan.created_at,
                version=plan.version + 1,
            )
            logger.info("refined plan %s to version %d", plan_id, refined.version)
            return self._commit(refined, PlanRefined(plan_id, refined.version))

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def get_plan(self, plan_id: str) -> Plan | None:
        return self.store.get(plan_id)

    def get_all_plans(self) -> list[Plan]:
        return self.store.list()

    def get_plans_by_status(self, status: PlanStatus) -> list[Plan]:
        return self.store.by_status(status)

    def get_active_plan(self) -> Plan | None:
        with self._lock:
            if self._active_plan_id is None:
                return None
            return self.store.get(self._active_plan_id)

    def get_history(self) -> list[PlanExecution]:
        with self._lock:
            return list(self._history.values())

    # ------------------------------------------------------------------
    # Plan lifecycle
    # ------------------------------------------------------------------

    def approve_plan(self, plan_id: str) -> Plan | None:
        with self._lock:
            plan = self.store.get(plan_id)
            if plan is None:
                return None
            if plan.status != PlanStatus.DRAFT:
                logger.debug("plan %s is %s, not approving", plan_id, plan.status.name)
                return plan
            logger.info("approved plan %s", plan_id)
            return self._commit(plan.with_status(PlanStatus.APPROVED), PlanApproved(plan_id))

    def start_plan(self, plan_id: str) -> Plan | None:
        """Move a DRAFT/APPROVED plan to IN_PROGRESS and make it the active plan."""
        with self._lock:
            plan = self.store.get(plan_id)
            if plan is None:
                return None
            if plan.status not in _STARTABLE_PLAN:
                logger.debug("plan %s is %s, not starting", plan_id, plan.status.name)
                return plan
            started = plan.with_status(PlanStatus.IN_PROGRESS)
            self._active_plan_id = plan_id
            self._history[plan_id] = PlanExecution(plan_id, plan.goal, utc_now())
            logger.info("started plan %s", plan_id)
            return self._commit(started, PlanStarted(plan_id))

    def cancel_plan(self, plan_id: str) -> Plan | None:
        with self._lock:
            plan = self.store.get(plan_id)
            if plan is None:
                return None
            if plan.status.is_terminal:
                logger.debug("plan %s already %s", plan_id, plan.status.name)
                return plan
            self._clear_active(plan_id)
            self._finish_history(plan_id)
            logger.info("cancelled plan %s", plan_id)
            return self._commit(plan.with_status(PlanStatus.CANCELLED), PlanCancelled(plan_id))

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    def _start(self, plan: Plan, step: Step) -> Step:
        started = step.start()
        self._commit(
            plan.with_step(started),
            StepStarted(plan.id, step.id, step.title),
        )
        logger.info("started step %s of plan %s", step.id, plan.id)
        return started

    def start_next_step(self, plan_id: str) -> Step | None:
        """Start the first ready step; None when nothing is ready."""
        with self._lock:
            plan = self.store.get(plan_id)
            if plan is None or not self._running(plan, "starting"):
                return None
            ready = plan.get_ready_steps()
            if not ready:
                return None
            return self._start(plan, ready[0])

    def start_step(self, plan_id: str, step_id: str) -> Step | None:
        """Start a specific step, provided it is ready."""
        with self._lock:
            found = self._lookup_step(plan_id, step_id)
            if found is None:
                return None
            plan, step = found
            if not self._running(plan, "starting"):
                return None
            if all(ready.id != step_id for ready in plan.get_ready_steps()):
                logger.debug("step %s of plan %s is not ready", step_id, plan_id)
                return None
            return self._start(plan, step)

    def complete_step(
        self,
        plan_id: str,
        step_id: str,
        output: str | None = None,
    ) -> Plan | None:
        """Finish a started step; steps that were never started are refused."""
        with self._lock:
            found = self._lookup_step(plan_id, step_id)
            if found is None:
                return None
            plan, step = found
            if not self._running(plan, "completing"):
                return plan
            if step.status != StepStatus.IN_PROGRESS:
                logger.debug(
                    "cannot complete step %s (%s) of plan %s (%s)",
                    step_id,
                    step.status.name,
                    plan_id,
                    plan.status.name,
                )
                return plan
            logger.info("completed step %s of plan %s", step_id, plan_id)
            return self._settle(
                plan.with_step(step.complete(output)),
                StepCompleted(plan_id, step_id, success=True, output=output),
            )

    def fail_step(self, plan_id: str, step_id: str, error: str) -> Plan | None:
        """Fail a step and, fail-fast, the whole plan."""
        with self._lock:
            found = self._lookup_step(plan_id, step_id)
            if found is None:
                return None
            plan, step = found
            if not self._running(plan, "failing"):
                return plan
            if step.status != StepStatus.IN_PROGRESS:
                logger.debug(
                    "step %s of plan %s is %s, not failing",
                    step_id,
                    plan_id,
                    step.status.name,
                )
                return plan
            failed = plan.with_step(step.fail(error)).with_status(PlanStatus.FAILED)
            self._clear_active(plan_id)
            self._finish_history(plan_id)
            logger.info("step %s failed, failing plan %s: %s", step_id, plan_id, error)
            return self._commit(
                failed,
                StepFailed(plan_id, step_id, error),
                PlanFailed(plan_id, error, step_id),
            )

    def skip_step(self, plan_id: str, step_id: str) -> Plan | None:
        """Skip a step that has not finished; it need not be started first."""
        with self._lock:
            found = self._lookup_step(plan_id, step_id)
            if found is None:
                return None
            plan, step = found
            if not self._running(plan, "skipping"):
                return plan
            if step.status not in _SKIPPABLE_STEP:
                logger.debug("cannot skip step %s of plan %s", step_id, plan_id)
                return plan
            logger.info("skipped step %s of plan %s", step_id, plan_id)
            return self._settle(plan.with_step(step.skip()), StepSkipped(plan_id, step_id))

    # ------------------------------------------------------------------
    # Modification
    # ------------------------------------------------------------------

    def _renumbered(self, plan: Plan, steps: Sequence[Step], **changes: object) -> Plan:
        renumbered = tuple(
            step if step.order == index else replace(step, order=index)
            for index, step in enumerate(steps, start=1)
        )
        return replace(
            plan,
            steps=renumbered,
            estimated_effort=self._effort(renumbered),
            version=plan.version + 1,
            **changes,
        )

    def add_step(
        self,
        plan_id: str,
        step: Step,
        after_step_id: str | None = None,
    ) -> Plan | None:
        """Append ``step`` (or insert it after ``after_step_id``); no dependencies added."""
        with self._lock:
            plan = self.store.get(plan_id)
            if plan is None:
                return None
            if plan.status.is_terminal:
                logger.debug("plan %s is %s, not adding steps", plan_id, plan.status.name)
                return plan
            if plan.get_step(step.id) is not None:
                raise InvalidPlanError([f"Duplicate step IDs found: {step.id}"])

            steps = list(plan.steps)
            index = next(
                (i for i, existing in enumerate(steps) if existing.id == after_step_id),
                None,
            )
            if index is None:
                steps.append(step)
            else:
                steps.insert(index + 1, step)
            logger.info("added step %s to plan %s", step.id, plan_id)
            return self._commit(
                self._renumbered(plan, steps),
                StepAdded(plan_id, step.id),
            )

    def remove_step(self, plan_id: str, step_id: str) -> Plan | None:
        """Remove a step along with every dependency edge that mentions it.

        Raises InvalidPlanError, storing nothing, if the edit would leave an
        invalid plan (removing the only step).
        """
        with self._lock:
            found = self._lookup_step(plan_id, step_id)
            if found is None:
                return None
            plan, _ = found
            if plan.status.is_terminal:
                logger.debug("plan %s is %s, not removing steps", plan_id, plan.status.name)
                return plan
            dependencies = {
                key: tuple(dep for dep in deps if dep != step_id)
                for key, deps in plan.dependencies.items()
                if key != step_id
            }
            updated = self._renumbered(
                plan,
                [step for step in plan.steps if step.id != step_id],
                dependencies=dependencies,
            )
            validation = updated.validate()
            if not validation.valid:
                logger.debug("refusing to remove step %s from plan %s", step_id, plan_id)
                raise InvalidPlanError(validation.errors)
            logger.info("removed step %s from plan %s", step_id, plan_id)
            return self._settle(updated, StepRemoved(plan_id, step_id))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_plan(self, plan_id: str) -> PlanValidation | None:
        plan = self.store.get(plan_id)
        if plan is None:
            return None
        return plan.validate()

    def is_executable(self, plan_id: str) -> bool:
        plan = self.store.get(plan_id)
        if plan is None:
            return False
        return plan.status in _EXECUTABLE_PLAN and plan.validate().valid

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_goal(self, goal: str) -> ProblemAnalysis:
        return analyze_goal(goal)

    def suggest_strategy(self, analysis: ProblemAnalysis) -> PlanStrategy:
        return suggest_strategy(analysis)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_stats(self) -> PlanningStats:
        plans = self.store.list()
        counts = {status: 0 for status in PlanStatus}
        for plan in plans:
            counts[plan.status] += 1
        return PlanningStats(
            total_plans=len(plans),
            draft_plans=counts[PlanStatus.DRAFT],
            approved_plans=counts[PlanStatus.APPROVED],
            in_progress_plans=counts[PlanStatus.IN_PROGRESS],
            completed_plans=counts[PlanStatus.COMPLETED],
            failed_plans=counts[PlanStatus.FAILED],
            cancelled_plans=counts[PlanStatus.CANCELLED],
            average_steps=(
                sum(len(plan.steps) for plan in plans) // len(plans) if plans else 0
            ),
            total_steps_completed=sum(
                plan.count_steps(StepStatus.COMPLETED) for plan in plans
            ),
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self.events.add_listener(listener)

    def remove_listener(self, listener: Listener) -> None:
        self.events.remove_listener(listener)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def clear_plans(self) -> None:
        with self._lock:
            self.store.clear()
            self._history.clear()
            self._active_plan_id = None

    def prune_old_plans(self, max_age: timedelta) -> list[str]:
        """Drop terminal plans older than ``max_age``; returns the removed ids."""
        with self._lock:
            removed = self.store.prune(utc_now() - max_age)
            for plan_id in removed:
                self._history.pop(plan_id, None)
            if removed:
                logger.info("pruned %d old plans", len(removed))
            return removed
