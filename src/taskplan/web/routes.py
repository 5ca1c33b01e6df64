"""JSON API routes for the taskplan web interface."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .. import __version__
from ..documents import plan_from_document
from ..engine import PlanningEngine
from ..errors import DocumentError, InvalidPlanError
from ..models import PlanningContext, PlanStatus, Step
from ..plan import Plan

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _engine(req: Request) -> PlanningEngine:
    return req.app.state.engine


def _not_found(what: str = "plan") -> JSONResponse:
    return JSONResponse({"error": f"{what} not found"}, status_code=404)


def _invalid(errors: list[str] | tuple[str, ...]) -> JSONResponse:
    return JSONResponse({"error": "invalid plan", "errors": list(errors)}, status_code=422)


def _plan_json(plan: Plan) -> dict[str, Any]:
    data = plan.to_dict()
    data["ready"] = [step.id for step in plan.get_ready_steps()]
    data["effort"] = {
        "time": plan.estimated_effort.time_string,
        "confidence": plan.estimated_effort.confidence_percent,
    }
    return data


def _plan_or_404(plan: Plan | None) -> dict[str, Any] | JSONResponse:
    if plan is None:
        return _not_found()
    return _plan_json(plan)


def _step_result(engine: PlanningEngine, plan_id: str, plan: Plan | None):
    if plan is None:
        if engine.get_plan(plan_id) is None:
            return _not_found()
        return _not_found("step")
    return _plan_json(plan)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class NewStep(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    title: str = ""
    description: str = ""
    type: str = "IMPLEMENT"
    estimated_tokens: int = 1000
    can_parallelize: bool = False
    verification_criteria: str | None = None
    rollback_strategy: str | None = None


class StepBody(NewStep):
    depends_on: list[str] = Field(default_factory=list)


class PlanCreate(BaseModel):
    goal: str
    descriptions: list[str] | None = None
    steps: list[StepBody] | None = None
    dependencies: dict[str, list[str]] = Field(default_factory=dict)
    analysis: dict[str, Any] | None = None
    strategy: dict[str, Any] | None = None
    risks: list[dict[str, Any]] = Field(default_factory=list)


class PlanRefine(BaseModel):
    feedback: str


class StepAdd(BaseModel):
    step: NewStep
    after: str | None = None


class StepComplete(BaseModel):
    output: str | None = None


class StepFail(BaseModel):
    error: str


class GoalBody(BaseModel):
    goal: str


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


@router.get("/api/status")
async def api_status(request: Request):
    engine = _engine(request)
    active = engine.get_active_plan()
    return {
        "version": __version__,
        "plans": len(engine.get_all_plans()),
        "active_plan": active.id if active else None,
    }


@router.get("/api/plans")
async def api_plans(request: Request, status: str | None = None):
    engine = _engine(request)
    if status:
        try:
            wanted = PlanStatus[status.upper()]
        except KeyError:
            return JSONResponse({"error": f"unknown status {status!r}"}, status_code=400)
        plans = engine.get_plans_by_status(wanted)
    else:
        plans = engine.get_all_plans()
    return [_plan_json(plan) for plan in plans]


@router.post("/api/plans")
async def api_create_plan(request: Request, body: PlanCreate):
    engine = _engine(request)
    try:
        if body.steps is None:
            plan = engine.create_simple_plan(body.goal, body.descriptions or [])
        else:
            draft = plan_from_document(
                body.model_dump(exclude={"descriptions"}, exclude_none=True),
                source="request",
                minutes_per_1k_tokens=engine.config.minutes_per_1k_tokens,
                confidence=engine.config.confidence,
            )
            plan = engine.create_detailed_plan(
                draft.goal,
                draft.analysis,
                draft.strategy,
                draft.steps,
                dependencies=draft.dependencies,
                risks=draft.risks,
            )
    except InvalidPlanError as exc:
        return _invalid(exc.errors)
    except DocumentError as exc:
        return _invalid([str(exc)])
    return _plan_json(plan)


@router.get("/api/plans/{plan_id}")
async def api_plan(request: Request, plan_id: str):
    return _plan_or_404(_engine(request).get_plan(plan_id))


@router.get("/api/plans/{plan_id}/ready")
async def api_ready(request: Request, plan_id: str):
    plan = _engine(request).get_plan(plan_id)
    if plan is None:
        return _not_found()
    return [step.to_dict() for step in plan.get_ready_steps()]


@router.get("/api/plans/{plan_id}/layers")
async def api_layers(request: Request, plan_id: str):
    plan = _engine(request).get_plan(plan_id)
    if plan is None:
        return _not_found()
    return [[step.id for step in layer] for layer in plan.get_parallelizable_steps()]


@router.get("/api/plans/{plan_id}/validate")
async def api_validate(request: Request, plan_id: str):
    engine = _engine(request)
    validation = engine.validate_plan(plan_id)
    if validation is None:
        return _not_found()
    return {
        **validation.to_dict(),
        "executable": engine.is_executable(plan_id),
    }


@router.post("/api/plans/{plan_id}/approve")
async def api_approve(request: Request, plan_id: str):
    return _plan_or_404(_engine(request).approve_plan(plan_id))


@router.post("/api/plans/{plan_id}/start")
async def api_start(request: Request, plan_id: str):
    return _plan_or_404(_engine(request).start_plan(plan_id))


@router.post("/api/plans/{plan_id}/cancel")
async def api_cancel(request: Request, plan_id: str):
    return _plan_or_404(_engine(request).cancel_plan(plan_id))


@router.post("/api/plans/{plan_id}/refine")
async def api_refine(request: Request, plan_id: str, body: PlanRefine):
    try:
        plan = await _engine(request).refine_plan(
            plan_id,
            body.feedback,
            PlanningContext.create("web", ""),
        )
    except InvalidPlanError as exc:
        return _invalid(exc.errors)
    return _plan_or_404(plan)


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


@router.post("/api/plans/{plan_id}/steps")
async def api_add_step(request: Request, plan_id: str, body: StepAdd):
    engine = _engine(request)
    try:
        step = Step.from_dict(body.step.model_dump(exclude_none=True))
    except ValueError as exc:
        return _invalid([str(exc)])
    try:
        plan = engine.add_step(plan_id, step, after_step_id=body.after)
    except InvalidPlanError as exc:
        return _invalid(exc.errors)
    return _plan_or_404(plan)


@router.post("/api/plans/{plan_id}/steps/next")
async def api_next_step(request: Request, plan_id: str):
    engine = _engine(request)
    if engine.get_plan(plan_id) is None:
        return _not_found()
    step = engine.start_next_step(plan_id)
    return {"step": step.to_dict() if step else None}


@router.post("/api/plans/{plan_id}/steps/{step_id}/start")
async def api_start_step(request: Request, plan_id: str, step_id: str):
    engine = _engine(request)
    plan = engine.get_plan(plan_id)
    if plan is None:
        return _not_found()
    if plan.get_step(step_id) is None:
        return _not_found("step")
    step = engine.start_step(plan_id, step_id)
    return {"step": step.to_dict() if step else None}


@router.post("/api/plans/{plan_id}/steps/{step_id}/complete")
async def api_complete_step(
    request: Request,
    plan_id: str,
    step_id: str,
    body: StepComplete | None = None,
):
    engine = _engine(request)
    output = body.output if body else None
    plan = engine.complete_step(plan_id, step_id, output)
    return _step_result(engine, plan_id, plan)


@router.post("/api/plans/{plan_id}/steps/{step_id}/fail")
async def api_fail_step(request: Request, plan_id: str, step_id: str, body: StepFail):
    engine = _engine(request)
    plan = engine.fail_step(plan_id, step_id, body.error)
    return _step_result(engine, plan_id, plan)


@router.post("/api/plans/{plan_id}/steps/{step_id}/skip")
async def api_skip_step(request: Request, plan_id: str, step_id: str):
    engine = _engine(request)
    plan = engine.skip_step(plan_id, step_id)
    return _step_result(engine, plan_id, plan)


@router.delete("/api/plans/{plan_id}/steps/{step_id}")
async def api_remove_step(request: Request, plan_id: str, step_id: str):
    engine = _engine(request)
    try:
        plan = engine.remove_step(plan_id, step_id)
    except InvalidPlanError as exc:
        return _invalid(exc.errors)
    return _step_result(engine, plan_id, plan)


# ---------------------------------------------------------------------------
# Analysis / stats
# ---------------------------------------------------------------------------


@router.get("/api/stats")
async def api_stats(request: Request):
    return _engine(request).get_stats().to_dict()


@router.post("/api/analyze")
async def api_analyze(request: Request, body: GoalBody):
    engine = _engine(request)
    analysis = engine.analyze_goal(body.goal)
    strategy = engine.suggest_strategy(analysis)
    return {
        "analysis": {
            **analysis.to_dict(),
            "difficulty_score": analysis.difficulty_score,
            "needs_investigation": analysis.needs_investigation,
        },
        "strategy": strategy.to_dict(),
    }
