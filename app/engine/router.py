"""Engine HTTP router: occurrences, evaluation, verifications, frequency, offline queue."""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import verify_api_key
from app.config import settings
from app.db import get_session
from app.engine import evaluator, frequency, schedule
from app.engine.errors import StoreUnavailableError, ValidationError
from app.engine.models import (
    EvaluationRequest,
    EvaluationResult,
    FlushSummary,
    FlushTransition,
    FrequencyResult,
    GoalRef,
    OccurrencePreview,
    OccurrencesResponse,
    QueuedAttempt,
    ReachabilityResponse,
    ReachabilityUpdate,
    VerificationRecord,
    VerificationSubmission,
)
from app.engine.policies import get_policy, list_policies
from app.engine.queue import FlushReport
from app.engine.reachability import FlushCoordinator, ReachabilityState
from app.engine.store import SqlVerificationStore, VerificationStore
from app.engine.timezones import zone
from app.engine.verification import VerificationService, build_payload

router = APIRouter(prefix="/engine", tags=["engine"])


async def get_store(session: AsyncSession = Depends(get_session)) -> VerificationStore:
    return SqlVerificationStore(session)


def get_coordinator(request: Request) -> FlushCoordinator:
    return request.app.state.flush_coordinator


def _parse_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Invalid date for '{name}': {value}")


def _unprocessable(exc: ValidationError) -> HTTPException:
    detail: dict[str, Any] = {"error": "validation_error", "message": str(exc)}
    if exc.field:
        detail["field"] = exc.field
    return HTTPException(status_code=422, detail=detail)


def _unavailable(exc: StoreUnavailableError) -> HTTPException:
    return HTTPException(status_code=503, detail={"error": "store_unavailable", "message": str(exc)})


# ---------------------------------------------------------------------------
# /engine/occurrences
# ---------------------------------------------------------------------------


@router.post("/occurrences", response_model=OccurrencesResponse)
async def post_occurrences(
    payload: dict[str, Any] = Body(...),
    _: str = Depends(verify_api_key),
) -> OccurrencesResponse:
    try:
        occurrences = schedule.build_occurrences(payload)
    except ValidationError as exc:
        raise _unprocessable(exc)
    return OccurrencesResponse(occurrences=occurrences, validation=schedule.validate_occurrences(occurrences))


@router.post("/occurrences/preview", response_model=list[OccurrencePreview])
async def post_occurrences_preview(
    payload: dict[str, Any] = Body(...),
    _: str = Depends(verify_api_key),
) -> list[OccurrencePreview]:
    try:
        return schedule.preview_occurrences(payload)
    except ValidationError as exc:
        raise _unprocessable(exc)


# ---------------------------------------------------------------------------
# /engine/evaluate, /engine/policies
# ---------------------------------------------------------------------------


@router.post("/evaluate", response_model=EvaluationResult)
async def post_evaluate(
    request: EvaluationRequest,
    _: str = Depends(verify_api_key),
) -> EvaluationResult:
    try:
        return evaluator.evaluate(request.goal_type, request.signals, now=request.now)
    except ValidationError as exc:
        raise _unprocessable(exc)


@router.get("/policies")
async def get_policies(
    _: str = Depends(verify_api_key),
) -> list[dict]:
    return [
        {
            "goalType": p.goal_type,
            "label": p.label,
            "required": list(p.required),
            "paths": [list(path) for path in p.paths],
        }
        for p in list_policies()
    ]


# ---------------------------------------------------------------------------
# /engine/verifications, /engine/goals/{goal_id}/frequency
# ---------------------------------------------------------------------------


@router.post("/verifications", response_model=VerificationRecord, status_code=201)
async def post_verification(
    submission: VerificationSubmission,
    store: VerificationStore = Depends(get_store),
    _: str = Depends(verify_api_key),
) -> VerificationRecord:
    service = VerificationService(store)
    try:
        return await service.submit(submission.goal, submission.signals, created_at=submission.created_at)
    except ValidationError as exc:
        raise _unprocessable(exc)
    except StoreUnavailableError as exc:
        raise _unavailable(exc)


@router.get("/goals/{goal_id}/frequency", response_model=FrequencyResult)
async def get_goal_frequency(
    goal_id: str,
    store: VerificationStore = Depends(get_store),
    _: str = Depends(verify_api_key),
    target: int = Query(..., ge=0, description="Passes required per complete week"),
    from_date: str = Query(..., alias="from", description="Period start (YYYY-MM-DD)"),
    to_date: str = Query(..., alias="to", description="Period end, inclusive (YYYY-MM-DD)"),
    tz: str | None = Query(default=None, description="Goal timezone (e.g. Asia/Seoul)"),
) -> FrequencyResult:
    start = _parse_date(from_date, "from")
    end = _parse_date(to_date, "to")
    tz_name = tz or settings.default_tz
    try:
        zone(tz_name)
        goal = GoalRef(id=goal_id, type="frequency", timezone=tz_name)
        return await frequency.aggregate_goal_frequency(store, goal, target, start, end)
    except ValidationError as exc:
        raise _unprocessable(exc)
    except StoreUnavailableError as exc:
        raise _unavailable(exc)


# ---------------------------------------------------------------------------
# /engine/queue, /engine/reachability
# ---------------------------------------------------------------------------


def _summary(report: FlushReport) -> FlushSummary:
    return FlushSummary(
        total=report.total,
        succeeded=report.succeeded,
        retrying=report.retrying,
        dropped=report.dropped,
        remaining=report.remaining,
        skipped=report.skipped,
        transitions=[
            FlushTransition(attempt_id=t.attempt_id, state=t.state.value, retry_count=t.retry_count)
            for t in report.transitions
        ],
    )


@router.post("/queue", response_model=QueuedAttempt, status_code=202)
async def post_queued_attempt(
    submission: VerificationSubmission,
    coordinator: FlushCoordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> QueuedAttempt:
    if get_policy(submission.goal.type) is None:
        raise _unprocessable(ValidationError(f"Unknown goal type: {submission.goal.type}", field="goal.type"))
    payload = build_payload(submission.goal, submission.signals, submission.created_at)
    try:
        return await coordinator.queue.enqueue(payload)
    except StoreUnavailableError as exc:
        raise _unavailable(exc)


@router.get("/queue", response_model=list[QueuedAttempt])
async def get_queued_attempts(
    coordinator: FlushCoordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> list[QueuedAttempt]:
    try:
        return await coordinator.queue.peek_all()
    except StoreUnavailableError as exc:
        raise _unavailable(exc)


@router.post("/queue/flush", response_model=FlushSummary)
async def post_queue_flush(
    coordinator: FlushCoordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> FlushSummary:
    report = await coordinator.flush_now()
    if report is None:
        raise HTTPException(
            status_code=503,
            detail={"error": "store_unavailable", "message": "Offline queue storage is unavailable"},
        )
    return _summary(report)


@router.post("/reachability", response_model=ReachabilityResponse)
async def post_reachability(
    update: ReachabilityUpdate,
    coordinator: FlushCoordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> ReachabilityResponse:
    """Report a connectivity change; an offline -> online edge flushes the queue."""
    state = ReachabilityState(
        is_connected=update.is_connected,
        is_internet_reachable=update.is_internet_reachable,
        type=update.type,
    )
    report = await coordinator.on_reachability_change(state)
    return ReachabilityResponse(
        online=state.online,
        flushed=report is not None,
        report=_summary(report) if report is not None else None,
    )
