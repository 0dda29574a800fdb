from __future__ import annotations

import json
from datetime import date

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.core.errors import FunnelAlreadyExists, FunnelNotFound, invalid_parameter, missing_parameter
from app.crud.funnels import create_funnel, get_funnel, list_funnels
from app.funnels.stats import (
    FunnelRefreshResult,
    compute_funnel_paths,
    compute_live_funnel_stats,
    refresh_funnel_stats,
)
from app.schemas.funnels import (
    FunnelCreate,
    FunnelPathsResponse,
    FunnelRead,
    FunnelStatsUpdateRequest,
    FunnelStatsUpdateResponse,
    FunnelUpdateResult,
    LiveStatsResponse,
    LiveStepStats,
    StepCount,
    Transition,
    UpdateStepStats,
)


router = APIRouter(tags=["funnels"])

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _require_funnel_id(value: str | None) -> str:
    if value is None or not value.strip():
        raise missing_parameter("funnelId")
    return value.strip()


def _parse_date(name: str, value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise invalid_parameter(name, "Expected YYYY-MM-DD")


def _date_range(start: str | None, end: str | None) -> tuple[date | None, date | None]:
    start_date = _parse_date("startDate", start)
    end_date = _parse_date("endDate", end)
    if start_date and end_date and start_date > end_date:
        raise invalid_parameter("date range", "startDate must not be after endDate")
    return start_date, end_date


def _no_store(response: Response) -> None:
    for key, value in NO_STORE_HEADERS.items():
        response.headers[key] = value


@router.get(
    "/funnel-paths",
    response_model=FunnelPathsResponse,
    response_model_exclude_none=True,
)
def get_funnel_paths(
    response: Response,
    funnel_id: str | None = Query(None, alias="funnelId"),
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
):
    funnel_id = _require_funnel_id(funnel_id)
    start, end = _date_range(start_date, end_date)
    stats = compute_funnel_paths(db, funnel_id=funnel_id, start_date=start, end_date=end)
    _no_store(response)
    return FunnelPathsResponse(
        transitions=[
            Transition(
                from_step=item.from_step,
                to=item.to_step,
                count=item.count,
                percentage=item.percentage,
            )
            for item in stats.transitions
        ],
        total_sessions=stats.total_sessions,
        step_visits=stats.step_visits,
        entry_points=[StepCount(step=step, count=count) for step, count in stats.entry_points],
        exit_points=[StepCount(step=step, count=count) for step, count in stats.exit_points],
        message=None if stats.total_sessions else "No tracking data found for this funnel",
    )


@router.get("/funnel-stats/live", response_model=LiveStatsResponse)
def get_live_funnel_stats(
    response: Response,
    funnel_id: str | None = Query(None, alias="funnelId"),
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
):
    funnel_id = _require_funnel_id(funnel_id)
    start, end = _date_range(start_date, end_date)
    stats = compute_live_funnel_stats(db, funnel_id=funnel_id, start_date=start, end_date=end)
    _no_store(response)
    return LiveStatsResponse(
        live_stats=[
            LiveStepStats(
                step_id=step.step_id,
                step_name=step.step_name,
                step_order=step.step_order,
                visitors=step.visitors,
                dropoff=step.dropoff,
            )
            for step in stats.steps
        ],
        conversion_rate=stats.conversion_rate,
        total_visitors=stats.total_visitors,
        conversions=stats.conversions,
    )


def _update_result(result: FunnelRefreshResult) -> FunnelUpdateResult:
    return FunnelUpdateResult(
        funnel_id=result.funnel_id,
        funnel_name=result.funnel_name,
        conversion_rate=result.stats.conversion_rate,
        steps=[
            UpdateStepStats(
                step_id=step.step_id,
                step_name=step.step_name,
                visitors=step.visitors,
                dropoff=step.dropoff,
            )
            for step in result.stats.steps
        ],
    )


def _run_update(db: Session, funnel_id: str | None) -> FunnelStatsUpdateResponse:
    if funnel_id is None and not list_funnels(db):
        return FunnelStatsUpdateResponse(success=False, message="No funnels found")
    results = refresh_funnel_stats(db, funnel_id=funnel_id)
    return FunnelStatsUpdateResponse(
        success=True,
        message=f"Updated stats for {len(results)} funnel(s)",
        results=[_update_result(result) for result in results],
    )


@router.post("/funnel-stats/update", response_model=FunnelStatsUpdateResponse)
async def update_funnel_stats(request: Request, db: Session = Depends(get_db)):
    body = await request.body()
    try:
        data = json.loads(body) if body else {}
    except (ValueError, UnicodeDecodeError):
        data = {}
    try:
        payload = FunnelStatsUpdateRequest.model_validate(data if isinstance(data, dict) else {})
    except ValidationError:
        raise invalid_parameter("funnelId")
    funnel_id = payload.funnel_id.strip() if payload.funnel_id else None
    return _run_update(db, funnel_id or None)


@router.get("/funnel-stats/update", response_model=FunnelStatsUpdateResponse)
def trigger_funnel_stats_update(
    funnel_id: str | None = Query(None, alias="funnelId"),
    db: Session = Depends(get_db),
):
    funnel_id = funnel_id.strip() if funnel_id else None
    return _run_update(db, funnel_id or None)


@router.post("/funnels", response_model=FunnelRead, status_code=status.HTTP_201_CREATED)
def create_funnel_definition(payload: FunnelCreate, db: Session = Depends(get_db)):
    if payload.id and get_funnel(db, payload.id) is not None:
        raise FunnelAlreadyExists(payload.id)
    try:
        return create_funnel(
            db,
            name=payload.name,
            description=payload.description,
            funnel_id=payload.id,
            steps=[step.model_dump() for step in payload.steps],
        )
    except IntegrityError:
        db.rollback()
        raise FunnelAlreadyExists(payload.id or "")


@router.get("/funnels", response_model=list[FunnelRead])
def list_funnel_definitions(db: Session = Depends(get_db)):
    return list_funnels(db)


@router.get("/funnels/{funnel_id}", response_model=FunnelRead)
def get_funnel_definition(funnel_id: str, db: Session = Depends(get_db)):
    funnel = get_funnel(db, funnel_id)
    if funnel is None:
        raise FunnelNotFound(funnel_id)
    return funnel
