from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import FunnelNotFound, FunnelStepsNotFound
from app.core.metrics import record_funnel_stats
from app.core.time import day_bounds_ms, utcnow
from app.crud.funnels import get_funnel, list_funnel_steps, list_funnels
from app.crud.tracking_events import list_funnel_step_rows
from app.funnels.metrics import (
    FunnelStats,
    PathStats,
    StepDefinition,
    compute_path_stats,
    compute_step_stats,
)
from app.funnels.sessionizer import build_session_paths
from app.models.funnels import Funnel, FunnelStep


logger = logging.getLogger(__name__)


@dataclass
class FunnelRefreshResult:
    funnel_id: str
    funnel_name: str
    stats: FunnelStats


def _definitions(steps: list[FunnelStep]) -> list[StepDefinition]:
    return [StepDefinition(id=step.id, name=step.name, step_order=step.step_order) for step in steps]


def load_session_paths(
    db: Session,
    *,
    funnel_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict[str, list[str]]:
    start_ms, end_ms = day_bounds_ms(start_date, end_date)
    limit = settings.FUNNEL_PATHS_MAX_EVENTS
    rows = list_funnel_step_rows(
        db,
        funnel_id=funnel_id,
        start_ms=start_ms,
        end_ms=end_ms,
        limit=limit,
    )
    if len(rows) >= limit:
        logger.warning(
            "funnel.rows_truncated",
            extra={"funnel_id": funnel_id, "limit": limit},
        )
    return build_session_paths(rows)


def _require_funnel(db: Session, funnel_id: str) -> Funnel:
    funnel = get_funnel(db, funnel_id)
    if funnel is None:
        raise FunnelNotFound(funnel_id)
    return funnel


def compute_funnel_paths(
    db: Session,
    *,
    funnel_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
) -> PathStats:
    _require_funnel(db, funnel_id)
    paths = load_session_paths(db, funnel_id=funnel_id, start_date=start_date, end_date=end_date)
    record_funnel_stats(mode="paths")
    return compute_path_stats(paths)


def compute_live_funnel_stats(
    db: Session,
    *,
    funnel_id: str,
    start_date: date | None = None,
    end_date: date | None = None,
) -> FunnelStats:
    """Read-only: recomputed from tracking_events on every call, writes nothing."""
    _require_funnel(db, funnel_id)
    steps = list_funnel_steps(db, funnel_id)
    if not steps:
        raise FunnelStepsNotFound(funnel_id)
    paths = load_session_paths(db, funnel_id=funnel_id, start_date=start_date, end_date=end_date)
    record_funnel_stats(mode="live")
    return compute_step_stats(_definitions(steps), paths)


def refresh_funnel(db: Session, funnel: Funnel) -> FunnelRefreshResult | None:
    steps = list_funnel_steps(db, funnel.id)
    if not steps:
        logger.info("funnel.refresh_skipped", extra={"funnel_id": funnel.id, "reason": "no_steps"})
        return None

    paths = load_session_paths(db, funnel_id=funnel.id)
    stats = compute_step_stats(_definitions(steps), paths)
    by_id = {step.id: step for step in steps}
    for step_stats in stats.steps:
        step = by_id[step_stats.step_id]
        step.visitors = step_stats.visitors
        step.dropoff = step_stats.dropoff
    funnel.conversion_rate = stats.conversion_rate
    funnel.stats_refreshed_at = utcnow()
    db.commit()
    record_funnel_stats(mode="persisted")
    logger.info(
        "funnel.stats_refreshed",
        extra={
            "funnel_id": funnel.id,
            "steps": len(stats.steps),
            "conversion_rate": stats.conversion_rate,
        },
    )
    return FunnelRefreshResult(funnel_id=funnel.id, funnel_name=funnel.name, stats=stats)


def refresh_funnel_stats(db: Session, *, funnel_id: str | None = None) -> list[FunnelRefreshResult]:
    """Write visitors/dropoff onto each step and conversion_rate onto the funnel.

    These columns are a cache with this function as the only writer; nothing
    invalidates them automatically. Without ``funnel_id`` every funnel that has
    steps is refreshed. A named funnel without steps raises FunnelStepsNotFound.
    """
    funnels = list_funnels(db, funnel_id=funnel_id)
    if funnel_id is not None and not funnels:
        raise FunnelNotFound(funnel_id)
    results: list[FunnelRefreshResult] = []
    for funnel in funnels:
        result = refresh_funnel(db, funnel)
        if result is not None:
            results.append(result)
        elif funnel_id is not None:
            raise FunnelStepsNotFound(funnel_id)
    return results
