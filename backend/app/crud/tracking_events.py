from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.tracking_events import TrackingEvent


HEATMAP_EVENT_TYPES = {
    "click": ("click", "cta_click", "rage_click", "dead_click"),
    "movement": ("mousemove",),
}


def create_tracking_event(
    db: Session,
    *,
    values: dict[str, Any],
    commit: bool = False,
) -> TrackingEvent:
    if not values.get("session_id"):
        raise ValueError("session_id is required")
    if not values.get("event_type"):
        raise ValueError("event_type is required")
    if values.get("timestamp") is None:
        raise ValueError("timestamp is required")
    event = TrackingEvent(**values)
    db.add(event)
    db.flush()
    if commit:
        db.commit()
        db.refresh(event)
    return event


def list_funnel_step_rows(
    db: Session,
    *,
    funnel_id: str,
    start_ms: int | None = None,
    end_ms: int | None = None,
    limit: int | None = None,
) -> list[tuple[str, str, int]]:
    """(session_id, step_name, timestamp) for every funnel_step event of a funnel."""
    query = (
        db.query(
            TrackingEvent.session_id,
            TrackingEvent.funnel_step_name,
            TrackingEvent.timestamp,
        )
        .filter(
            TrackingEvent.funnel_id == funnel_id,
            TrackingEvent.event_type == "funnel_step",
            TrackingEvent.funnel_step_name.isnot(None),
        )
    )
    if start_ms is not None:
        query = query.filter(TrackingEvent.timestamp >= start_ms)
    if end_ms is not None:
        query = query.filter(TrackingEvent.timestamp <= end_ms)
    query = query.order_by(
        TrackingEvent.session_id.asc(),
        TrackingEvent.timestamp.asc(),
        TrackingEvent.id.asc(),
    )
    if limit is not None:
        query = query.limit(limit)
    return [(row[0], row[1], int(row[2])) for row in query.all()]


def aggregate_heatmap_points(
    db: Session,
    *,
    path: str,
    kind: str,
    limit: int = 5000,
) -> list[tuple[int, int, int]]:
    """(x, y, count) grouped on stored pixel coordinates for one page path."""
    event_types = HEATMAP_EVENT_TYPES.get(kind)
    if event_types is None:
        raise ValueError(f"Unsupported heatmap type: {kind!r}")
    if kind == "click":
        x_col, y_col = TrackingEvent.click_x, TrackingEvent.click_y
    else:
        x_col, y_col = TrackingEvent.mouse_x, TrackingEvent.mouse_y
    count = func.count(TrackingEvent.id)
    rows = (
        db.query(x_col, y_col, count)
        .filter(
            TrackingEvent.path == path,
            TrackingEvent.event_type.in_(event_types),
            x_col.isnot(None),
            y_col.isnot(None),
        )
        .group_by(x_col, y_col)
        .order_by(count.desc())
        .limit(limit)
        .all()
    )
    return [(int(row[0]), int(row[1]), int(row[2])) for row in rows]
