from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.core.errors import invalid_parameter, missing_parameter
from app.core.event_types import normalize_path
from app.crud.tracking_events import HEATMAP_EVENT_TYPES, aggregate_heatmap_points
from app.schemas.funnels import HeatmapPoint, HeatmapResponse


router = APIRouter(tags=["heatmap"])


@router.get("/heatmap-data", response_model=HeatmapResponse)
def get_heatmap_data(
    path: str | None = Query(None),
    kind: str = Query("click", alias="type"),
    db: Session = Depends(get_db),
):
    if not path or not path.strip():
        raise missing_parameter("path")
    kind = kind.strip().lower()
    if kind not in HEATMAP_EVENT_TYPES:
        raise invalid_parameter("type", f"Expected one of: {', '.join(sorted(HEATMAP_EVENT_TYPES))}")

    try:
        path = normalize_path(path.strip())
    except ValueError as exc:
        raise invalid_parameter("path", "Expected a URL path") from exc

    rows = aggregate_heatmap_points(db, path=path, kind=kind)
    points = [HeatmapPoint(x=x, y=y, value=count) for x, y, count in rows]
    return HeatmapResponse(
        type=kind,
        points=points,
        max=max((point.value for point in points), default=0),
    )
