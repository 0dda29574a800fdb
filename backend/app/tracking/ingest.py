from __future__ import annotations

import logging
from dataclasses import dataclass, field
from time import monotonic
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.event_types import EventType
from app.core.metrics import record_track_batch, record_track_event
from app.core.time import ms_to_datetime
from app.crud.tracking_events import create_tracking_event
from app.crud.tracking_sessions import touch_tracking_session, upsert_tracking_session
from app.schemas.track import TrackEventIn


logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    accepted: int = 0
    rejected: int = 0
    failed: int = 0
    session_ids: list[str] = field(default_factory=list)


def _as_int(value: float | None) -> int | None:
    if value is None:
        return None
    return int(round(value))


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def event_values(payload: TrackEventIn) -> dict[str, Any]:
    """Flatten one validated record into tracking_events columns."""
    click = payload.click_data
    scroll = payload.scroll_data
    mouse = payload.mouse_data
    form = payload.form_data
    timing = payload.time_data
    funnel_id, step_name, step_order = payload.funnel_attribution()

    values: dict[str, Any] = {
        "session_id": payload.session_id,
        "event_type": payload.event_type,
        "timestamp": payload.timestamp,
        "url": payload.url,
        "path": payload.path,
        "title": payload.title,
        "device_type": payload.device_type,
        "browser": payload.browser,
        "os": payload.os,
        "click_x": _as_int(_first(click.x if click else None, payload.click_x)),
        "click_y": _as_int(_first(click.y if click else None, payload.click_y)),
        "funnel_id": funnel_id,
        "funnel_step_name": step_name,
        "step_order": step_order,
        "time_on_page": _first(timing.time_on_page if timing else None, payload.legacy_time_on_page),
    }
    if click is not None:
        values.update(
            element_tag=click.element,
            element_id=click.element_id,
            element_class=click.element_class,
            element_text=click.element_text,
            is_cta_click=click.is_cta_click,
            click_count=click.click_count,
        )
    if scroll is not None:
        values.update(
            scroll_depth=_as_int(scroll.depth),
            scroll_percentage=scroll.percentage,
            max_scroll_depth=scroll.max_depth,
        )
    if mouse is not None:
        values.update(
            mouse_x=_as_int(mouse.x),
            mouse_y=_as_int(mouse.y),
            movement_speed=mouse.movement_speed,
        )
    if form is not None:
        values.update(
            form_id=form.form_id,
            form_name=form.form_name,
            field_name=form.field_name,
            field_type=form.field_type,
            form_action=form.action,
        )
    if timing is not None:
        values["engaged"] = timing.engaged
    return values


def session_fields(payload: TrackEventIn) -> dict[str, Any]:
    return {
        "device_type": payload.device_type,
        "browser": payload.browser,
        "os": payload.os,
        "screen_width": payload.screen_width,
        "screen_height": payload.screen_height,
        "viewport_width": payload.viewport_width,
        "viewport_height": payload.viewport_height,
        "language": payload.language,
        "entry_url": payload.url,
        "entry_path": payload.path,
        "entry_title": payload.title,
        "referrer": payload.referrer,
        "utm_source": payload.utm_source,
        "utm_medium": payload.utm_medium,
        "utm_campaign": payload.utm_campaign,
        "utm_term": payload.utm_term,
        "utm_content": payload.utm_content,
    }


def _raw_type(raw: Any) -> str | None:
    if not isinstance(raw, dict):
        return None
    value = raw.get("type") or raw.get("event_type")
    return value if isinstance(value, str) else None


def _sync_session(db: Session, payload: TrackEventIn, request_id: str | None) -> None:
    seen_at = ms_to_datetime(payload.timestamp)
    try:
        with db.begin_nested():
            if payload.event_type == EventType.PAGEVIEW.value:
                upsert_tracking_session(
                    db,
                    session_id=payload.session_id,
                    seen_at=seen_at,
                    fields=session_fields(payload),
                )
            else:
                touch_tracking_session(db, session_id=payload.session_id, seen_at=seen_at)
    except SQLAlchemyError:
        logger.exception(
            "track.session_upsert_failed",
            extra={
                "request_id": request_id,
                "session_id": payload.session_id,
                "event_type": payload.event_type,
            },
        )


def ingest_events(
    db: Session,
    raw_events: list[Any],
    *,
    request_id: str | None = None,
) -> IngestResult:
    """Store one batch. Bad records are logged and skipped, never batch-fatal."""
    start = monotonic()
    result = IngestResult()
    seen_sessions: set[str] = set()

    for index, raw in enumerate(raw_events):
        try:
            payload = TrackEventIn.model_validate(raw)
        except ValidationError as exc:
            result.rejected += 1
            record_track_event(event_type=_raw_type(raw), outcome="rejected")
            logger.warning(
                "track.event_rejected",
                extra={
                    "request_id": request_id,
                    "index": index,
                    "event_type": _raw_type(raw),
                    "errors": exc.error_count(),
                },
            )
            continue

        _sync_session(db, payload, request_id)

        try:
            with db.begin_nested():
                create_tracking_event(db, values=event_values(payload))
        except SQLAlchemyError:
            result.failed += 1
            record_track_event(event_type=payload.event_type, outcome="failed")
            logger.exception(
                "track.event_insert_failed",
                extra={
                    "request_id": request_id,
                    "index": index,
                    "session_id": payload.session_id,
                    "event_type": payload.event_type,
                },
            )
            continue

        result.accepted += 1
        record_track_event(event_type=payload.event_type, outcome="accepted")
        if payload.session_id not in seen_sessions:
            seen_sessions.add(payload.session_id)
            result.session_ids.append(payload.session_id)

    db.commit()
    record_track_batch(size=len(raw_events), duration_ms=(monotonic() - start) * 1000.0)
    logger.info(
        "track.batch_ingested",
        extra={
            "request_id": request_id,
            "accepted": result.accepted,
            "rejected": result.rejected,
            "failed": result.failed,
            "sessions": len(result.session_ids),
        },
    )
    return result
