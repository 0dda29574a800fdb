from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.db import get_db
from app.core.errors import invalid_batch, payload_too_large
from app.schemas.track import TrackResponse
from app.tracking.ingest import ingest_events


router = APIRouter(tags=["tracking"])


def _enforce_body_limit(request: Request) -> None:
    content_length = request.headers.get("Content-Length")
    if content_length:
        try:
            declared = int(content_length)
        except ValueError:
            return
        if declared > settings.TRACK_MAX_BODY_BYTES:
            raise payload_too_large()


def _parse_events(body: bytes) -> list:
    # Beacon deliveries arrive as text/plain, so the body is decoded by hand
    # instead of relying on the request content type.
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise invalid_batch("Invalid JSON body")
    events = data.get("events") if isinstance(data, dict) else None
    if not isinstance(events, list) or not events:
        raise invalid_batch("Invalid events data")
    if len(events) > settings.TRACK_MAX_BATCH_EVENTS:
        raise invalid_batch(f"Too many events in one batch (max {settings.TRACK_MAX_BATCH_EVENTS})")
    return events


@router.post("/track", response_model=TrackResponse)
async def track_events(request: Request, db: Session = Depends(get_db)):
    _enforce_body_limit(request)
    body = await request.body()
    if len(body) > settings.TRACK_MAX_BODY_BYTES:
        raise payload_too_large()
    events = _parse_events(body)

    result = ingest_events(
        db,
        events,
        request_id=getattr(request.state, "request_id", None),
    )
    return TrackResponse(
        success=True,
        events_processed=result.accepted,
        sessions=result.session_ids,
    )
