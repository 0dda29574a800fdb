from datetime import datetime
from typing import Any

from sqlalchemy import case, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from app.core.time import utcnow
from app.models.tracking_sessions import DEVICE_FIELDS, ENTRY_FIELDS, TrackingSession


def get_tracking_session(db: Session, *, session_id: str) -> TrackingSession | None:
    return (
        db.query(TrackingSession)
        .filter(TrackingSession.session_id == session_id)
        .first()
    )


def _session_values(fields: dict[str, Any]) -> dict[str, Any]:
    allowed = set(DEVICE_FIELDS) | set(ENTRY_FIELDS)
    return {key: value for key, value in fields.items() if key in allowed}


def _upsert_statement(dialect: str, values: dict[str, Any]):
    insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
    stmt = insert_fn(TrackingSession).values(**values)
    excluded = stmt.excluded
    columns = TrackingSession.__table__.c
    set_: dict[str, Any] = {
        "first_seen_at": case(
            (excluded.first_seen_at < columns.first_seen_at, excluded.first_seen_at),
            else_=columns.first_seen_at,
        ),
        "last_activity_at": case(
            (excluded.last_activity_at > columns.last_activity_at, excluded.last_activity_at),
            else_=columns.last_activity_at,
        ),
        "updated_at": excluded.updated_at,
    }
    for name in DEVICE_FIELDS:
        set_[name] = func.coalesce(excluded[name], columns[name])
    for name in ENTRY_FIELDS:
        set_[name] = func.coalesce(columns[name], excluded[name])
    return stmt.on_conflict_do_update(index_elements=["session_id"], set_=set_)


def _merge_session(session: TrackingSession, seen_at: datetime, values: dict[str, Any]) -> None:
    if seen_at < session.first_seen_at:
        session.first_seen_at = seen_at
    if seen_at > session.last_activity_at:
        session.last_activity_at = seen_at
    for name in DEVICE_FIELDS:
        if values.get(name) is not None:
            setattr(session, name, values[name])
    for name in ENTRY_FIELDS:
        if getattr(session, name) is None and values.get(name) is not None:
            setattr(session, name, values[name])


def upsert_tracking_session(
    db: Session,
    *,
    session_id: str,
    seen_at: datetime,
    fields: dict[str, Any],
    commit: bool = False,
) -> None:
    """Create or merge the session row for one pageview.

    Device fields take the most recently ingested non-null value. Entry and
    attribution fields keep the first non-null value recorded. A null never
    overwrites a stored value.
    """
    if not session_id:
        raise ValueError("session_id is required")

    now = utcnow()
    values = _session_values(fields)
    dialect = db.get_bind().dialect.name if db.get_bind() is not None else ""
    if dialect in {"postgresql", "sqlite"}:
        row = {
            "session_id": session_id,
            "first_seen_at": seen_at,
            "last_activity_at": seen_at,
            "created_at": now,
            "updated_at": now,
        }
        for name in DEVICE_FIELDS + ENTRY_FIELDS:
            row[name] = values.get(name)
        db.execute(_upsert_statement(dialect, row))
    else:
        session = get_tracking_session(db, session_id=session_id)
        if session is None:
            session = TrackingSession(
                session_id=session_id,
                first_seen_at=seen_at,
                last_activity_at=seen_at,
                **values,
            )
            db.add(session)
        else:
            _merge_session(session, seen_at, values)
        db.flush()

    if commit:
        db.commit()


def touch_tracking_session(
    db: Session,
    *,
    session_id: str,
    seen_at: datetime,
    commit: bool = False,
) -> int:
    """Move last_activity_at forward for a known session. Never creates one."""
    updated = (
        db.query(TrackingSession)
        .filter(
            TrackingSession.session_id == session_id,
            TrackingSession.last_activity_at < seen_at,
        )
        .update(
            {
                TrackingSession.last_activity_at: seen_at,
                TrackingSession.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )
    if commit:
        db.commit()
    return int(updated or 0)
