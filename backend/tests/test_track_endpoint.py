import json
import os
from uuid import uuid4

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

from app.main import app
import app.api.track as track_module
import app.core.db as db_module
import app.tracking.ingest as ingest_module
from app.models.tracking_events import TrackingEvent
from app.models.tracking_sessions import TrackingSession
from tests.factories import click_event, funnel_step_event, pageview_event


client = TestClient(app)

BASE_TS = 1_700_000_000_000


def _setup_db(db_url: str):
    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False},
        future=True,
    )
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db_module.engine = engine
    db_module.SessionLocal = SessionLocal
    db_module.Base.metadata.create_all(bind=engine)
    return SessionLocal


def test_track_accepts_batch_and_returns_sessions():
    SessionLocal = _setup_db(f"sqlite:///./track_batch_{uuid4().hex}.db")

    resp = client.post(
        "/track",
        json={
            "events": [
                pageview_event("sess_b", BASE_TS),
                pageview_event("sess_a", BASE_TS + 10),
                click_event("sess_b", BASE_TS + 20, x=10, y=20),
            ]
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body == {"success": True, "eventsProcessed": 3, "sessions": ["sess_b", "sess_a"]}

    with SessionLocal() as db:
        assert db.query(TrackingEvent).count() == 3
        assert db.query(TrackingSession).count() == 2


def test_track_rejects_missing_events():
    _setup_db(f"sqlite:///./track_missing_{uuid4().hex}.db")

    resp = client.post("/track", json={"foo": []})
    assert resp.status_code == 400
    assert resp.headers.get("X-Error-Code") == "invalid_batch"
    assert resp.json()["error"] == "Invalid events data"


def test_track_rejects_empty_events():
    SessionLocal = _setup_db(f"sqlite:///./track_empty_{uuid4().hex}.db")

    resp = client.post("/track", json={"events": []})
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_batch"
    with SessionLocal() as db:
        assert db.query(TrackingEvent).count() == 0


def test_track_rejects_invalid_json():
    _setup_db(f"sqlite:///./track_badjson_{uuid4().hex}.db")

    resp = client.post(
        "/track",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_batch"


def test_track_rejects_batches_over_limit(monkeypatch):
    SessionLocal = _setup_db(f"sqlite:///./track_limit_{uuid4().hex}.db")
    monkeypatch.setattr(track_module.settings, "TRACK_MAX_BATCH_EVENTS", 2)

    resp = client.post(
        "/track",
        json={"events": [pageview_event("s1", BASE_TS + i) for i in range(3)]},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_batch"
    with SessionLocal() as db:
        assert db.query(TrackingEvent).count() == 0


def test_track_rejects_oversized_body(monkeypatch):
    _setup_db(f"sqlite:///./track_large_{uuid4().hex}.db")
    monkeypatch.setattr(track_module.settings, "TRACK_MAX_BODY_BYTES", 64)

    resp = client.post(
        "/track",
        json={"events": [pageview_event("s1", BASE_TS, title="x" * 200)]},
    )
    assert resp.status_code == 413
    assert resp.headers.get("X-Error-Code") == "payload_too_large"


def test_track_skips_invalid_records():
    SessionLocal = _setup_db(f"sqlite:///./track_invalid_{uuid4().hex}.db")

    resp = client.post(
        "/track",
        json={
            "events": [
                pageview_event("s1", BASE_TS),
                {"type": "click", "timestamp": BASE_TS},
                {"sessionId": "s1", "type": "teleport", "timestamp": BASE_TS},
                {"sessionId": "s1", "type": "click"},
                "not-an-object",
                click_event("s1", BASE_TS + 5, x=1, y=2),
            ]
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["eventsProcessed"] == 2
    assert body["sessions"] == ["s1"]
    with SessionLocal() as db:
        assert db.query(TrackingEvent).count() == 2


def test_track_rejects_records_with_unusable_url_or_timestamp():
    SessionLocal = _setup_db(f"sqlite:///./track_unusable_{uuid4().hex}.db")

    events = [
        click_event("s1", BASE_TS, x=1, y=2),
        pageview_event("s1", BASE_TS + 1, url="http://[bad"),
        pageview_event("s1", 10**17),
        pageview_event("s1", "1e400"),
        pageview_event("s1", float("inf")),
        pageview_event("s2", BASE_TS + 2),
    ]
    resp = client.post(
        "/track",
        content=json.dumps({"events": events}),
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["eventsProcessed"] == 2
    assert body["sessions"] == ["s1", "s2"]
    with SessionLocal() as db:
        assert db.query(TrackingEvent).count() == 2
        assert db.query(TrackingSession).count() == 1


def test_track_maps_typed_payloads():
    SessionLocal = _setup_db(f"sqlite:///./track_payloads_{uuid4().hex}.db")

    events = [
        {
            "sessionId": "s1",
            "type": "rage_click",
            "timestamp": BASE_TS,
            "url": "https://shop.example.com/pricing?plan=pro",
            "title": "Pricing",
            "clickData": {
                "x": 120.6,
                "y": 40,
                "element": "BUTTON",
                "elementId": "buy",
                "elementClass": "btn cta",
                "elementText": "Buy now",
                "isCtaClick": True,
                "clickCount": 3,
            },
            "funnelData": {"funnelId": "f1", "stepName": "Pricing", "stepOrder": 1},
        },
        {
            "sessionId": "s1",
            "type": "scroll",
            "timestamp": BASE_TS + 1,
            "url": "https://shop.example.com/pricing",
            "scrollData": {"depth": 900, "percentage": 45, "maxDepth": 45},
        },
        {
            "sessionId": "s1",
            "type": "mousemove",
            "timestamp": BASE_TS + 2,
            "url": "https://shop.example.com/pricing",
            "mouseData": {"x": 10, "y": 11, "movementSpeed": 250},
        },
        {
            "sessionId": "s1",
            "type": "form_interaction",
            "timestamp": BASE_TS + 3,
            "url": "https://shop.example.com/pricing",
            "formData": {
                "formId": "signup",
                "formName": "signup-form",
                "fieldName": "email",
                "fieldType": "email",
                "action": "focus",
            },
        },
        {
            "sessionId": "s1",
            "type": "time_on_page",
            "timestamp": BASE_TS + 4,
            "url": "https://shop.example.com/pricing",
            "timeData": {"timeOnPage": 30, "engaged": True},
        },
    ]
    resp = client.post("/track", json={"events": events})
    assert resp.status_code == 200
    assert resp.json()["eventsProcessed"] == 5

    with SessionLocal() as db:
        rows = {row.event_type: row for row in db.query(TrackingEvent).all()}

    rage = rows["rage_click"]
    assert rage.path == "/pricing"
    assert rage.title == "Pricing"
    assert (rage.click_x, rage.click_y) == (121, 40)
    assert rage.element_tag == "BUTTON"
    assert rage.element_id == "buy"
    assert rage.is_cta_click is True
    assert rage.click_count == 3
    assert (rage.funnel_id, rage.funnel_step_name, rage.step_order) == ("f1", "Pricing", 1)

    scroll = rows["scroll"]
    assert scroll.scroll_depth == 900
    assert scroll.scroll_percentage == 45
    assert scroll.max_scroll_depth == 45

    move = rows["mousemove"]
    assert (move.mouse_x, move.mouse_y, move.movement_speed) == (10, 11, 250)

    form = rows["form_interaction"]
    assert (form.form_id, form.form_name, form.field_name, form.field_type, form.form_action) == (
        "signup",
        "signup-form",
        "email",
        "email",
        "focus",
    )

    timing = rows["time_on_page"]
    assert timing.time_on_page == 30
    assert timing.engaged is True


def test_track_accepts_aliases_and_flat_fields():
    SessionLocal = _setup_db(f"sqlite:///./track_aliases_{uuid4().hex}.db")

    resp = client.post(
        "/track",
        json={
            "events": [
                {
                    "session_id": "legacy-1",
                    "event_type": "PAGE_VIEW",
                    "timestamp": "2023-11-14T22:13:20Z",
                    "page_url": "https://shop.example.com/landing",
                },
                {
                    "session_id": "legacy-1",
                    "event_type": "funnel_step",
                    "timestamp": BASE_TS + 1000,
                    "page_url": "https://shop.example.com/landing",
                    "funnel_id": "f-legacy",
                    "funnel_step_name": "Landing",
                    "step_number": 2,
                    "click_x": 5,
                    "click_y": 6,
                    "time_on_page": 12,
                },
            ]
        },
    )
    assert resp.status_code == 200
    assert resp.json()["eventsProcessed"] == 2

    with SessionLocal() as db:
        pageview = db.query(TrackingEvent).filter(TrackingEvent.event_type == "pageview").one()
        step = db.query(TrackingEvent).filter(TrackingEvent.event_type == "funnel_step").one()

    assert pageview.timestamp == BASE_TS
    assert pageview.path == "/landing"
    assert (step.funnel_id, step.funnel_step_name, step.step_order) == ("f-legacy", "Landing", 2)
    assert (step.click_x, step.click_y) == (5, 6)
    assert step.time_on_page == 12


def test_track_clamps_free_text():
    SessionLocal = _setup_db(f"sqlite:///./track_clamp_{uuid4().hex}.db")

    long_url = "https://shop.example.com/?q=" + "a" * 3000
    event = click_event("s1", BASE_TS, x=1, y=1)
    event["url"] = long_url
    event["clickData"]["elementText"] = "t" * 500
    resp = client.post("/track", json={"events": [event]})
    assert resp.status_code == 200

    with SessionLocal() as db:
        row = db.query(TrackingEvent).one()
    assert len(row.element_text) == 200
    assert len(row.url) == 2048


def test_track_clamps_labels_to_column_widths():
    SessionLocal = _setup_db(f"sqlite:///./track_clamp_columns_{uuid4().hex}.db")

    pageview = pageview_event("s1", BASE_TS, browser="b" * 100, os="o" * 100, language="l" * 100)
    step = funnel_step_event("s1", "f" * 100, "Landing", BASE_TS + 1)
    click = click_event("s1", BASE_TS + 2, x=1, y=1)
    click["clickData"]["element"] = "E" * 100
    resp = client.post("/track", json={"events": [pageview, step, click]})
    assert resp.status_code == 200
    assert resp.json()["eventsProcessed"] == 3

    with SessionLocal() as db:
        session = db.query(TrackingSession).one()
        rows = db.query(TrackingEvent).order_by(TrackingEvent.timestamp).all()
    assert (len(session.browser), len(session.os), len(session.language)) == (32, 32, 32)
    assert (len(rows[0].browser), len(rows[0].os)) == (32, 32)
    assert rows[1].funnel_id == "f" * 64
    assert len(rows[2].element_tag) == 64


def test_track_continues_after_insert_failure(monkeypatch):
    SessionLocal = _setup_db(f"sqlite:///./track_insert_fail_{uuid4().hex}.db")
    original = ingest_module.create_tracking_event

    def flaky_create(db, *, values, commit=False):
        if values["event_type"] == "click":
            raise SQLAlchemyError("insert failed")
        return original(db, values=values, commit=commit)

    monkeypatch.setattr(ingest_module, "create_tracking_event", flaky_create)

    resp = client.post(
        "/track",
        json={
            "events": [
                pageview_event("s1", BASE_TS),
                click_event("s1", BASE_TS + 1, x=1, y=1),
                click_event("s1", BASE_TS + 2, x=1, y=1, event_type="cta_click"),
            ]
        },
    )
    assert resp.status_code == 200
    assert resp.json()["eventsProcessed"] == 2

    with SessionLocal() as db:
        types = sorted(row.event_type for row in db.query(TrackingEvent).all())
    assert types == ["cta_click", "pageview"]


def test_track_accepts_text_plain_beacon_body():
    SessionLocal = _setup_db(f"sqlite:///./track_beacon_{uuid4().hex}.db")

    resp = client.post(
        "/track",
        content=json.dumps({"events": [pageview_event("s1", BASE_TS)]}),
        headers={"Content-Type": "text/plain;charset=UTF-8"},
    )
    assert resp.status_code == 200
    with SessionLocal() as db:
        assert db.query(TrackingEvent).count() == 1


def test_track_served_under_api_prefix():
    _setup_db(f"sqlite:///./track_prefix_{uuid4().hex}.db")

    resp = client.post("/api/track", json={"events": [pageview_event("s1", BASE_TS)]})
    assert resp.status_code == 200
    assert resp.json()["sessions"] == ["s1"]


def test_track_allows_cross_origin_preflight():
    resp = client.options(
        "/track",
        headers={
            "Origin": "https://customer-site.example",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type",
        },
    )
    assert resp.status_code == 200
    assert resp.headers.get("access-control-allow-origin") == "*"
