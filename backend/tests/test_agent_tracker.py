import json
import random

import pytest

from app.agent.config import AgentConfig
from app.agent.delivery import BestEffortSender, FlushOutcome, Transport, TransportError
from app.agent.detectors import ElementDescriptor
from app.agent.environment import FUNNEL_STORAGE_KEY, SESSION_STORAGE_KEY, PageContext
from app.agent.tracker import TrackerAgent


START_MS = 1_700_000_000_000


class FakeClock:
    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingTransport(Transport):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.batches: list[list[dict]] = []

    def send(self, payload: str) -> None:
        self.batches.append(json.loads(payload)["events"])
        if self.fail:
            raise TransportError("HTTP 503", status_code=503)


class RecordingBeacon(BestEffortSender):
    def __init__(self, accept: bool = True):
        self.accept = accept
        self.batches: list[list[dict]] = []

    def send(self, payload: str) -> bool:
        self.batches.append(json.loads(payload)["events"])
        return self.accept


def _page(**overrides) -> PageContext:
    values = {
        "url": "https://shop.example.com/pricing?utm_source=ads&utm_campaign=spring",
        "title": "Pricing",
        "user_agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0 Safari/537.36",
        "screen_width": 1920,
        "screen_height": 1080,
        "viewport_width": 1280,
        "viewport_height": 1000,
        "language": "en-US",
        "document_height": 3000,
    }
    values.update(overrides)
    return PageContext(**values)


def _agent(config: AgentConfig | None = None, page: PageContext | None = None, **kwargs):
    clock = kwargs.pop("clock", FakeClock())
    transport = kwargs.pop("transport", RecordingTransport())
    beacon = kwargs.pop("beacon", RecordingBeacon())
    agent = TrackerAgent(
        config or AgentConfig(),
        page or _page(),
        transport=transport,
        beacon=beacon,
        clock=clock,
        rng=random.Random(11),
    )
    return agent, clock, transport, beacon


def _types(events: list[dict]) -> list[str]:
    return [event["type"] for event in events]


def test_pageview_tracked_on_start_with_page_context():
    agent, _clock, transport, _beacon = _agent()

    queued = agent.queue.snapshot()
    assert _types(queued) == ["pageview"]
    event = queued[0]
    assert event["sessionId"] == agent.session_id
    assert event["timestamp"] == START_MS
    assert event["path"] == "/pricing"
    assert event["title"] == "Pricing"
    assert event["referrer"] == "direct"
    assert event["utm_source"] == "ads"
    assert event["utm_campaign"] == "spring"
    assert event["deviceType"] == "desktop"
    assert event["browser"] == "Chrome"
    assert event["language"] == "en-US"
    assert "funnelData" not in event
    assert transport.batches == []
    assert agent.page.session_storage[SESSION_STORAGE_KEY] == agent.session_id


def test_funnel_step_tracked_and_attributed_when_configured():
    config = AgentConfig(funnel_id="f1", step_name="Pricing", step_order=1)
    agent, _clock, _transport, _beacon = _agent(config)

    queued = agent.queue.snapshot()
    assert _types(queued) == ["pageview", "funnel_step"]
    expected = {"funnelId": "f1", "stepName": "Pricing", "stepOrder": 1}
    assert all(event["funnelData"] == expected for event in queued)

    agent.track({"type": "exit_intent"})
    assert agent.queue.snapshot()[-1]["funnelData"] == expected


def test_step_name_alone_does_not_enable_funnel_tracking():
    agent, _clock, _transport, _beacon = _agent(AgentConfig(step_name="Pricing"))
    assert _types(agent.queue.snapshot()) == ["pageview"]


def test_queue_flushes_when_batch_size_reached():
    agent, _clock, transport, _beacon = _agent()

    for _ in range(18):
        agent.track({"type": "exit_intent"})
    assert len(agent.queue) == 19
    assert transport.batches == []

    agent.track({"type": "exit_intent"})
    assert len(transport.batches) == 1
    assert len(transport.batches[0]) == 20
    assert len(agent.queue) == 0


def test_tick_flushes_on_interval():
    agent, clock, transport, _beacon = _agent()

    clock.advance(4999)
    agent.tick()
    assert transport.batches == []

    clock.advance(1)
    agent.tick()
    assert _types(transport.batches[0]) == ["pageview"]

    clock.advance(5000)
    agent.tick()
    assert len(transport.batches) == 1


def test_heartbeat_reports_engagement_without_counting_as_activity():
    agent, clock, transport, _beacon = _agent()
    target = ElementDescriptor(tag="button")

    clock.advance(10_000)
    agent.click(target, 5, 5)
    clock.advance(20_000)
    agent.tick()

    heartbeat = transport.batches[-1][-1]
    assert heartbeat["type"] == "time_on_page"
    assert heartbeat["timeData"] == {"timeOnPage": 30, "engaged": True}

    clock.advance(30_000)
    agent.tick()
    heartbeat = transport.batches[-1][-1]
    assert heartbeat["timeData"] == {"timeOnPage": 60, "engaged": False}


def test_scroll_is_debounced_and_reports_new_maximum():
    agent, clock, _transport, _beacon = _agent()

    agent.scroll(500)
    clock.advance(100)
    agent.scroll(1000)
    clock.advance(100)
    agent.tick()
    assert _types(agent.queue.snapshot()) == ["pageview"]

    clock.advance(50)
    agent.tick()
    scroll = agent.queue.snapshot()[-1]
    assert scroll["type"] == "scroll"
    assert scroll["scrollData"] == {"depth": 1000, "percentage": 50, "maxDepth": 50}

    agent.scroll(400)
    clock.advance(150)
    agent.tick()
    assert _types(agent.queue.snapshot()) == ["pageview", "scroll"]


def test_pointer_samples_use_document_coordinates():
    agent, clock, _transport, _beacon = _agent(page=_page(scroll_y=100))

    agent.pointer_move(10, 20)
    clock.advance(100)
    agent.pointer_move(30, 40)
    clock.advance(400)
    agent.pointer_move(310, 420)

    moves = [event for event in agent.queue.snapshot() if event["type"] == "mousemove"]
    assert [event["mouseData"]["x"] for event in moves] == [10, 310]
    assert moves[0]["mouseData"] == {"x": 10, "y": 120, "movementSpeed": 0}
    assert moves[1]["mouseData"]["movementSpeed"] == 1000


def test_heatmap_disabled_skips_pointer_samples():
    agent, _clock, _transport, _beacon = _agent(AgentConfig(enable_heatmap=False))
    agent.pointer_move(10, 20)
    assert _types(agent.queue.snapshot()) == ["pageview"]


def test_rage_click_precedes_click_on_third_rapid_click():
    agent, clock, _transport, _beacon = _agent(AgentConfig(batch_size=50), page=_page(scroll_y=200))
    target = ElementDescriptor(tag="div", text="Price table")

    for _ in range(3):
        agent.click(target, 40, 60)
        clock.advance(100)

    events = agent.queue.snapshot()[1:]
    assert _types(events) == [
        "click",
        "dead_click",
        "click",
        "dead_click",
        "rage_click",
        "click",
        "dead_click",
    ]
    rage = events[4]["clickData"]
    assert rage["clickCount"] == 3
    assert (rage["x"], rage["y"]) == (40, 260)
    assert rage["elementText"] == "Price table"


def test_cta_click_is_not_dead():
    agent, _clock, _transport, _beacon = _agent()
    agent.click(ElementDescriptor(tag="a", element_id="signup", text="Sign up"), 1, 2)

    event = agent.queue.snapshot()[-1]
    assert event["type"] == "cta_click"
    assert event["clickData"]["isCtaClick"] is True
    assert event["clickData"]["elementId"] == "signup"
    assert len(agent.queue) == 2


def test_form_focus_and_submit():
    agent, _clock, _transport, _beacon = _agent()
    form = ElementDescriptor(tag="form", element_id="signup", name="signup-form")

    agent.focus_in(ElementDescriptor(tag="input", name="email", input_type="email", form=form))
    agent.focus_in(ElementDescriptor(tag="div"))
    agent.submit(form)

    events = agent.queue.snapshot()[1:]
    assert _types(events) == ["form_interaction", "form_submit"]
    assert events[0]["formData"] == {
        "fieldName": "email",
        "fieldType": "email",
        "action": "focus",
        "formId": "signup",
        "formName": "signup-form",
    }
    assert events[1]["formData"] == {"formId": "signup", "formName": "signup-form", "action": "submit"}


def test_exit_intent_tracked_once():
    agent, _clock, _transport, _beacon = _agent()
    agent.pointer_out(3)
    agent.pointer_out(2)
    agent.pointer_out(300)
    assert _types(agent.queue.snapshot()) == ["pageview", "exit_intent"]


def test_hidden_page_flushes_queue():
    agent, _clock, transport, _beacon = _agent()

    agent.visibility_change(False)
    assert transport.batches == []
    agent.visibility_change(True)
    assert _types(transport.batches[0]) == ["pageview"]


def test_unload_sends_remaining_events_by_beacon():
    agent, _clock, transport, beacon = _agent()
    agent.track({"type": "exit_intent"})

    assert agent.unload() is True
    assert _types(beacon.batches[0]) == ["pageview", "exit_intent"]
    assert transport.batches == []

    assert agent.track({"type": "exit_intent"}) is None
    assert agent.unload() is True
    assert len(beacon.batches) == 1


def test_failed_flush_keeps_events_queued_in_order():
    transport = RecordingTransport(fail=True)
    beacon = RecordingBeacon(accept=False)
    agent, _clock, _transport, _beacon = _agent(transport=transport, beacon=beacon)

    assert agent.flush() == FlushOutcome.REQUEUED
    agent.track({"type": "exit_intent"})
    assert _types(agent.queue.snapshot()) == ["pageview", "exit_intent"]


def test_session_id_shared_across_page_loads():
    storage: dict[str, str] = {}
    first, clock, _transport, _beacon = _agent(page=_page(session_storage=storage))
    clock.advance(60_000)
    second, _clock, _transport, _beacon = _agent(
        page=_page(url="https://shop.example.com/checkout", session_storage=storage),
        clock=clock,
    )
    assert first.session_id == second.session_id
    pageview = second.queue.snapshot()[0]
    assert pageview["path"] == "/checkout"
    assert pageview["timestamp"] == START_MS + 60_000
    assert "utm_source" not in pageview


def test_config_from_embed():
    config = AgentConfig.from_embed(
        {"funnelId": "f1", "stepName": "Cart", "stepOrder": 2, "enableHeatmap": False},
        batch_size=10,
    )
    assert (config.funnel_id, config.step_name, config.step_order) == ("f1", "Cart", 2)
    assert config.enable_heatmap is False
    assert config.batch_size == 10

    config = AgentConfig.from_embed({"enableHeatmap": None, "stepOrder": True})
    assert config.enable_heatmap is True
    assert config.step_order == 0
    assert config.funnel_id is None

    assert AgentConfig.from_embed(None) == AgentConfig()


def test_config_rejects_invalid_values():
    with pytest.raises(ValueError):
        AgentConfig(batch_size=0)
    with pytest.raises(ValueError):
        AgentConfig(rage_click_threshold=1)
    with pytest.raises(ValueError):
        AgentConfig(flush_interval_ms=0)


def test_funnel_id_carried_to_later_pages_through_session_storage():
    storage: dict[str, str] = {}
    _agent(
        AgentConfig(funnel_id="f1", step_name="Landing"),
        page=_page(session_storage=storage),
    )
    assert storage[FUNNEL_STORAGE_KEY] == "f1"

    later, _clock, _transport, _beacon = _agent(
        page=_page(url="https://shop.example.com/signup?step=Signup", session_storage=storage),
    )
    queued = later.queue.snapshot()
    assert _types(queued) == ["pageview", "funnel_step"]
    assert queued[1]["funnelData"] == {"funnelId": "f1", "stepName": "Signup", "stepOrder": 0}


def test_embed_funnel_id_replaces_stored_one():
    storage = {FUNNEL_STORAGE_KEY: "old"}
    agent, _clock, _transport, _beacon = _agent(
        AgentConfig(funnel_id="new"),
        page=_page(session_storage=storage),
    )
    assert agent.funnel_id == "new"
    assert storage[FUNNEL_STORAGE_KEY] == "new"


def test_step_name_falls_back_to_title_then_path():
    agent, _clock, _transport, _beacon = _agent(AgentConfig(funnel_id="f1"))
    assert agent.step_name == "Pricing"

    agent, _clock, _transport, _beacon = _agent(AgentConfig(funnel_id="f1"), page=_page(title=""))
    assert agent.step_name == "Page /pricing"
    assert agent.queue.snapshot()[1]["funnelData"]["stepName"] == "Page /pricing"


class ClosingTransport(RecordingTransport):
    closed = False

    def close(self) -> None:
        self.closed = True


class ClosingBeacon(RecordingBeacon):
    closed = False

    def close(self) -> None:
        self.closed = True


def test_close_unloads_then_releases_senders():
    transport = ClosingTransport()
    beacon = ClosingBeacon()
    agent, _clock, _transport, _beacon = _agent(transport=transport, beacon=beacon)

    agent.close()

    assert agent.unloaded
    assert _types(beacon.batches[0]) == ["pageview"]
    assert transport.batches == []
    assert transport.closed and beacon.closed
