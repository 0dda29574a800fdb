from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable

from app.agent.config import AgentConfig
from app.agent.delivery import (
    BestEffortSender,
    Delivery,
    DeliveryQueue,
    FlushOutcome,
    HttpxBeaconSender,
    HttpxTransport,
    Transport,
)
from app.agent.detectors import (
    INPUT_TAGS,
    ElementDescriptor,
    ExitIntentDetector,
    PointerSampler,
    RageClickDetector,
    ScrollDepthTracker,
    is_cta,
    is_dead_click,
)
from app.agent.environment import (
    PageContext,
    detect_device,
    extract_utm_params,
    get_or_create_session_id,
    resolve_funnel_id,
    resolve_step_name,
)


logger = logging.getLogger(__name__)


def system_clock_ms() -> int:
    return int(time.time() * 1000)


class TrackerAgent:
    """All tracking state for one page load.

    The host drives it with signal methods (``click``, ``scroll``,
    ``pointer_move`` and so on) and calls ``tick()`` from its event loop so
    the scroll debounce, the flush interval and the engagement heartbeat run
    against the injected clock.
    """

    def __init__(
        self,
        config: AgentConfig,
        page: PageContext,
        *,
        transport: Transport,
        beacon: BestEffortSender,
        clock: Callable[[], int] = system_clock_ms,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self.page = page
        self._clock = clock
        self.session_id = get_or_create_session_id(page.session_storage, clock, rng)
        self.funnel_id = resolve_funnel_id(page.session_storage, config.funnel_id)
        self.step_name = resolve_step_name(page, config.step_name) if self.funnel_id else None
        self.device = detect_device(page)
        self.utm = extract_utm_params(page.url)

        self.queue = DeliveryQueue()
        self.delivery = Delivery(self.queue, transport, beacon)

        self._rage = RageClickDetector(
            threshold=config.rage_click_threshold,
            window_ms=config.rage_click_window_ms,
        )
        self._scroll = ScrollDepthTracker()
        self._pointer = PointerSampler(interval_ms=config.pointer_sample_ms)
        self._exit = ExitIntentDetector(edge_px=config.exit_intent_edge_px)

        now = clock()
        self.started_ms = now
        self.last_activity_ms: int | None = None
        self._scroll_due_ms: int | None = None
        self._next_flush_ms = now + config.flush_interval_ms
        self._next_heartbeat_ms = now + config.heartbeat_interval_ms
        self.unloaded = False

        self.track({"type": "pageview"})
        if self.funnel_enabled:
            self.track({"type": "funnel_step", "funnelData": self._funnel_data()})
        logger.info(
            "agent.initialized",
            extra={
                "session_id": self.session_id,
                "funnel_id": self.funnel_id,
                "step_name": self.step_name,
            },
        )

    @classmethod
    def with_httpx(
        cls,
        config: AgentConfig,
        page: PageContext,
        **kwargs: Any,
    ) -> "TrackerAgent":
        transport = HttpxTransport(config.endpoint, timeout=config.request_timeout_s)
        beacon = HttpxBeaconSender(config.endpoint, timeout=config.request_timeout_s)
        return cls(config, page, transport=transport, beacon=beacon, **kwargs)

    @property
    def funnel_enabled(self) -> bool:
        return self.funnel_id is not None

    def _funnel_data(self) -> dict[str, Any]:
        return {
            "funnelId": self.funnel_id,
            "stepName": self.step_name,
            "stepOrder": self.config.step_order,
        }

    def _document_point(self, client_x: float, client_y: float) -> tuple[float, float]:
        return client_x + self.page.scroll_x, client_y + self.page.scroll_y

    def track(self, event: dict[str, Any], *, activity: bool = True) -> dict[str, Any] | None:
        if self.unloaded:
            return None
        now = self._clock()
        if activity:
            self.last_activity_ms = now
        record: dict[str, Any] = {
            **event,
            "timestamp": now,
            "sessionId": self.session_id,
            "url": self.page.url,
            "path": self.page.path,
            "title": self.page.title,
            "referrer": self.page.referrer or "direct",
            **self.utm,
            **self.device.to_payload(),
        }
        if self.funnel_enabled and "funnelData" not in record:
            record["funnelData"] = self._funnel_data()
        if self.queue.append(record) >= self.config.batch_size:
            self.flush()
        return record

    def flush(self) -> FlushOutcome:
        return self.delivery.flush()

    def click(self, target: ElementDescriptor, client_x: float, client_y: float) -> None:
        if self.unloaded:
            return
        x, y = self._document_point(client_x, client_y)
        cta = is_cta(target)
        text_length = self.config.element_text_length

        rage_count = self._rage.register(target, self._clock())
        if rage_count is not None:
            payload = target.click_payload(x, y, cta, text_length)
            payload["clickCount"] = rage_count
            self.track({"type": "rage_click", "clickData": payload})

        self.track(
            {
                "type": "cta_click" if cta else "click",
                "clickData": target.click_payload(x, y, cta, text_length),
            }
        )
        if is_dead_click(target):
            self.track(
                {
                    "type": "dead_click",
                    "clickData": target.click_payload(x, y, False, text_length),
                }
            )

    def scroll(self, scroll_y: float | None = None) -> None:
        if scroll_y is not None:
            self.page.scroll_y = scroll_y
        self._scroll_due_ms = self._clock() + self.config.scroll_debounce_ms

    def _settle_scroll(self) -> None:
        self._scroll_due_ms = None
        data = self._scroll.observe(
            self.page.scroll_y,
            self.page.document_height,
            self.page.viewport_height,
        )
        if data is not None:
            self.track({"type": "scroll", "scrollData": data})

    def pointer_move(self, client_x: float, client_y: float) -> None:
        if self.unloaded or not self.config.enable_heatmap:
            return
        x, y = self._document_point(client_x, client_y)
        data = self._pointer.sample(x, y, self._clock())
        if data is not None:
            self.track({"type": "mousemove", "mouseData": data})

    def focus_in(self, target: ElementDescriptor) -> None:
        if target.tag_name not in INPUT_TAGS:
            return
        form = target.form
        form_data: dict[str, Any] = {
            "fieldName": target.name or target.element_id or None,
            "fieldType": target.input_type or target.tag_name,
            "action": "focus",
        }
        if form is not None:
            form_data["formId"] = form.element_id or None
            form_data["formName"] = form.name or None
        self.track({"type": "form_interaction", "formData": form_data})

    def submit(self, form: ElementDescriptor) -> None:
        self.track(
            {
                "type": "form_submit",
                "formData": {
                    "formId": form.element_id or None,
                    "formName": form.name or None,
                    "action": "submit",
                },
            }
        )

    def pointer_out(self, client_y: float, has_related_target: bool = False) -> None:
        if self.unloaded:
            return
        if self._exit.observe(client_y, has_related_target):
            self.track({"type": "exit_intent"})

    def visibility_change(self, hidden: bool) -> None:
        if hidden and not self.unloaded:
            self.flush()

    def unload(self) -> bool:
        if self.unloaded:
            return True
        self.unloaded = True
        return self.delivery.flush_on_unload()

    def close(self) -> None:
        """Unload, then release the transport and beacon clients."""
        self.unload()
        self.delivery.transport.close()
        self.delivery.beacon.close()

    def _heartbeat(self, now: int) -> None:
        engaged = (
            self.last_activity_ms is not None
            and now - self.last_activity_ms < self.config.engagement_window_ms
        )
        self.track(
            {
                "type": "time_on_page",
                "timeData": {
                    "timeOnPage": round((now - self.started_ms) / 1000),
                    "engaged": engaged,
                },
            },
            activity=False,
        )

    def tick(self) -> None:
        """Run every timer that is due at the current clock reading."""
        if self.unloaded:
            return
        now = self._clock()
        if self._scroll_due_ms is not None and now >= self._scroll_due_ms:
            self._settle_scroll()
        if now >= self._next_heartbeat_ms:
            self._heartbeat(now)
            while self._next_heartbeat_ms <= now:
                self._next_heartbeat_ms += self.config.heartbeat_interval_ms
        if now >= self._next_flush_ms:
            self.flush()
            while self._next_flush_ms <= now:
                self._next_flush_ms += self.config.flush_interval_ms
