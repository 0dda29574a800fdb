from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field
from typing import Any


INPUT_TAGS = {"INPUT", "SELECT", "TEXTAREA"}
CTA_TAGS = {"BUTTON", "A"}
CTA_CLASSES = {"cta", "btn"}


@dataclass(eq=False)
class ElementDescriptor:
    """A DOM element as the agent sees it. Compared by identity, like DOM nodes."""

    tag: str
    element_id: str = ""
    class_name: str = ""
    text: str = ""
    input_type: str = ""
    name: str = ""
    has_click_handler: bool = False
    cursor: str = ""
    form: "ElementDescriptor | None" = None

    @property
    def tag_name(self) -> str:
        return self.tag.upper()

    @property
    def classes(self) -> set[str]:
        return set(self.class_name.split())

    def click_payload(self, x: float, y: float, is_cta: bool, text_length: int) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "x": round(x),
            "y": round(y),
            "element": self.tag_name,
            "elementText": self.text.strip()[:text_length],
            "isCtaClick": is_cta,
        }
        if self.element_id:
            payload["elementId"] = self.element_id
        if self.class_name:
            payload["elementClass"] = self.class_name
        return payload


def is_cta(element: ElementDescriptor) -> bool:
    return (
        element.tag_name in CTA_TAGS
        or bool(element.classes & CTA_CLASSES)
        or element.input_type.lower() == "submit"
    )


def is_dead_click(element: ElementDescriptor) -> bool:
    """Non-input, non-CTA element with neither a click handler nor a pointer cursor."""
    if element.tag_name in INPUT_TAGS or is_cta(element):
        return False
    return not (element.has_click_handler or element.cursor == "pointer")


@dataclass
class RageClickDetector:
    """Counts clicks on one target inside a rolling window.

    Reaching the threshold reports the count once and clears the window, so
    the next click on the same target starts a fresh sequence. A click on a
    different target also starts over.
    """

    threshold: int = 3
    window_ms: int = 1000
    _target: ElementDescriptor | None = field(default=None, init=False, repr=False)
    _clicks: deque = field(default_factory=deque, init=False, repr=False)

    def register(self, target: ElementDescriptor, now_ms: int) -> int | None:
        if target is not self._target:
            self._target = target
            self._clicks.clear()
        while self._clicks and now_ms - self._clicks[0] >= self.window_ms:
            self._clicks.popleft()
        self._clicks.append(now_ms)
        if len(self._clicks) >= self.threshold:
            count = len(self._clicks)
            self._clicks.clear()
            return count
        return None


@dataclass
class ScrollDepthTracker:
    """Emits only when the scroll percentage beats the running maximum."""

    max_percentage: int = 0

    @staticmethod
    def percentage(scroll_y: float, document_height: float, viewport_height: float) -> int:
        scrollable = document_height - viewport_height
        if scrollable <= 0:
            return 100 if scroll_y > 0 else 0
        return int(math.floor(scroll_y / scrollable * 100 + 0.5))

    def observe(self, scroll_y: float, document_height: float, viewport_height: float) -> dict[str, Any] | None:
        pct = self.percentage(scroll_y, document_height, viewport_height)
        if pct <= self.max_percentage:
            return None
        self.max_percentage = pct
        return {
            "depth": round(scroll_y),
            "percentage": min(100, pct),
            "maxDepth": self.max_percentage,
        }


@dataclass
class PointerSampler:
    """At most one sample per interval; speed in px/s from the last two samples."""

    interval_ms: int = 500
    history: int = 10
    _last_sample_ms: int | None = field(default=None, init=False, repr=False)
    _points: deque = field(default_factory=deque, init=False, repr=False)

    def sample(self, x: float, y: float, now_ms: int) -> dict[str, Any] | None:
        if self._last_sample_ms is not None and now_ms - self._last_sample_ms < self.interval_ms:
            return None
        self._last_sample_ms = now_ms
        self._points.append((x, y, now_ms))
        while len(self._points) > self.history:
            self._points.popleft()

        speed = 0
        if len(self._points) >= 2:
            px, py, pt = self._points[-2]
            distance = math.hypot(x - px, y - py)
            elapsed_s = (now_ms - pt) / 1000.0
            speed = round(distance / elapsed_s) if elapsed_s > 0 else 0
        return {"x": round(x), "y": round(y), "movementSpeed": speed}


@dataclass
class ExitIntentDetector:
    """Pointer leaving through the top edge into nothing. Fires once per page load."""

    edge_px: int = 10
    fired: bool = False

    def observe(self, client_y: float, has_related_target: bool) -> bool:
        if self.fired or has_related_target or client_y >= self.edge_px:
            return False
        self.fired = True
        return True
