from __future__ import annotations

import math
import re
from datetime import datetime
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

from app.core.time import datetime_to_ms


class EventType(str, Enum):
    PAGEVIEW = "pageview"
    CLICK = "click"
    CTA_CLICK = "cta_click"
    RAGE_CLICK = "rage_click"
    DEAD_CLICK = "dead_click"
    SCROLL = "scroll"
    MOUSEMOVE = "mousemove"
    FORM_INTERACTION = "form_interaction"
    FORM_SUBMIT = "form_submit"
    EXIT_INTENT = "exit_intent"
    TIME_ON_PAGE = "time_on_page"
    FUNNEL_STEP = "funnel_step"


ALLOWED_EVENT_TYPES = {member.value for member in EventType}

# Older snippets and third-party importers spell a few types differently.
EVENT_TYPE_ALIASES = {
    "page_view": EventType.PAGEVIEW.value,
    "mouse_move": EventType.MOUSEMOVE.value,
    "funnelstep": EventType.FUNNEL_STEP.value,
}

SESSION_ID_MAX_LENGTH = 128
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.:-]+$")
MAX_URL_LENGTH = 2048
MAX_TITLE_LENGTH = 512
MAX_ELEMENT_TEXT_LENGTH = 200
MAX_LABEL_LENGTH = 255
MAX_SHORT_LABEL_LENGTH = 64
MAX_AGENT_FIELD_LENGTH = 32
# 9999-12-31T23:59:59.999Z, the last instant a datetime can hold.
MAX_TIMESTAMP_MS = 253_402_300_799_999


def normalize_event_type(value: str) -> str:
    normalized = value.strip().lower()
    normalized = EVENT_TYPE_ALIASES.get(normalized, normalized)
    if normalized not in ALLOWED_EVENT_TYPES:
        raise ValueError(f"Unsupported event type: {value!r}")
    return normalized


def normalize_session_id(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("session_id is required.")
    if len(value) > SESSION_ID_MAX_LENGTH:
        raise ValueError("session_id exceeds maximum length.")
    if not SESSION_ID_PATTERN.match(value):
        raise ValueError("session_id has invalid characters.")
    return value


def normalize_path(value: str) -> str:
    parsed = urlsplit(value)
    path = parsed.path or "/"
    if not path.startswith("/"):
        path = f"/{path}"
    return path


def _checked_ms(value: int) -> int:
    if value < 0:
        raise ValueError("timestamp must be positive.")
    if value > MAX_TIMESTAMP_MS:
        raise ValueError("timestamp is out of range.")
    return value


def coerce_timestamp_ms(value: Any) -> int:
    """Epoch millis from a number, a numeric string or an ISO-8601 string."""
    if value is None or isinstance(value, bool):
        raise ValueError("timestamp is required.")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError("timestamp must be finite.")
    if isinstance(value, (int, float)):
        return _checked_ms(int(value))
    if isinstance(value, datetime):
        return _checked_ms(datetime_to_ms(value))
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            raise ValueError("timestamp is required.")
        try:
            return coerce_timestamp_ms(float(raw))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError(f"Invalid timestamp: {value!r}") from exc
        return _checked_ms(datetime_to_ms(parsed))
    raise ValueError(f"Invalid timestamp: {value!r}")


def clamp_text(value: Any, max_length: int) -> str | None:
    if value is None:
        return None
    text = str(value)
    if not text:
        return None
    return text[:max_length]
