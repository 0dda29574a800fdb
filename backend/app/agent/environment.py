from __future__ import annotations

import logging
import random
import re
import string
from dataclasses import dataclass, field
from typing import Any, Callable, MutableMapping
from urllib.parse import parse_qs, urlsplit


logger = logging.getLogger(__name__)

SESSION_STORAGE_KEY = "cro_session_id"
FUNNEL_STORAGE_KEY = "funnel_id"
UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")

_MOBILE_RE = re.compile(r"Android|webOS|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini", re.IGNORECASE)
_TABLET_RE = re.compile(r"iPad|Android(?!.*Mobile)", re.IGNORECASE)

# Checked in order; the first token found in the user agent wins.
_BROWSER_TOKENS = (
    (("Firefox",), "Firefox"),
    (("SamsungBrowser",), "Samsung"),
    (("Opera", "OPR"), "Opera"),
    (("Trident",), "IE"),
    (("Edge",), "Edge"),
    (("Chrome",), "Chrome"),
    (("Safari",), "Safari"),
)
_OS_TOKENS = (
    ("Win", "Windows"),
    ("Mac", "MacOS"),
    ("Linux", "Linux"),
    ("Android", "Android"),
    ("iOS", "iOS"),
)

_BASE36 = string.digits + string.ascii_lowercase


@dataclass
class PageContext:
    """Everything the agent reads from the host page."""

    url: str
    title: str = ""
    referrer: str = ""
    user_agent: str = ""
    screen_width: int = 0
    screen_height: int = 0
    viewport_width: int = 0
    viewport_height: int = 0
    language: str = ""
    scroll_x: float = 0.0
    scroll_y: float = 0.0
    document_height: float = 0.0
    session_storage: MutableMapping[str, str] | None = field(default_factory=dict)

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"


@dataclass(frozen=True)
class DeviceInfo:
    device_type: str
    browser: str
    os: str
    screen_width: int
    screen_height: int
    viewport_width: int
    viewport_height: int
    language: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "deviceType": self.device_type,
            "browser": self.browser,
            "os": self.os,
            "screenWidth": self.screen_width,
            "screenHeight": self.screen_height,
            "viewportWidth": self.viewport_width,
            "viewportHeight": self.viewport_height,
            "language": self.language,
        }


def detect_device_type(user_agent: str) -> str:
    # Tablet first: iPad and Android tablets also match the mobile pattern.
    if _TABLET_RE.search(user_agent):
        return "tablet"
    if _MOBILE_RE.search(user_agent):
        return "mobile"
    return "desktop"


def detect_browser(user_agent: str) -> str:
    for tokens, name in _BROWSER_TOKENS:
        if any(token in user_agent for token in tokens):
            return name
    return "Unknown"


def detect_os(user_agent: str) -> str:
    for token, name in _OS_TOKENS:
        if token in user_agent:
            return name
    return "Unknown"


def detect_device(page: PageContext) -> DeviceInfo:
    ua = page.user_agent or ""
    return DeviceInfo(
        device_type=detect_device_type(ua),
        browser=detect_browser(ua),
        os=detect_os(ua),
        screen_width=page.screen_width,
        screen_height=page.screen_height,
        viewport_width=page.viewport_width,
        viewport_height=page.viewport_height,
        language=page.language or "unknown",
    )


def extract_utm_params(url: str) -> dict[str, str]:
    query = parse_qs(urlsplit(url).query)
    params: dict[str, str] = {}
    for key in UTM_KEYS:
        values = query.get(key)
        if values and values[0]:
            params[key] = values[0]
    return params


def generate_session_id(now_ms: int, rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    suffix = "".join(rng.choice(_BASE36) for _ in range(9))
    return f"sess_{now_ms}_{suffix}"


def get_or_create_session_id(
    storage: MutableMapping[str, str] | None,
    now: Callable[[], int],
    rng: random.Random | None = None,
) -> str:
    """Reuse the id stored for this browsing session, or mint and store one.

    A storage that refuses reads or writes still yields a usable id, it just
    won't survive the next page load.
    """
    if storage is None:
        return generate_session_id(now(), rng)
    try:
        existing = storage.get(SESSION_STORAGE_KEY)
    except Exception:
        logger.warning("agent.session_storage_unreadable")
        return generate_session_id(now(), rng)
    if existing:
        return existing
    session_id = generate_session_id(now(), rng)
    try:
        storage[SESSION_STORAGE_KEY] = session_id
    except Exception:
        logger.warning("agent.session_storage_blocked")
    return session_id


def resolve_funnel_id(storage: MutableMapping[str, str] | None, configured: str | None) -> str | None:
    """The embed's funnel id, else the one a previous page of this session stored.

    Whatever is found is written back so later pages of a multi-step funnel
    stay attributed without repeating the id in every embed.
    """
    funnel_id = configured or None
    if storage is None:
        return funnel_id
    if not funnel_id:
        try:
            funnel_id = storage.get(FUNNEL_STORAGE_KEY) or None
        except Exception:
            logger.warning("agent.session_storage_unreadable")
            return None
    if funnel_id:
        try:
            storage[FUNNEL_STORAGE_KEY] = funnel_id
        except Exception:
            logger.warning("agent.session_storage_blocked")
    return funnel_id


def resolve_step_name(page: PageContext, configured: str | None) -> str:
    if configured:
        return configured
    step = parse_qs(urlsplit(page.url).query).get("step")
    if step and step[0]:
        return step[0]
    return page.title or f"Page {page.path}"
