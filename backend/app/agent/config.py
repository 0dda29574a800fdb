from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


DEFAULT_ENDPOINT = "http://localhost:8000/api/track"


@dataclass(frozen=True)
class AgentConfig:
    endpoint: str = DEFAULT_ENDPOINT
    batch_size: int = 20
    flush_interval_ms: int = 5000
    heartbeat_interval_ms: int = 30000
    engagement_window_ms: int = 30000
    scroll_debounce_ms: int = 150
    pointer_sample_ms: int = 500
    rage_click_threshold: int = 3
    rage_click_window_ms: int = 1000
    exit_intent_edge_px: int = 10
    element_text_length: int = 50
    request_timeout_s: float = 10.0
    funnel_id: str | None = None
    step_name: str | None = None
    step_order: int = 0
    enable_heatmap: bool = True

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.rage_click_threshold < 2:
            raise ValueError("rage_click_threshold must be at least 2")
        for name in (
            "flush_interval_ms",
            "heartbeat_interval_ms",
            "scroll_debounce_ms",
            "pointer_sample_ms",
            "rage_click_window_ms",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    @classmethod
    def from_embed(cls, embed: Mapping[str, Any] | None, **overrides: Any) -> "AgentConfig":
        """Build from the host page's embed mapping (funnelId, stepName, stepOrder, enableHeatmap).

        Missing keys keep their defaults; only an explicit ``False`` disables
        pointer sampling.
        """
        embed = embed or {}
        values: dict[str, Any] = {
            "funnel_id": embed.get("funnelId") or None,
            "step_name": embed.get("stepName") or None,
            "enable_heatmap": embed.get("enableHeatmap") is not False,
        }
        step_order = embed.get("stepOrder")
        if isinstance(step_order, int) and not isinstance(step_order, bool):
            values["step_order"] = step_order
        if embed.get("endpoint"):
            values["endpoint"] = embed["endpoint"]
        values.update(overrides)
        return cls(**values)
