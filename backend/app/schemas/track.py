from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.core.event_types import (
    MAX_AGENT_FIELD_LENGTH,
    MAX_ELEMENT_TEXT_LENGTH,
    MAX_LABEL_LENGTH,
    MAX_SHORT_LABEL_LENGTH,
    MAX_TITLE_LENGTH,
    MAX_URL_LENGTH,
    clamp_text,
    coerce_timestamp_ms,
    normalize_event_type,
    normalize_path,
    normalize_session_id,
)


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


class ClickData(CamelModel):
    x: Optional[float] = None
    y: Optional[float] = None
    element: Optional[str] = None
    element_id: Optional[str] = None
    element_class: Optional[str] = None
    element_text: Optional[str] = None
    is_cta_click: Optional[bool] = None
    click_count: Optional[int] = None

    @field_validator("element_text")
    @classmethod
    def clamp_element_text(cls, value: Optional[str]) -> Optional[str]:
        return clamp_text(value, MAX_ELEMENT_TEXT_LENGTH)

    @field_validator("element_id", "element_class")
    @classmethod
    def clamp_labels(cls, value: Optional[str]) -> Optional[str]:
        return clamp_text(value, MAX_LABEL_LENGTH)

    @field_validator("element")
    @classmethod
    def clamp_tag(cls, value: Optional[str]) -> Optional[str]:
        return clamp_text(value, MAX_SHORT_LABEL_LENGTH)


class ScrollData(CamelModel):
    depth: Optional[float] = None
    percentage: Optional[float] = None
    max_depth: Optional[float] = None


class MouseData(CamelModel):
    x: Optional[float] = None
    y: Optional[float] = None
    movement_speed: Optional[float] = None


class FormData(CamelModel):
    form_id: Optional[str] = None
    form_name: Optional[str] = None
    field_name: Optional[str] = None
    field_type: Optional[str] = None
    action: Optional[str] = None

    @field_validator("form_id", "form_name", "field_name")
    @classmethod
    def clamp_labels(cls, value: Optional[str]) -> Optional[str]:
        return clamp_text(value, MAX_LABEL_LENGTH)

    @field_validator("field_type", "action")
    @classmethod
    def clamp_short_labels(cls, value: Optional[str]) -> Optional[str]:
        return clamp_text(value, MAX_SHORT_LABEL_LENGTH)


class FunnelData(CamelModel):
    funnel_id: Optional[str] = None
    step_name: Optional[str] = None
    step_order: Optional[int] = None

    @field_validator("funnel_id")
    @classmethod
    def clamp_funnel_id(cls, value: Optional[str]) -> Optional[str]:
        return clamp_text(value, MAX_SHORT_LABEL_LENGTH)

    @field_validator("step_name")
    @classmethod
    def clamp_step_name(cls, value: Optional[str]) -> Optional[str]:
        return clamp_text(value, MAX_LABEL_LENGTH)


class TimeData(CamelModel):
    time_on_page: Optional[int] = None
    engaged: Optional[bool] = None


class TrackEventIn(CamelModel):
    """One record of a /track batch, as sent by the agent or older snippets."""

    session_id: str
    event_type: str = Field(validation_alias=AliasChoices("type", "event_type", "eventType"))
    timestamp: int
    url: Optional[str] = Field(None, validation_alias=AliasChoices("url", "page_url", "pageUrl"))
    path: Optional[str] = None
    title: Optional[str] = None
    referrer: Optional[str] = None

    device_type: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    screen_width: Optional[int] = None
    screen_height: Optional[int] = None
    viewport_width: Optional[int] = None
    viewport_height: Optional[int] = None
    language: Optional[str] = None

    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None

    click_data: Optional[ClickData] = None
    scroll_data: Optional[ScrollData] = None
    mouse_data: Optional[MouseData] = None
    form_data: Optional[FormData] = None
    funnel_data: Optional[FunnelData] = None
    time_data: Optional[TimeData] = None

    # Flat fields from the first snippet generation.
    click_x: Optional[float] = Field(None, validation_alias=AliasChoices("click_x", "clickX"))
    click_y: Optional[float] = Field(None, validation_alias=AliasChoices("click_y", "clickY"))
    funnel_id: Optional[str] = Field(None, validation_alias=AliasChoices("funnel_id", "funnelId"))
    funnel_step_name: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("funnel_step_name", "funnelStepName", "step_name", "stepName"),
    )
    step_number: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("step_number", "stepNumber", "step_order", "stepOrder"),
    )
    legacy_time_on_page: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("time_on_page", "timeOnPage"),
    )

    @field_validator("session_id", mode="before")
    @classmethod
    def validate_session_id(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("session_id must be a string.")
        return normalize_session_id(value)

    @field_validator("event_type", mode="before")
    @classmethod
    def validate_event_type(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("event type must be a string.")
        return normalize_event_type(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def validate_timestamp(cls, value: Any) -> int:
        return coerce_timestamp_ms(value)

    @field_validator("url", "referrer")
    @classmethod
    def clamp_url(cls, value: Optional[str]) -> Optional[str]:
        return clamp_text(value, MAX_URL_LENGTH)

    @field_validator("path")
    @classmethod
    def validate_path(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        return clamp_text(normalize_path(value), MAX_URL_LENGTH)

    @field_validator("title")
    @classmethod
    def clamp_title(cls, value: Optional[str]) -> Optional[str]:
        return clamp_text(value, MAX_TITLE_LENGTH)

    @field_validator(
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "funnel_step_name",
    )
    @classmethod
    def clamp_labels(cls, value: Optional[str]) -> Optional[str]:
        return clamp_text(value, MAX_LABEL_LENGTH)

    @field_validator("browser", "os", "language")
    @classmethod
    def clamp_agent_fields(cls, value: Optional[str]) -> Optional[str]:
        return clamp_text(value, MAX_AGENT_FIELD_LENGTH)

    @field_validator("funnel_id")
    @classmethod
    def clamp_funnel_id(cls, value: Optional[str]) -> Optional[str]:
        return clamp_text(value, MAX_SHORT_LABEL_LENGTH)

    @field_validator("device_type")
    @classmethod
    def normalize_device_type(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        return value.strip().lower()[:16] or None

    @model_validator(mode="after")
    def resolve_path(self) -> "TrackEventIn":
        # A url that cannot be split rejects the record here rather than at insert time.
        if not self.path and self.url:
            self.path = clamp_text(normalize_path(self.url), MAX_URL_LENGTH)
        return self

    def funnel_attribution(self) -> tuple[Optional[str], Optional[str], Optional[int]]:
        """(funnel_id, step_name, step_order), nested payload first, flat fields second."""
        data = self.funnel_data
        if data is not None and (data.funnel_id or data.step_name):
            return data.funnel_id, data.step_name, data.step_order
        return self.funnel_id, self.funnel_step_name, self.step_number


class TrackResponse(BaseModel):
    success: bool
    events_processed: int = Field(serialization_alias="eventsProcessed")
    sessions: list[str]
