from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelOut(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class Transition(CamelOut):
    from_step: str = Field(alias="from")
    to: str
    count: int
    percentage: float


class StepCount(CamelOut):
    step: str
    count: int


class FunnelPathsResponse(CamelOut):
    success: bool = True
    transitions: list[Transition]
    total_sessions: int
    step_visits: dict[str, int] = Field(default_factory=dict)
    entry_points: list[StepCount] = Field(default_factory=list)
    exit_points: list[StepCount] = Field(default_factory=list)
    message: Optional[str] = None


class LiveStepStats(CamelOut):
    step_id: int
    step_name: str
    step_order: int
    visitors: int
    dropoff: float


class LiveStatsResponse(CamelOut):
    success: bool = True
    live_stats: list[LiveStepStats]
    conversion_rate: float
    total_visitors: int
    conversions: int


class UpdateStepStats(CamelOut):
    step_id: int
    step_name: str
    visitors: int
    dropoff: float


class FunnelUpdateResult(CamelOut):
    funnel_id: str
    funnel_name: str
    conversion_rate: float
    steps: list[UpdateStepStats]


class FunnelStatsUpdateRequest(CamelOut):
    funnel_id: Optional[str] = None


class FunnelStatsUpdateResponse(CamelOut):
    success: bool
    message: str
    results: list[FunnelUpdateResult] = Field(default_factory=list)


class FunnelStepCreate(CamelOut):
    name: str
    url: Optional[str] = None
    step_order: Optional[int] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Step name is required.")
        return value


class FunnelCreate(CamelOut):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    steps: list[FunnelStepCreate]

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Funnel name is required.")
        return value

    @field_validator("steps")
    @classmethod
    def validate_steps(cls, value: list[FunnelStepCreate]) -> list[FunnelStepCreate]:
        if not value:
            raise ValueError("At least one step is required.")
        orders = [step.step_order for step in value if step.step_order is not None]
        if len(orders) != len(set(orders)):
            raise ValueError("Step order values must be unique.")
        return value


class FunnelStepRead(CamelOut):
    id: int
    name: str
    url: Optional[str] = None
    step_order: int
    visitors: int
    dropoff: float


class FunnelRead(CamelOut):
    id: str
    name: str
    description: Optional[str] = None
    conversion_rate: float
    stats_refreshed_at: Optional[datetime] = None
    steps: list[FunnelStepRead]


class HeatmapPoint(CamelOut):
    x: int
    y: int
    value: int


class HeatmapResponse(CamelOut):
    type: str
    points: list[HeatmapPoint]
    max: int
