from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class TrackingAPIError(Exception):
    code: str
    message: str
    status_code: int
    details: str | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            payload["details"] = self.details
        return payload


def invalid_batch(message: str) -> TrackingAPIError:
    return TrackingAPIError(code="invalid_batch", message=message, status_code=400)


def payload_too_large() -> TrackingAPIError:
    return TrackingAPIError(code="payload_too_large", message="Payload too large", status_code=413)


def missing_parameter(name: str) -> TrackingAPIError:
    return TrackingAPIError(code="missing_parameter", message=f"{name} is required", status_code=400)


def invalid_parameter(name: str, details: str | None = None) -> TrackingAPIError:
    return TrackingAPIError(
        code="invalid_parameter",
        message=f"Invalid {name}",
        status_code=400,
        details=details,
    )


class FunnelNotFound(TrackingAPIError):
    def __init__(self, funnel_id: str) -> None:
        super().__init__(
            code="funnel_not_found",
            message="Funnel not found",
            status_code=404,
            details=funnel_id,
        )


class FunnelStepsNotFound(TrackingAPIError):
    def __init__(self, funnel_id: str) -> None:
        super().__init__(
            code="funnel_steps_not_found",
            message="No steps found for this funnel",
            status_code=404,
            details=funnel_id,
        )


class FunnelAlreadyExists(TrackingAPIError):
    def __init__(self, funnel_id: str) -> None:
        super().__init__(
            code="funnel_exists",
            message="Funnel already exists",
            status_code=409,
            details=funnel_id,
        )
