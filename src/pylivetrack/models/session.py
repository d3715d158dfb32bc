"""Tracking session models."""

from __future__ import annotations

import dataclasses
from enum import StrEnum

from pydantic import ValidationInfo, field_validator

from pylivetrack.exceptions import LiveTrackError
from pylivetrack.models._base import LiveTrackBaseModel, require_non_empty


class TrackingState(StrEnum):
    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting_permission"
    TRACKING = "tracking"
    ERROR = "error"


class Identity(LiveTrackBaseModel):
    """Authenticated driver/vehicle/route triple supplied by the auth layer.

    Trusted as given; only emptiness is checked.
    """

    driver_id: str
    vehicle_id: str
    route_id: str
    driver_name: str | None = None
    phone: str | None = None

    @field_validator("driver_id", "vehicle_id", "route_id")
    @classmethod
    def _non_empty(cls, value: str, info: ValidationInfo) -> str:
        return require_non_empty(value, info.field_name or "value")


@dataclasses.dataclass(frozen=True, slots=True)
class TrackingSession:
    """Snapshot of a driver-side tracking session."""

    driver_id: str
    vehicle_id: str
    route_id: str
    state: TrackingState = TrackingState.IDLE
    started_at_ms: int | None = None
    last_error: LiveTrackError | None = None
    samples_published: int = 0

    @classmethod
    def for_identity(cls, identity: Identity) -> TrackingSession:
        return cls(
            driver_id=identity.driver_id,
            vehicle_id=identity.vehicle_id,
            route_id=identity.route_id,
        )

    def elapsed_ms(self, now_ms: int) -> int:
        """Trip duration so far, ``0`` when the session has not started."""
        if self.started_at_ms is None:
            return 0
        return max(0, now_ms - self.started_at_ms)
