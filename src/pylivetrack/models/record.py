"""Live location record and driver presence models."""

from __future__ import annotations

from pydantic import Field, ValidationInfo, field_validator

from pylivetrack.models._base import LiveTrackBaseModel, require_non_empty
from pylivetrack.models.sample import LocationSample

#: Store collection holding one live location document per route.
LIVE_LOCATIONS = "liveLocations"

#: Store collection holding one presence document per driver.
DRIVERS = "drivers"


class LiveLocationRecord(LiveTrackBaseModel):
    """The most recent sample for a route.

    Keyed by ``route_id``. At most one record per route is active; a new
    publish merges into the existing document instead of adding another.

    Parameters
    ----------
    route_id : str
        Route served by the vehicle; the key observers subscribe to.
    vehicle_id : str
        Vehicle currently serving the route.
    driver_id : str or None
        Driver running the session, when known.
    latest : LocationSample
        Last published sample.
    is_active : bool
        ``True`` while a session is publishing for the route.
    stopped_at_ms : int or None
        Epoch milliseconds of the last deactivation.
    """

    route_id: str
    vehicle_id: str
    driver_id: str | None = None
    latest: LocationSample
    is_active: bool = True
    stopped_at_ms: int | None = None

    @field_validator("route_id", "vehicle_id")
    @classmethod
    def _non_empty(cls, value: str, info: ValidationInfo) -> str:
        return require_non_empty(value, info.field_name or "value")

    @property
    def timestamp_ms(self) -> int:
        return self.latest.timestamp_ms


class DriverStatus(LiveTrackBaseModel):
    """Driver presence flags.

    ``is_online`` and ``is_tracking`` are independent: a driver may be signed
    in while not publishing (paused), which observers can tell apart from a
    driver that is fully offline.
    """

    driver_id: str
    vehicle_id: str
    route_id: str
    is_online: bool = True
    is_tracking: bool = False
    last_seen_ms: int = Field(ge=0)
    driver_name: str | None = None
    phone: str | None = None

    @field_validator("driver_id", "vehicle_id", "route_id")
    @classmethod
    def _non_empty(cls, value: str, info: ValidationInfo) -> str:
        return require_non_empty(value, info.field_name or "value")
