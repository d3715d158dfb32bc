"""Data models for live location tracking."""

from pylivetrack.models._base import LiveTrackBaseModel
from pylivetrack.models.record import DRIVERS, LIVE_LOCATIONS, DriverStatus, LiveLocationRecord
from pylivetrack.models.sample import Fix, FixOptions, LocationSample
from pylivetrack.models.session import Identity, TrackingSession, TrackingState

__all__ = [
    "DRIVERS",
    "LIVE_LOCATIONS",
    "DriverStatus",
    "Fix",
    "FixOptions",
    "Identity",
    "LiveLocationRecord",
    "LiveTrackBaseModel",
    "LocationSample",
    "TrackingSession",
    "TrackingState",
]
