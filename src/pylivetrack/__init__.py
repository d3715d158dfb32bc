"""pylivetrack - Live vehicle location sampling, publishing and subscriptions."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pylivetrack")
except PackageNotFoundError:
    __version__ = "0+local"
from pylivetrack.config import TrackerConfig
from pylivetrack.exceptions import (
    ErrorKind,
    InvalidTransitionError,
    LiveTrackConfigError,
    LiveTrackError,
    LocationError,
    LocationTimeoutError,
    PermissionDeniedError,
    ProviderFailureError,
    PublishError,
    SamplerBusyError,
    StoreError,
    StoreUnavailableError,
    UnsupportedError,
)
from pylivetrack.geo import EstimatorState, derive_speed_kmh, distance_meters
from pylivetrack.models import (
    DriverStatus,
    Fix,
    FixOptions,
    Identity,
    LiveLocationRecord,
    LocationSample,
    TrackingSession,
    TrackingState,
)
from pylivetrack.publisher import Publisher
from pylivetrack.sampler import Sampler, WatchHandle
from pylivetrack.store import InMemoryLiveStore, LiveStore, StoreChange
from pylivetrack.subscriptions import SubscriptionEngine, SubscriptionHandle
from pylivetrack.tracking import TrackingSessionMachine

__all__ = [
    "__version__",
    "DriverStatus",
    "ErrorKind",
    "EstimatorState",
    "Fix",
    "FixOptions",
    "Identity",
    "InMemoryLiveStore",
    "InvalidTransitionError",
    "LiveLocationRecord",
    "LiveStore",
    "LiveTrackConfigError",
    "LiveTrackError",
    "LocationError",
    "LocationSample",
    "LocationTimeoutError",
    "PermissionDeniedError",
    "ProviderFailureError",
    "PublishError",
    "Publisher",
    "Sampler",
    "SamplerBusyError",
    "StoreChange",
    "StoreError",
    "StoreUnavailableError",
    "SubscriptionEngine",
    "SubscriptionHandle",
    "TrackerConfig",
    "TrackingSession",
    "TrackingSessionMachine",
    "TrackingState",
    "UnsupportedError",
    "WatchHandle",
    "derive_speed_kmh",
    "distance_meters",
]
