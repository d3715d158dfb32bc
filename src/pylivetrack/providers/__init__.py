"""Location providers."""

from pylivetrack.providers.base import ErrorCallback, FixCallback, LocationProvider
from pylivetrack.providers.http import HttpLocationProvider
from pylivetrack.providers.mqtt import MqttLocationProvider
from pylivetrack.providers.replay import ReplayLocationProvider

__all__ = [
    "ErrorCallback",
    "FixCallback",
    "HttpLocationProvider",
    "LocationProvider",
    "MqttLocationProvider",
    "ReplayLocationProvider",
]
