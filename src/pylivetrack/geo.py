"""Geodesy helpers: great-circle distance and derived speed.

All functions are pure. :class:`EstimatorState` is an immutable value;
:func:`derive_speed_kmh` returns the advanced state instead of mutating it.
"""

from __future__ import annotations

import dataclasses
import math

#: Mean Earth radius in metres (spherical approximation).
EARTH_RADIUS_M: float = 6_371_000.0

_MPS_TO_KMH: float = 3.6


@dataclasses.dataclass(frozen=True, slots=True)
class EstimatorState:
    """Previous coordinate and timestamp used to derive speed."""

    previous_coord: tuple[float, float] | None = None
    previous_timestamp_ms: int | None = None

    @property
    def is_seeded(self) -> bool:
        return self.previous_coord is not None and self.previous_timestamp_ms is not None


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters (haversine)."""

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2.0) ** 2
    # Rounding can push a a hair above 1 for antipodal points.
    a = min(1.0, max(0.0, a))
    return 2.0 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))


def initial_bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Forward azimuth from point 1 to point 2, in ``[0, 360)`` degrees."""

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dlambda = math.radians(lon2 - lon1)

    y = math.sin(dlambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlambda)
    return math.degrees(math.atan2(y, x)) % 360.0


def mps_to_kmh(value: float | None) -> float | None:
    if value is None:
        return None
    return value * _MPS_TO_KMH


def derive_speed_kmh(
    state: EstimatorState,
    coord: tuple[float, float],
    now_ms: int,
    provider_speed_kmh: float | None = None,
) -> tuple[float, EstimatorState]:
    """Derive ground speed from the previous fix.

    Parameters
    ----------
    state : EstimatorState
        State returned by the previous call (or a fresh one).
    coord : tuple of float
        ``(latitude, longitude)`` of the new fix.
    now_ms : int
        Epoch milliseconds at which the fix was taken.
    provider_speed_kmh : float or None
        Speed reported by the provider, used for the very first fix.

    Returns
    -------
    tuple
        ``(speed_kmh, new_state)``. Speed is rounded to one decimal place,
        never negative. Non-positive elapsed time yields ``0.0``.
        The state always advances to ``coord``/``now_ms``.
    """
    new_state = EstimatorState(previous_coord=coord, previous_timestamp_ms=now_ms)

    previous_coord = state.previous_coord
    previous_ms = state.previous_timestamp_ms
    if previous_coord is None or previous_ms is None:
        if provider_speed_kmh is None or not math.isfinite(provider_speed_kmh) or provider_speed_kmh < 0:
            return 0.0, new_state
        return round(provider_speed_kmh, 1), new_state

    elapsed_s = (now_ms - previous_ms) / 1000.0
    if elapsed_s <= 0:
        return 0.0, new_state

    prev_lat, prev_lon = previous_coord
    meters = distance_meters(prev_lat, prev_lon, coord[0], coord[1])
    return round(meters / elapsed_s * _MPS_TO_KMH, 1), new_state
