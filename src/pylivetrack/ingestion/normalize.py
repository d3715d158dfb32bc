"""Normalization helpers.

Parsing helpers for provider payloads: sentinel values, numbers and timestamps.
"""

from __future__ import annotations

import math
from typing import Any

# Sentinel strings GPS gateways use for "not available".
_SENTINELS = frozenset({"", "--", "NaN", "nan", "null"})

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1e11


def is_sentinel(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and value.strip() in _SENTINELS:
        return True
    return isinstance(value, float) and math.isnan(value)


def safe_float(value: Any) -> float | None:
    if is_sentinel(value) or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def normalize_timestamp_ms(value: Any) -> int | None:
    """Normalize payload timestamps to epoch milliseconds.

    - Empty/missing -> None
    - <= 0 -> None
    - Seconds (< 1e11) -> milliseconds
    """

    ts = safe_float(value)
    if ts is None or ts <= 0:
        return None
    if ts < _MS_THRESHOLD:
        ts *= 1000.0
    return int(ts)


def clean_payload(values: dict[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is a sentinel so model defaults apply."""
    return {key: value for key, value in values.items() if not is_sentinel(value)}
