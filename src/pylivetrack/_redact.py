"""Helpers for safe debug logging.

Driver presence documents carry contact details, and gateway settings carry
bearer tokens. :func:`redact_for_log` masks those fields before a document
is written to a DEBUG log.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

_MASK = "<redacted>"
_MAX_DEPTH = 20

_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        # Credentials
        "password",
        "token",
        "accesstoken",
        "authorization",
        "cookie",
        # Driver contact details
        "phone",
        "email",
        "drivername",
    }
)


def _is_sensitive(key: Any, extra: frozenset[str]) -> bool:
    normalized = str(key).lower().replace("_", "")
    return normalized in _SENSITIVE_KEYS or normalized in extra


def redact_for_log(
    value: Any,
    *,
    max_string: int = 256,
    extra_keys: Iterable[str] = (),
    _depth: int = 0,
) -> Any:
    """Return a copy of *value* with sensitive fields masked.

    Keys are matched case-insensitively, ignoring underscores, so both
    ``driverName`` and ``driver_name`` are masked. Long strings are truncated
    to *max_string* characters and bytes are summarized by length.
    """
    extra = frozenset(key.lower().replace("_", "") for key in extra_keys)
    if _depth > _MAX_DEPTH:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        return {
            str(key): (
                _MASK
                if _is_sensitive(key, extra)
                else redact_for_log(item, max_string=max_string, extra_keys=extra, _depth=_depth + 1)
            )
            for key, item in value.items()
        }
    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, extra_keys=extra, _depth=_depth + 1) for item in value]

    return repr(value)
