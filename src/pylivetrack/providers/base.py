"""Location provider contract.

A provider resolves fixes for one vehicle, either on demand
(:meth:`LocationProvider.get_position`) or continuously
(:meth:`LocationProvider.watch_position`). Implementations raise or report
the :mod:`pylivetrack.exceptions` location errors only.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from pylivetrack.exceptions import LocationError
from pylivetrack.models.sample import Fix, FixOptions

FixCallback = Callable[[Fix], None]
ErrorCallback = Callable[[LocationError], None]


class LocationProvider(Protocol):
    """Structural provider interface used by the Sampler."""

    name: str

    def is_available(self) -> bool:
        ...

    async def get_position(self, options: FixOptions) -> Fix:
        ...

    def watch_position(self, options: FixOptions, on_fix: FixCallback, on_error: ErrorCallback) -> int:
        ...

    def clear_watch(self, watch_id: int) -> None:
        ...

    async def close(self) -> None:
        ...
