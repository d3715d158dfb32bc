"""Scripted location provider.

Replays a fixed list of fixes (or injected errors) on a timer. Used by the
route simulation script and by tests that need a provider with real
asynchronous delivery.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from collections.abc import Sequence
from typing import Any

from pylivetrack.exceptions import LocationError, LocationTimeoutError, UnsupportedError
from pylivetrack.models.sample import Fix, FixOptions
from pylivetrack.providers.base import ErrorCallback, FixCallback

_logger = logging.getLogger(__name__)

ReplayStep = Fix | LocationError | dict[str, Any]


def _as_step(step: ReplayStep) -> Fix | LocationError:
    if isinstance(step, dict):
        return Fix.model_validate(step)
    return step


class ReplayLocationProvider:
    """Provider that replays scripted steps.

    Parameters
    ----------
    steps : sequence
        Fixes, raw fix payloads or :class:`LocationError` instances. Errors
        are raised by :meth:`get_position` and reported through ``on_error``
        while watching.
    interval_s : float
        Delay between watch deliveries.
    loop_steps : bool
        Restart from the first step after the last one while watching.
    available : bool
        ``False`` simulates a device without a location provider.
    """

    name = "replay"

    def __init__(
        self,
        steps: Sequence[ReplayStep],
        *,
        interval_s: float = 1.0,
        loop_steps: bool = False,
        available: bool = True,
    ) -> None:
        self._steps: list[Fix | LocationError] = [_as_step(step) for step in steps]
        self._interval_s = interval_s
        self._loop_steps = loop_steps
        self._available = available
        self._cursor = 0
        self._watch_ids = itertools.count(1)
        self._watches: dict[int, asyncio.Task[None]] = {}

    def is_available(self) -> bool:
        return self._available

    @property
    def active_watches(self) -> int:
        return sum(1 for task in self._watches.values() if not task.done())

    def _next_step(self) -> Fix | LocationError | None:
        if self._cursor >= len(self._steps):
            if not self._loop_steps or not self._steps:
                return None
            self._cursor = 0
        step = self._steps[self._cursor]
        self._cursor += 1
        return step

    async def get_position(self, options: FixOptions) -> Fix:
        if not self._available:
            raise UnsupportedError("Replay provider disabled", provider=self.name)
        step = self._next_step()
        if step is None:
            raise LocationTimeoutError(
                f"No scripted fix left within {options.timeout_ms} ms",
                provider=self.name,
            )
        if isinstance(step, LocationError):
            raise step
        return step

    def watch_position(self, options: FixOptions, on_fix: FixCallback, on_error: ErrorCallback) -> int:
        if not self._available:
            raise UnsupportedError("Replay provider disabled", provider=self.name)
        watch_id = next(self._watch_ids)
        self._watches[watch_id] = asyncio.get_running_loop().create_task(
            self._run_watch(watch_id, on_fix, on_error),
            name=f"replay-watch-{watch_id}",
        )
        return watch_id

    async def _run_watch(self, watch_id: int, on_fix: FixCallback, on_error: ErrorCallback) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            step = self._next_step()
            if step is None:
                _logger.debug("Replay watch %d exhausted", watch_id)
                return
            if isinstance(step, LocationError):
                on_error(step)
            else:
                on_fix(step)

    def clear_watch(self, watch_id: int) -> None:
        task = self._watches.pop(watch_id, None)
        if task is not None and not task.done():
            task.cancel()

    async def close(self) -> None:
        tasks = list(self._watches.values())
        self._watches.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
