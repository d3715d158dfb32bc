from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any

import pytest

from pylivetrack.exceptions import LocationError
from pylivetrack.models.sample import Fix, FixOptions
from pylivetrack.providers.base import ErrorCallback, FixCallback
from pylivetrack.store.memory import InMemoryLiveStore

# Two stops on the demo route, ~1.5 km apart.
GANDHIPURAM = (11.0168, 76.9558)
RS_PURAM = (11.0045, 76.9612)


def make_fix(lat: float, lng: float, **extra: Any) -> Fix:
    return Fix.model_validate({"lat": lat, "lng": lng, "accuracy": 5.0, **extra})


@dataclass
class ManualClock:
    """Millisecond clock that only moves when told to."""

    now: int = 1_000

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@dataclass
class FakeProvider:
    """In-process provider; tests push fixes and errors by hand."""

    name: str = "fake"
    available: bool = True
    hang: bool = False
    steps: list[Fix | LocationError | Exception] = field(default_factory=list)
    watches: dict[int, tuple[FixCallback, ErrorCallback]] = field(default_factory=dict)
    cleared: list[int] = field(default_factory=list)
    options_seen: list[FixOptions] = field(default_factory=list)
    closed: bool = False
    _ids: Any = field(default_factory=lambda: itertools.count(1))

    def is_available(self) -> bool:
        return self.available

    async def get_position(self, options: FixOptions) -> Fix:
        self.options_seen.append(options)
        if self.hang:
            await asyncio.sleep(3600)
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        return step

    def watch_position(self, options: FixOptions, on_fix: FixCallback, on_error: ErrorCallback) -> int:
        self.options_seen.append(options)
        watch_id = next(self._ids)
        self.watches[watch_id] = (on_fix, on_error)
        return watch_id

    def clear_watch(self, watch_id: int) -> None:
        self.cleared.append(watch_id)
        self.watches.pop(watch_id, None)

    async def close(self) -> None:
        self.closed = True

    def emit(self, fix: Fix) -> None:
        for on_fix, _on_error in list(self.watches.values()):
            on_fix(fix)

    def fail(self, error: LocationError) -> None:
        for _on_fix, on_error in list(self.watches.values()):
            on_error(error)


async def settle(rounds: int = 5) -> None:
    """Let scheduled callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def store() -> InMemoryLiveStore:
    return InMemoryLiveStore()
