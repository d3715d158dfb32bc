"""Location sampler.

Wraps a :class:`~pylivetrack.providers.base.LocationProvider` and turns raw
fixes into :class:`~pylivetrack.models.sample.LocationSample` values enriched
with a derived speed. Each Sampler owns exactly one
:class:`~pylivetrack.geo.EstimatorState`; concurrent watches need
independent Sampler instances.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from pylivetrack.exceptions import (
    LiveTrackError,
    LocationError,
    LocationTimeoutError,
    ProviderFailureError,
    SamplerBusyError,
    UnsupportedError,
)
from pylivetrack.geo import EstimatorState, derive_speed_kmh, initial_bearing_deg, mps_to_kmh
from pylivetrack.models.sample import Fix, FixOptions, LocationSample
from pylivetrack.providers.base import LocationProvider

_logger = logging.getLogger(__name__)

SampleCallback = Callable[[LocationSample], None]
SampleErrorCallback = Callable[[LiveTrackError], None]


def _now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class WatchHandle:
    """Opaque handle returned by :meth:`Sampler.start_watch`."""

    sampler_id: int
    watch_id: int


class Sampler:
    """One-shot and continuous location sampling over a provider."""

    def __init__(
        self,
        provider: LocationProvider | None,
        *,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._provider = provider
        self._clock_ms = clock_ms
        self._state = EstimatorState()
        self._fetch_lock = asyncio.Lock()
        self._handle: WatchHandle | None = None

    @property
    def estimator_state(self) -> EstimatorState:
        return self._state

    @property
    def is_watching(self) -> bool:
        return self._handle is not None

    def reset_estimator(self) -> None:
        """Forget the previous fix so the next sample starts speed derivation afresh."""
        self._state = EstimatorState()

    def _require_provider(self) -> LocationProvider:
        if self._provider is None or not self._provider.is_available():
            raise UnsupportedError("Location provider is not available on this device")
        return self._provider

    def _enrich(self, fix: Fix) -> LocationSample:
        now_ms = self._clock_ms()
        previous = self._state.previous_coord
        speed_kmh, self._state = derive_speed_kmh(self._state, fix.coord, now_ms, mps_to_kmh(fix.speed_mps))

        heading = fix.heading_deg
        if heading is None:
            heading = 0.0
            if previous is not None and previous != fix.coord:
                heading = round(initial_bearing_deg(previous[0], previous[1], fix.latitude, fix.longitude), 1)

        return LocationSample(
            latitude=fix.latitude,
            longitude=fix.longitude,
            speed_kmh=speed_kmh,
            heading_deg=heading,
            timestamp_ms=now_ms,
            accuracy_m=fix.accuracy_m,
        )

    async def fetch_once(self, options: FixOptions) -> LocationSample:
        """Resolve a single fix.

        Parameters
        ----------
        options : FixOptions
            Accuracy, timeout and cache-age constraints for this fetch.

        Returns
        -------
        LocationSample
            The enriched sample.

        Raises
        ------
        UnsupportedError
            No provider is available.
        PermissionDeniedError
            The provider refused access.
        LocationTimeoutError
            No fix arrived within ``options.timeout_ms``.
        ProviderFailureError
            Any other provider failure.
        """
        provider = self._require_provider()
        async with self._fetch_lock:
            try:
                async with asyncio.timeout(options.timeout_s):
                    fix = await provider.get_position(options)
            except TimeoutError as exc:
                raise LocationTimeoutError(
                    f"No fix within {options.timeout_ms} ms",
                    provider=getattr(provider, "name", ""),
                ) from exc
            except LocationError:
                raise
            except Exception as exc:
                raise ProviderFailureError(
                    f"Provider failed: {exc}",
                    provider=getattr(provider, "name", ""),
                ) from exc
            sample = self._enrich(fix)
        _logger.debug("Fetched fix lat=%s lng=%s speed=%s", sample.latitude, sample.longitude, sample.speed_kmh)
        return sample

    def start_watch(
        self,
        options: FixOptions,
        on_sample: SampleCallback,
        on_error: SampleErrorCallback,
    ) -> WatchHandle:
        """Begin continuous sampling.

        ``on_sample`` runs for every new fix, ``on_error`` for every provider
        failure. The watch keeps running after errors and never times out.

        Raises
        ------
        SamplerBusyError
            This Sampler already owns a watch.
        UnsupportedError
            No provider is available.
        """
        if self._handle is not None:
            raise SamplerBusyError("Sampler already has an active watch; use a separate Sampler")
        provider = self._require_provider()

        def _on_fix(fix: Fix) -> None:
            if self._handle is None or self._handle.watch_id != watch_id:
                return
            on_sample(self._enrich(fix))

        def _on_error(error: LocationError) -> None:
            if self._handle is None or self._handle.watch_id != watch_id:
                return
            _logger.debug("Watch provider error: %s", error)
            on_error(error)

        watch_id = provider.watch_position(options, _on_fix, _on_error)
        handle = WatchHandle(sampler_id=id(self), watch_id=watch_id)
        self._handle = handle
        _logger.debug("Watch %d started", watch_id)
        return handle

    def stop_watch(self, handle: WatchHandle | None) -> None:
        """Cancel a watch and reset speed smoothing.

        Idempotent: stopping an already-stopped or foreign handle is a no-op.
        """
        if handle is None or self._handle != handle:
            return
        self._handle = None
        self.reset_estimator()
        if self._provider is not None:
            self._provider.clear_watch(handle.watch_id)
        _logger.debug("Watch %d stopped", handle.watch_id)

    async def close(self) -> None:
        """Stop any active watch and release the provider."""
        self.stop_watch(self._handle)
        if self._provider is not None:
            await self._provider.close()
