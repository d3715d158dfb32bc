"""Driver-side tracking session state machine.

States::

    IDLE -> REQUESTING_PERMISSION -> TRACKING -> IDLE
    REQUESTING_PERMISSION -> ERROR
    TRACKING -> ERROR
    ERROR -> REQUESTING_PERMISSION   (operator retry via start)
    ERROR -> IDLE                    (stop or reset)

The machine owns one :class:`~pylivetrack.sampler.Sampler` and one
:class:`~pylivetrack.publisher.Publisher`. Failures of ``start``/``sign_off``
are raised to the caller; failures that happen in the background (provider
errors while watching, sample publishes, writes during ``stop``) go to the
error listeners. Each failure uses exactly one of the two channels.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import time
from collections.abc import Callable
from typing import Any

from pylivetrack.config import TrackerConfig
from pylivetrack.exceptions import InvalidTransitionError, LiveTrackError, PublishError
from pylivetrack.models.record import DriverStatus, LiveLocationRecord
from pylivetrack.models.sample import LocationSample
from pylivetrack.models.session import Identity, TrackingSession, TrackingState
from pylivetrack.publisher import Publisher
from pylivetrack.sampler import Sampler, WatchHandle

_logger = logging.getLogger(__name__)

StateListener = Callable[[TrackingSession], None]
ErrorListener = Callable[[LiveTrackError], None]


def _now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


class TrackingSessionMachine:
    """Control loop for one driver's live location session.

    Usage::

        machine = TrackingSessionMachine(Sampler(provider), Publisher(store), identity)
        await machine.start()
        ...
        await machine.stop()
    """

    def __init__(
        self,
        sampler: Sampler,
        publisher: Publisher,
        identity: Identity,
        config: TrackerConfig | None = None,
        *,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._sampler = sampler
        self._publisher = publisher
        self._identity = identity
        self._config = config or TrackerConfig()
        self._clock_ms = clock_ms
        self._session = TrackingSession.for_identity(identity)
        self._watch: WatchHandle | None = None
        self._transition_lock = asyncio.Lock()
        self._publish_lock = asyncio.Lock()
        self._ticks: set[asyncio.Task[None]] = set()
        self._state_listeners: list[StateListener] = []
        self._error_listeners: list[ErrorListener] = []

    async def __aenter__(self) -> TrackingSessionMachine:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def session(self) -> TrackingSession:
        return self._session

    @property
    def state(self) -> TrackingState:
        return self._session.state

    @property
    def is_watching(self) -> bool:
        return self._watch is not None

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a callback for state transitions; returns its remover."""
        self._state_listeners.append(listener)
        return lambda: self._remove(self._state_listeners, listener)

    def add_error_listener(self, listener: ErrorListener) -> Callable[[], None]:
        """Register a callback for background failures; returns its remover."""
        self._error_listeners.append(listener)
        return lambda: self._remove(self._error_listeners, listener)

    @staticmethod
    def _remove(listeners: list[Any], listener: Any) -> None:
        if listener in listeners:
            listeners.remove(listener)

    def _update(self, **changes: Any) -> None:
        previous = self._session.state
        self._session = dataclasses.replace(self._session, **changes)
        if self._session.state == previous:
            return
        _logger.debug("Session %s: %s -> %s", self._identity.route_id, previous, self._session.state)
        for listener in list(self._state_listeners):
            try:
                listener(self._session)
            except Exception:
                _logger.exception("State listener failed")

    def _report(self, error: LiveTrackError) -> None:
        _logger.debug("Session %s error: %s", self._identity.route_id, error)
        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception:
                _logger.exception("Error listener failed")

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _record(self, sample: LocationSample) -> LiveLocationRecord:
        return LiveLocationRecord(
            route_id=self._identity.route_id,
            vehicle_id=self._identity.vehicle_id,
            driver_id=self._identity.driver_id,
            latest=sample,
            is_active=True,
        )

    def _status(self, *, is_online: bool, is_tracking: bool) -> DriverStatus:
        return DriverStatus(
            driver_id=self._identity.driver_id,
            vehicle_id=self._identity.vehicle_id,
            route_id=self._identity.route_id,
            is_online=is_online,
            is_tracking=is_tracking,
            last_seen_ms=self._clock_ms(),
            driver_name=self._identity.driver_name,
            phone=self._identity.phone,
        )

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def start(self) -> LocationSample:
        """Validate provider access, publish the first sample and start watching.

        Valid from ``IDLE``, and from ``ERROR`` once no watch is alive
        (operator retry).

        Returns
        -------
        LocationSample
            The first published sample.

        Raises
        ------
        InvalidTransitionError
            The session is not idle.
        LiveTrackError
            Any provider or publish failure; the session is left in ``ERROR``.
        """
        async with self._transition_lock:
            state = self._session.state
            if state not in (TrackingState.IDLE, TrackingState.ERROR) or self._watch is not None:
                raise InvalidTransitionError(
                    f"Cannot start tracking while {state}",
                    state=state,
                    operation="start",
                )

            self._update(state=TrackingState.REQUESTING_PERMISSION, last_error=None)
            published = False
            status_written = False
            try:
                sample = await self._sampler.fetch_once(self._config.fetch_options())
                await self._publisher.publish(self._record(sample))
                published = True
                await self._publisher.update_driver_status(self._status(is_online=True, is_tracking=True))
                status_written = True
                self._watch = self._sampler.start_watch(
                    self._config.watch_options(),
                    self._on_sample_tick,
                    self._on_provider_error,
                )
            except LiveTrackError as exc:
                self._sampler.reset_estimator()
                await self._withdraw_after_failed_start(published=published, status_written=status_written)
                self._update(state=TrackingState.ERROR, last_error=exc)
                raise
            except asyncio.CancelledError:
                self._sampler.reset_estimator()
                await asyncio.shield(
                    self._withdraw_after_failed_start(published=published, status_written=status_written)
                )
                self._update(state=TrackingState.IDLE)
                raise

            self._update(
                state=TrackingState.TRACKING,
                started_at_ms=sample.timestamp_ms,
                samples_published=1,
            )
            return sample

    async def _withdraw_after_failed_start(self, *, published: bool, status_written: bool) -> None:
        """Undo the writes of a start that did not reach ``TRACKING``, best-effort."""
        try:
            if published:
                await self._publisher.deactivate(self._identity.route_id)
            if status_written:
                await self._publisher.update_driver_status(self._status(is_online=True, is_tracking=False))
        except PublishError:
            _logger.warning("Could not withdraw route %s after failed start", self._identity.route_id, exc_info=True)

    async def stop(self) -> None:
        """Stop watching, deactivate the route and mark the driver not tracking.

        Valid from ``TRACKING`` and ``ERROR``; a no-op from ``IDLE``. Safe when
        the watch already failed. After a failed ``start`` (``ERROR`` with no
        watch and nothing left published) it only returns to ``IDLE``, like
        :meth:`reset`. Write failures are reported to the error listeners and
        the session still ends in ``IDLE``.
        """
        async with self._transition_lock:
            if self._session.state == TrackingState.IDLE:
                return
            started = self._session.started_at_ms is not None
            if self._watch is None and not started:
                # Failed start: nothing was left published, so this is a reset.
                self._update(state=TrackingState.IDLE)
                return

            self._sampler.stop_watch(self._watch)
            self._watch = None
            await self._cancel_ticks()

            failures: list[PublishError] = []
            if started:
                try:
                    await self._publisher.deactivate(self._identity.route_id)
                except PublishError as exc:
                    failures.append(exc)
            try:
                await self._publisher.update_driver_status(self._status(is_online=True, is_tracking=False))
            except PublishError as exc:
                failures.append(exc)

            self._update(state=TrackingState.IDLE, started_at_ms=None)
            for failure in failures:
                self._report(failure)

    async def sign_off(self) -> None:
        """Stop tracking if needed and mark the driver fully offline.

        Raises
        ------
        PublishError
            The offline status could not be written.
        """
        await self.stop()
        async with self._transition_lock:
            await self._publisher.update_driver_status(self._status(is_online=False, is_tracking=False))

    def reset(self) -> None:
        """Return from ``ERROR`` to ``IDLE`` without retrying."""
        if self._session.state != TrackingState.ERROR or self._watch is not None:
            raise InvalidTransitionError(
                f"Cannot reset while {self._session.state}",
                state=self._session.state,
                operation="reset",
            )
        self._update(state=TrackingState.IDLE, started_at_ms=None)

    async def close(self) -> None:
        """Stop the session and release the sampler's provider."""
        await self.stop()
        await self._sampler.close()

    # ------------------------------------------------------------------
    # Sampler callbacks
    # ------------------------------------------------------------------

    def _on_sample_tick(self, sample: LocationSample) -> None:
        if self._watch is None:
            return
        if self._session.state == TrackingState.ERROR:
            # Provider recovered while the watch stayed alive.
            self._update(state=TrackingState.TRACKING)
        task = asyncio.get_running_loop().create_task(self._publish_tick(sample))
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)

    async def _publish_tick(self, sample: LocationSample) -> None:
        async with self._publish_lock:
            if self._watch is None:
                return
            try:
                await self._publisher.publish(self._record(sample))
            except PublishError as exc:
                self._report(exc)
                if self._config.abort_on_publish_failure:
                    self._sampler.stop_watch(self._watch)
                    self._watch = None
                    self._update(state=TrackingState.ERROR, last_error=exc)
                return
            self._update(samples_published=self._session.samples_published + 1)

    def _on_provider_error(self, error: LiveTrackError) -> None:
        if self._watch is None:
            return
        # The record stays active: the vehicle may still be moving through
        # a GPS dropout. Only an explicit stop deactivates it.
        self._update(state=TrackingState.ERROR, last_error=error)
        self._report(error)

    async def _cancel_ticks(self) -> None:
        ticks = list(self._ticks)
        for task in ticks:
            task.cancel()
        for task in ticks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
