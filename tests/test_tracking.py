from __future__ import annotations

import asyncio
from typing import Any

import pytest
from conftest import GANDHIPURAM, RS_PURAM, FakeProvider, ManualClock, make_fix, settle

from pylivetrack.config import TrackerConfig
from pylivetrack.exceptions import (
    InvalidTransitionError,
    LiveTrackError,
    PermissionDeniedError,
    ProviderFailureError,
    PublishError,
    StoreError,
    UnsupportedError,
)
from pylivetrack.geo import EstimatorState
from pylivetrack.models import DRIVERS, LIVE_LOCATIONS, Identity, TrackingSession, TrackingState
from pylivetrack.publisher import Publisher
from pylivetrack.sampler import Sampler
from pylivetrack.store import InMemoryLiveStore
from pylivetrack.tracking import TrackingSessionMachine

IDENTITY = Identity(driver_id="driver-1", vehicle_id="BUS-12", route_id="R1", driver_name="Ravi")


class _DriverWritesFail(InMemoryLiveStore):
    async def merge(self, collection: str, key: str, data: dict[str, Any]) -> dict[str, Any]:
        if collection == DRIVERS:
            raise StoreError("drivers collection is read-only", collection=collection, key=key)
        return await super().merge(collection, key, data)


class _DriverWritesHang(InMemoryLiveStore):
    async def merge(self, collection: str, key: str, data: dict[str, Any]) -> dict[str, Any]:
        if collection == DRIVERS:
            await asyncio.sleep(3600)
        return await super().merge(collection, key, data)


class _Harness:
    def __init__(
        self,
        provider: FakeProvider,
        store: InMemoryLiveStore,
        clock: ManualClock,
        config: TrackerConfig | None = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.clock = clock
        self.sampler = Sampler(provider, clock_ms=clock)
        self.machine = TrackingSessionMachine(
            self.sampler,
            Publisher(store, clock_ms=clock),
            IDENTITY,
            config,
            clock_ms=clock,
        )
        self.states: list[TrackingState] = []
        self.errors: list[LiveTrackError] = []
        self.machine.add_state_listener(self._on_state)
        self.machine.add_error_listener(self.errors.append)

    def _on_state(self, session: TrackingSession) -> None:
        self.states.append(session.state)

    def live(self) -> dict[str, Any]:
        return self.store.documents(LIVE_LOCATIONS)["R1"]

    def driver(self) -> dict[str, Any]:
        return self.store.documents(DRIVERS)["driver-1"]

    async def start(self) -> None:
        self.provider.steps.append(make_fix(*GANDHIPURAM))
        await self.machine.start()


@pytest.fixture
def harness(provider: FakeProvider, store: InMemoryLiveStore, clock: ManualClock) -> _Harness:
    return _Harness(provider, store, clock)


class TestStart:
    @pytest.mark.asyncio
    async def test_start_publishes_first_sample_and_watches(self, harness: _Harness) -> None:
        harness.provider.steps.append(make_fix(*GANDHIPURAM))

        sample = await harness.machine.start()

        assert harness.states == [TrackingState.REQUESTING_PERMISSION, TrackingState.TRACKING]
        assert sample.coord == GANDHIPURAM
        assert harness.live()["isActive"] is True
        assert harness.live()["latest"]["latitude"] == GANDHIPURAM[0]
        assert harness.driver()["isOnline"] is True
        assert harness.driver()["isTracking"] is True
        assert harness.machine.is_watching
        assert len(harness.provider.watches) == 1
        session = harness.machine.session
        assert session.started_at_ms == harness.clock.now
        assert session.samples_published == 1
        assert session.elapsed_ms(harness.clock.now + 5_000) == 5_000
        assert harness.errors == []

    @pytest.mark.asyncio
    async def test_start_uses_configured_options(self, provider: FakeProvider, store: InMemoryLiveStore, clock: ManualClock) -> None:
        config = TrackerConfig(fetch_timeout_ms=3_000, watch_max_cache_age_ms=0)
        harness = _Harness(provider, store, clock, config)

        await harness.start()

        fetch_options, watch_options = provider.options_seen
        assert fetch_options == config.fetch_options()
        assert watch_options == config.watch_options()

    @pytest.mark.asyncio
    async def test_permission_denied_raises_and_publishes_nothing(self, harness: _Harness) -> None:
        denied = PermissionDeniedError("Location permission denied")
        harness.provider.steps.append(denied)

        with pytest.raises(PermissionDeniedError):
            await harness.machine.start()

        assert harness.machine.state == TrackingState.ERROR
        assert harness.machine.session.last_error is denied
        assert harness.store.documents(LIVE_LOCATIONS) == {}
        assert harness.provider.watches == {}
        # Raised to the caller only, never also to the listeners.
        assert harness.errors == []

    @pytest.mark.asyncio
    async def test_unavailable_provider_is_unsupported(self, harness: _Harness) -> None:
        harness.provider.available = False

        with pytest.raises(UnsupportedError):
            await harness.machine.start()
        assert harness.machine.state == TrackingState.ERROR

    @pytest.mark.asyncio
    async def test_start_twice_is_rejected(self, harness: _Harness) -> None:
        await harness.start()

        with pytest.raises(InvalidTransitionError) as excinfo:
            await harness.start()
        assert excinfo.value.operation == "start"
        assert harness.machine.state == TrackingState.TRACKING

    @pytest.mark.asyncio
    async def test_retry_after_error(self, harness: _Harness) -> None:
        harness.provider.steps.append(PermissionDeniedError("denied"))
        with pytest.raises(PermissionDeniedError):
            await harness.machine.start()

        await harness.start()

        assert harness.machine.state == TrackingState.TRACKING
        assert harness.machine.session.last_error is None

    @pytest.mark.asyncio
    async def test_failed_status_write_withdraws_published_record(
        self, provider: FakeProvider, clock: ManualClock
    ) -> None:
        harness = _Harness(provider, _DriverWritesFail(), clock)

        with pytest.raises(PublishError):
            await harness.start()

        assert harness.machine.state == TrackingState.ERROR
        assert harness.live()["isActive"] is False
        assert provider.watches == {}

    @pytest.mark.asyncio
    async def test_cancelled_start_returns_to_idle(self, harness: _Harness) -> None:
        harness.provider.hang = True
        task = asyncio.create_task(harness.machine.start())
        await settle()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert harness.machine.state == TrackingState.IDLE
        assert harness.store.documents(LIVE_LOCATIONS) == {}

    @pytest.mark.asyncio
    async def test_cancel_during_status_write_withdraws_record(
        self, provider: FakeProvider, clock: ManualClock
    ) -> None:
        harness = _Harness(provider, _DriverWritesHang(), clock)
        provider.steps.append(make_fix(*GANDHIPURAM))
        task = asyncio.create_task(harness.machine.start())
        await settle()
        assert harness.live()["isActive"] is True

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert harness.machine.state == TrackingState.IDLE
        assert harness.live()["isActive"] is False
        assert harness.sampler.estimator_state == EstimatorState()
        assert provider.watches == {}

    @pytest.mark.asyncio
    async def test_retry_after_failed_publish_starts_with_provider_speed(self, harness: _Harness) -> None:
        harness.store.fail_next()
        with pytest.raises(PublishError):
            await harness.start()
        assert harness.sampler.estimator_state == EstimatorState()

        harness.clock.advance(60_000)
        harness.provider.steps.append(make_fix(*RS_PURAM, speed=0.0))
        sample = await harness.machine.start()

        assert sample.speed_kmh == 0.0
        assert harness.machine.state == TrackingState.TRACKING


class TestWatching:
    @pytest.mark.asyncio
    async def test_ticks_publish_latest_sample(self, harness: _Harness) -> None:
        await harness.start()

        harness.clock.advance(3_000)
        harness.provider.emit(make_fix(*RS_PURAM))
        await settle()

        latest = harness.live()["latest"]
        assert latest["latitude"] == RS_PURAM[0]
        assert latest["timestampMs"] == 4_000
        assert latest["speedKmh"] == pytest.approx(1787.1, abs=0.5)
        assert harness.machine.session.samples_published == 2

    @pytest.mark.asyncio
    async def test_provider_error_keeps_record_active_and_recovers(self, harness: _Harness) -> None:
        await harness.start()
        failure = ProviderFailureError("signal lost")

        harness.provider.fail(failure)

        assert harness.machine.state == TrackingState.ERROR
        assert harness.machine.session.last_error is failure
        assert harness.errors == [failure]
        assert harness.live()["isActive"] is True
        assert harness.machine.is_watching

        harness.clock.advance(1_000)
        harness.provider.emit(make_fix(*RS_PURAM))
        await settle()

        assert harness.machine.state == TrackingState.TRACKING
        assert harness.machine.session.samples_published == 2

    @pytest.mark.asyncio
    async def test_publish_failure_is_reported_and_tracking_continues(self, harness: _Harness) -> None:
        await harness.start()
        harness.store.fail_next()

        harness.provider.emit(make_fix(*RS_PURAM))
        await settle()

        assert len(harness.errors) == 1
        assert isinstance(harness.errors[0], PublishError)
        assert harness.machine.state == TrackingState.TRACKING
        assert harness.machine.session.samples_published == 1
        assert harness.machine.is_watching

    @pytest.mark.asyncio
    async def test_publish_failure_aborts_when_configured(
        self, provider: FakeProvider, store: InMemoryLiveStore, clock: ManualClock
    ) -> None:
        harness = _Harness(provider, store, clock, TrackerConfig(abort_on_publish_failure=True))
        await harness.start()
        store.fail_next()

        provider.emit(make_fix(*RS_PURAM))
        await settle()

        assert harness.machine.state == TrackingState.ERROR
        assert not harness.machine.is_watching
        assert len(provider.cleared) == 1
        assert len(harness.errors) == 1

        await harness.machine.stop()
        assert harness.machine.state == TrackingState.IDLE
        assert harness.live()["isActive"] is False


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_deactivates_and_keeps_driver_online(self, harness: _Harness) -> None:
        await harness.start()
        watch_id = next(iter(harness.provider.watches))
        harness.clock.advance(10_000)

        await harness.machine.stop()

        assert harness.machine.state == TrackingState.IDLE
        assert harness.live()["isActive"] is False
        assert harness.live()["stoppedAtMs"] == 11_000
        assert harness.driver()["isOnline"] is True
        assert harness.driver()["isTracking"] is False
        assert harness.provider.cleared == [watch_id]
        assert harness.machine.session.started_at_ms is None

    @pytest.mark.asyncio
    async def test_stop_when_idle_is_noop(self, harness: _Harness) -> None:
        await harness.machine.stop()

        assert harness.states == []
        assert harness.store.documents(DRIVERS) == {}

    @pytest.mark.asyncio
    async def test_stop_after_failed_start_only_returns_to_idle(self, harness: _Harness) -> None:
        harness.provider.steps.append(PermissionDeniedError("denied"))
        with pytest.raises(PermissionDeniedError):
            await harness.machine.start()

        await harness.machine.stop()

        assert harness.machine.state == TrackingState.IDLE
        assert harness.store.documents(DRIVERS) == {}
        assert harness.store.documents(LIVE_LOCATIONS) == {}
        assert harness.errors == []

    @pytest.mark.asyncio
    async def test_stop_from_error(self, harness: _Harness) -> None:
        await harness.start()
        harness.provider.fail(ProviderFailureError("signal lost"))

        await harness.machine.stop()

        assert harness.machine.state == TrackingState.IDLE
        assert harness.live()["isActive"] is False

    @pytest.mark.asyncio
    async def test_late_samples_after_stop_are_dropped(self, harness: _Harness) -> None:
        await harness.start()
        watch_id = next(iter(harness.provider.watches))
        on_fix, _on_error = harness.provider.watches[watch_id]

        await harness.machine.stop()
        on_fix(make_fix(*RS_PURAM))
        await settle()

        assert harness.live()["isActive"] is False
        assert harness.live()["latest"]["latitude"] == GANDHIPURAM[0]

    @pytest.mark.asyncio
    async def test_stop_write_failures_are_reported(self, harness: _Harness) -> None:
        await harness.start()
        harness.store.set_available(False)

        await harness.machine.stop()

        assert harness.machine.state == TrackingState.IDLE
        assert len(harness.errors) == 2
        assert all(isinstance(error, PublishError) for error in harness.errors)

    @pytest.mark.asyncio
    async def test_sign_off_marks_driver_offline(self, harness: _Harness) -> None:
        await harness.start()

        await harness.machine.sign_off()

        assert harness.machine.state == TrackingState.IDLE
        assert harness.driver()["isOnline"] is False
        assert harness.driver()["isTracking"] is False

    @pytest.mark.asyncio
    async def test_sign_off_failure_is_raised(self, harness: _Harness) -> None:
        harness.store.set_available(False)

        with pytest.raises(PublishError):
            await harness.machine.sign_off()
        assert harness.errors == []


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_from_error(self, harness: _Harness) -> None:
        harness.provider.steps.append(PermissionDeniedError("denied"))
        with pytest.raises(PermissionDeniedError):
            await harness.machine.start()

        harness.machine.reset()

        assert harness.machine.state == TrackingState.IDLE

    @pytest.mark.asyncio
    async def test_reset_requires_error_state(self, harness: _Harness) -> None:
        with pytest.raises(InvalidTransitionError):
            harness.machine.reset()

    @pytest.mark.asyncio
    async def test_reset_refused_while_watch_alive(self, harness: _Harness) -> None:
        await harness.start()
        harness.provider.fail(ProviderFailureError("signal lost"))

        with pytest.raises(InvalidTransitionError):
            harness.machine.reset()


@pytest.mark.asyncio
async def test_context_manager_closes_provider(provider: FakeProvider, store: InMemoryLiveStore, clock: ManualClock) -> None:
    harness = _Harness(provider, store, clock)
    async with harness.machine as machine:
        await harness.start()
        assert machine.state == TrackingState.TRACKING

    assert provider.closed
    assert harness.live()["isActive"] is False


@pytest.mark.asyncio
async def test_listener_remover(harness: _Harness) -> None:
    seen: list[TrackingState] = []
    remove = harness.machine.add_state_listener(lambda session: seen.append(session.state))
    remove()

    await harness.start()

    assert seen == []
    assert harness.states == [TrackingState.REQUESTING_PERMISSION, TrackingState.TRACKING]
