"""Live subscriptions over the shared store.

The engine keeps an explicit in-memory index of live location records,
updated from the store change feed on every write, and pushes recomputed
views to subscribers:

* route view: the newest active record for one route (or ``None``);
* fleet view: every active record, newest first.

Each subscription has its own delivery task and a one-slot mailbox, so
callbacks for one handle never overlap while different handles progress
independently. Bursts of writes collapse into the newest pending view; a view
equal to the last delivered one is never delivered again.
"""

from __future__ import annotations

import asyncio
import bisect
import contextlib
import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import ValidationError

from pylivetrack.models.record import LIVE_LOCATIONS, LiveLocationRecord
from pylivetrack.store.base import LiveStore, StoreChange

_logger = logging.getLogger(__name__)

V = TypeVar("V")

RouteCallback = Callable[[LiveLocationRecord | None], Awaitable[None] | None]
FleetCallback = Callable[[list[LiveLocationRecord]], Awaitable[None] | None]

_NOTHING: Any = object()


@dataclass(frozen=True, slots=True)
class SubscriptionHandle:
    """Opaque handle returned by the ``subscribe_*`` methods.

    ``route_id`` is ``None`` for fleet subscriptions.
    """

    subscription_id: int
    route_id: str | None = None


def _sort_key(key: str, record: LiveLocationRecord) -> tuple[int, str, str]:
    # Newest first; equal timestamps fall back to route then store key so a
    # given state always yields the same order.
    return (-record.timestamp_ms, record.route_id, key)


def _parse_record(key: str, document: dict[str, Any] | None) -> LiveLocationRecord | None:
    if document is None:
        return None
    try:
        return LiveLocationRecord.from_document(document)
    except ValidationError:
        _logger.debug("Ignoring malformed live location document %s", key, exc_info=True)
        return None


class _ActiveIndex:
    """Active records ordered by :func:`_sort_key`, per route and fleet-wide."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[tuple[int, str, str], LiveLocationRecord]] = {}
        self._fleet: list[tuple[int, str, str]] = []
        self._by_route: dict[str, list[tuple[int, str, str]]] = {}

    def discard(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        sort_key, record = entry
        self._fleet.pop(bisect.bisect_left(self._fleet, sort_key))
        route_keys = self._by_route[record.route_id]
        route_keys.pop(bisect.bisect_left(route_keys, sort_key))
        if not route_keys:
            del self._by_route[record.route_id]

    def put(self, key: str, record: LiveLocationRecord | None) -> None:
        self.discard(key)
        if record is None or not record.is_active:
            return
        sort_key = _sort_key(key, record)
        self._entries[key] = (sort_key, record)
        bisect.insort(self._fleet, sort_key)
        bisect.insort(self._by_route.setdefault(record.route_id, []), sort_key)

    def latest(self, route_id: str) -> LiveLocationRecord | None:
        route_keys = self._by_route.get(route_id)
        if not route_keys:
            return None
        return self._entries[route_keys[0][2]][1]

    def fleet(self) -> list[LiveLocationRecord]:
        return [self._entries[sort_key[2]][1] for sort_key in self._fleet]


class _Subscription(Generic[V]):
    """Serialized, coalescing delivery of one live view."""

    def __init__(
        self,
        handle: SubscriptionHandle,
        callback: Callable[[V], Awaitable[None] | None],
    ) -> None:
        self.handle = handle
        self._callback = callback
        self._pending: V = _NOTHING
        self._last_offered: V = _NOTHING
        self._last_delivered: V = _NOTHING
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False
        self._task = asyncio.get_running_loop().create_task(
            self._run(),
            name=f"livetrack-subscription-{handle.subscription_id}",
        )

    def offer(self, view: V) -> None:
        if self._closed or view == self._last_offered:
            return
        self._last_offered = view
        self._pending = view
        self._idle.clear()
        self._wakeup.set()

    async def _run(self) -> None:
        while not self._closed:
            await self._wakeup.wait()
            self._wakeup.clear()
            view, self._pending = self._pending, _NOTHING
            if view is not _NOTHING and not self._closed and view != self._last_delivered:
                self._last_delivered = view
                await self._deliver(view)
            if self._pending is _NOTHING:
                self._idle.set()

    async def _deliver(self, view: V) -> None:
        try:
            result = self._callback(view)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.exception("Subscription %d callback failed", self.handle.subscription_id)

    async def wait_idle(self) -> None:
        await self._idle.wait()

    def close(self) -> asyncio.Task[None]:
        self._closed = True
        self._pending = _NOTHING
        self._idle.set()
        self._task.cancel()
        return self._task


class SubscriptionEngine:
    """Route and fleet live views over a :class:`~pylivetrack.store.base.LiveStore`.

    Usage::

        engine = SubscriptionEngine(store)
        handle = engine.subscribe_route("R1", on_update)
        ...
        engine.unsubscribe(handle)
        await engine.close()
    """

    def __init__(self, store: LiveStore) -> None:
        self._store = store
        self._index = _ActiveIndex()
        self._ids = itertools.count(1)
        self._route_subs: dict[str, dict[int, _Subscription[LiveLocationRecord | None]]] = {}
        self._fleet_subs: dict[int, _Subscription[list[LiveLocationRecord]]] = {}
        self._closing: set[asyncio.Task[None]] = set()

        for key, document in store.documents(LIVE_LOCATIONS).items():
            self._index.put(key, _parse_record(key, document))
        self._detach: Callable[[], None] | None = store.add_listener(self._on_change)

    # ------------------------------------------------------------------
    # Point reads
    # ------------------------------------------------------------------

    def latest(self, route_id: str) -> LiveLocationRecord | None:
        """Newest active record for ``route_id``, or ``None``."""
        return self._index.latest(route_id)

    def fleet(self) -> list[LiveLocationRecord]:
        """All active records, newest first."""
        return self._index.fleet()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe_route(self, route_id: str, on_update: RouteCallback) -> SubscriptionHandle:
        """Follow the newest active record for ``route_id``.

        ``on_update`` receives the current view first, then every change to
        it; ``None`` means no active record exists for the route.
        """
        handle = SubscriptionHandle(subscription_id=next(self._ids), route_id=route_id)
        subscription: _Subscription[LiveLocationRecord | None] = _Subscription(handle, on_update)
        self._route_subs.setdefault(route_id, {})[handle.subscription_id] = subscription
        subscription.offer(self._index.latest(route_id))
        _logger.debug("Route subscription %d on %s", handle.subscription_id, route_id)
        return handle

    def subscribe_fleet(self, on_update: FleetCallback) -> SubscriptionHandle:
        """Follow every active record, newest first."""
        handle = SubscriptionHandle(subscription_id=next(self._ids))
        subscription: _Subscription[list[LiveLocationRecord]] = _Subscription(handle, on_update)
        self._fleet_subs[handle.subscription_id] = subscription
        subscription.offer(self._index.fleet())
        _logger.debug("Fleet subscription %d", handle.subscription_id)
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Release a live view. Idempotent; no callback runs afterwards."""
        subscription: _Subscription[Any] | None
        if handle.route_id is None:
            subscription = self._fleet_subs.pop(handle.subscription_id, None)
        else:
            route_subs = self._route_subs.get(handle.route_id, {})
            subscription = route_subs.pop(handle.subscription_id, None)
            if not route_subs:
                self._route_subs.pop(handle.route_id, None)
        if subscription is None:
            return
        task = subscription.close()
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
        _logger.debug("Unsubscribed %d", handle.subscription_id)

    async def drain(self) -> None:
        """Wait until every subscription has delivered its pending view."""
        subscriptions: list[_Subscription[Any]] = list(self._fleet_subs.values())
        for route_subs in self._route_subs.values():
            subscriptions.extend(route_subs.values())
        await asyncio.gather(*(subscription.wait_idle() for subscription in subscriptions))

    async def close(self) -> None:
        """Detach from the store and release every subscription."""
        if self._detach is not None:
            self._detach()
            self._detach = None
        for subscription_id in list(self._fleet_subs):
            self.unsubscribe(SubscriptionHandle(subscription_id=subscription_id))
        for route_id, route_subs in list(self._route_subs.items()):
            for subscription_id in list(route_subs):
                self.unsubscribe(SubscriptionHandle(subscription_id=subscription_id, route_id=route_id))
        for task in list(self._closing):
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ------------------------------------------------------------------
    # Change feed
    # ------------------------------------------------------------------

    def _on_change(self, change: StoreChange) -> None:
        if change.collection != LIVE_LOCATIONS:
            return
        previous = _parse_record(change.key, change.before)
        current = _parse_record(change.key, change.after)
        self._index.put(change.key, current)

        affected_routes = {record.route_id for record in (previous, current) if record is not None}
        for route_id in affected_routes:
            route_subs = self._route_subs.get(route_id)
            if not route_subs:
                continue
            view = self._index.latest(route_id)
            for subscription in list(route_subs.values()):
                subscription.offer(view)

        touches_fleet = any(record is not None and record.is_active for record in (previous, current))
        if touches_fleet and self._fleet_subs:
            fleet_view = self._index.fleet()
            for fleet_subscription in list(self._fleet_subs.values()):
                fleet_subscription.offer(fleet_view)
