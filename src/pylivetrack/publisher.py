"""Live location publisher.

Writes the latest sample for a route into the shared store and maintains the
route's active flag. The publisher never retries: every store failure is
wrapped into :class:`~pylivetrack.exceptions.PublishError` and raised to the
caller, which owns the retry-or-abort decision.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from pylivetrack._redact import redact_for_log
from pylivetrack.exceptions import PublishError, StoreError
from pylivetrack.models.record import DRIVERS, LIVE_LOCATIONS, DriverStatus, LiveLocationRecord
from pylivetrack.store.base import LiveStore

_logger = logging.getLogger(__name__)


def _now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


class Publisher:
    """Keyed upsert-merge writer for live location and driver documents."""

    def __init__(
        self,
        store: LiveStore,
        *,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._clock_ms = clock_ms

    async def _write(self, collection: str, key: str, data: dict[str, Any], *, must_exist: bool = False) -> None:
        try:
            if must_exist:
                await self._store.update(collection, key, data)
            else:
                await self._store.merge(collection, key, data)
        except StoreError as exc:
            raise PublishError(f"Write to {collection}/{key} failed: {exc}", collection=collection, key=key) from exc
        except OSError as exc:
            raise PublishError(f"Store unreachable for {collection}/{key}: {exc}", collection=collection, key=key) from exc

    async def publish(self, record: LiveLocationRecord) -> None:
        """Upsert the record for ``record.route_id``.

        Fields are merged into any existing document; no prior read is
        needed. An active record always clears ``stopped_at_ms``.
        """
        document = record.to_document()
        if record.is_active:
            document["stoppedAtMs"] = None
        await self._write(LIVE_LOCATIONS, record.route_id, document)
        _logger.debug(
            "Published route=%s ts=%s active=%s",
            record.route_id,
            record.timestamp_ms,
            record.is_active,
        )

    async def deactivate(self, route_id: str) -> None:
        """Mark the route's record inactive, keeping its last sample."""
        stopped_at = self._clock_ms()
        await self._write(
            LIVE_LOCATIONS,
            route_id,
            {"isActive": False, "stoppedAtMs": stopped_at},
            must_exist=True,
        )
        _logger.debug("Deactivated route=%s at=%s", route_id, stopped_at)

    async def update_driver_status(self, status: DriverStatus) -> None:
        """Upsert the driver's presence document."""
        document = status.to_document(exclude_none=True)
        await self._write(DRIVERS, status.driver_id, document)
        _logger.debug("Driver status %s", redact_for_log(document))

    async def get_record(self, route_id: str) -> LiveLocationRecord | None:
        """Point read of the route's record."""
        try:
            document = await self._store.get(LIVE_LOCATIONS, route_id)
        except StoreError as exc:
            raise PublishError(f"Read of {LIVE_LOCATIONS}/{route_id} failed: {exc}", collection=LIVE_LOCATIONS, key=route_id) from exc
        if document is None:
            return None
        return LiveLocationRecord.from_document(document)
