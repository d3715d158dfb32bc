"""Deterministic in-memory shared store.

Documents are plain dicts keyed by ``(collection, key)``. Every committed
write is announced to listeners synchronously, after the new document is
visible to readers.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable
from typing import Any

from pylivetrack._redact import redact_for_log
from pylivetrack.exceptions import StoreError, StoreUnavailableError
from pylivetrack.store.base import ChangeListener, StoreChange

_logger = logging.getLogger(__name__)


def _merge_patch(target: dict[str, Any], patch: dict[str, Any]) -> None:
    """Apply a patch: keys in the patch overwrite, nested dicts merge."""

    for key, value in patch.items():
        existing = target.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            _merge_patch(existing, value)
        else:
            target[key] = copy.deepcopy(value)


class InMemoryLiveStore:
    """In-memory store implementing :class:`~pylivetrack.store.base.LiveStore`.

    ``fail_next`` and ``set_available`` let tests and simulations exercise
    rejected and unreachable writes.
    """

    def __init__(self, *, write_latency: float = 0.0) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._listeners: list[ChangeListener] = []
        self._write_latency = write_latency
        self._available = True
        self._pending_failures: list[StoreError] = []

    def set_available(self, available: bool) -> None:
        self._available = available

    def fail_next(self, error: StoreError | None = None) -> None:
        """Reject the next write with *error* (default: a generic rejection)."""
        self._pending_failures.append(error or StoreError("Write rejected by store"))

    def _check_writable(self, collection: str, key: str) -> None:
        if not self._available:
            raise StoreUnavailableError("Store unreachable", collection=collection, key=key)
        if self._pending_failures:
            error = self._pending_failures.pop(0)
            error.collection = error.collection or collection
            error.key = error.key or key
            raise error

    async def _write(self, collection: str, key: str, data: dict[str, Any], *, must_exist: bool) -> dict[str, Any]:
        if self._write_latency > 0:
            await asyncio.sleep(self._write_latency)
        self._check_writable(collection, key)

        documents = self._collections.setdefault(collection, {})
        before = documents.get(key)
        if before is None and must_exist:
            raise StoreError(f"No document {collection}/{key} to update", collection=collection, key=key)

        after = copy.deepcopy(before) if before is not None else {}
        _merge_patch(after, data)
        documents[key] = after
        _logger.debug("Store write %s/%s %s", collection, key, redact_for_log(data))

        self._notify(
            StoreChange(
                collection=collection,
                key=key,
                before=copy.deepcopy(before) if before is not None else None,
                after=copy.deepcopy(after),
            )
        )
        return copy.deepcopy(after)

    async def merge(self, collection: str, key: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self._write(collection, key, data, must_exist=False)

    async def update(self, collection: str, key: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self._write(collection, key, data, must_exist=True)

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        if not self._available:
            raise StoreUnavailableError("Store unreachable", collection=collection, key=key)
        document = self._collections.get(collection, {}).get(key)
        return copy.deepcopy(document) if document is not None else None

    def documents(self, collection: str) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self._collections.get(collection, {}))

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify(self, change: StoreChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                _logger.exception("Store change listener failed for %s/%s", change.collection, change.key)
