"""Shared store contract.

The tracking core needs four operations from the store: keyed upsert-merge,
point read, a snapshot of a collection and change notification. How a store
persists or transports documents is not the core's concern.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class StoreChange:
    """A committed write, delivered to listeners after it is visible."""

    collection: str
    key: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None


ChangeListener = Callable[[StoreChange], None]


class LiveStore(Protocol):
    async def merge(self, collection: str, key: str, data: dict[str, Any]) -> dict[str, Any]:
        """Upsert *data* into the document, creating it when missing."""
        ...

    async def update(self, collection: str, key: str, data: dict[str, Any]) -> dict[str, Any]:
        """Merge *data* into an existing document; fail when missing."""
        ...

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        ...

    def documents(self, collection: str) -> dict[str, dict[str, Any]]:
        ...

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        ...
