"""Shared store layer.

The store is the single place where live location and driver documents are
merged; the Subscription Engine reads its change feed.
"""

from pylivetrack.store.base import ChangeListener, LiveStore, StoreChange
from pylivetrack.store.memory import InMemoryLiveStore

__all__ = ["ChangeListener", "InMemoryLiveStore", "LiveStore", "StoreChange"]
