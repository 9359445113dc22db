"""
State store access: interface, in-memory backend, watch cache and client.
"""

from logoperator.store.base import StateStore, WatchEvent, WatchEventType
from logoperator.store.cache import WatchCache
from logoperator.store.client import StateStoreClient
from logoperator.store.memory import InMemoryStateStore

__all__ = [
    "StateStore",
    "WatchEvent",
    "WatchEventType",
    "WatchCache",
    "StateStoreClient",
    "InMemoryStateStore",
]
