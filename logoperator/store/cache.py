"""
Watch-fed local cache of cluster objects.

Started once when the operator starts and stopped on shutdown; passed by
reference to every component that reads clusters.
"""

import asyncio
from typing import Callable, Dict, List, Optional

from logoperator.cluster.model import Cluster, cluster_key
from logoperator.store.base import StateStore, WatchEvent, WatchEventType
from logoperator.utils.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[[WatchEvent], None]


class WatchCache:
    """
    Local mirror of the state store.

    Entries only move forward: an event carrying an older resource version
    than the cached object is dropped.
    """

    def __init__(self, store: StateStore, namespace: str = ""):
        """
        Initialize watch cache.

        Args:
            store: Backing state store
            namespace: Restrict to one namespace (empty for all)
        """
        self._store = store
        self._namespace = namespace
        self._objects: Dict[str, Cluster] = {}
        self._listeners: List[Listener] = []

        self._queue: Optional[asyncio.Queue] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._running = False
        self.synced = False

        logger.info("WatchCache initialized", namespace=namespace or "*")

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def start(self) -> None:
        """Subscribe, list current objects and start applying events."""
        if self._running:
            return

        self._running = True

        # Subscribe before listing so no change between the two is missed
        self._queue = self._store.watch()

        for cluster in await self._store.list(self._namespace or None):
            self._apply(WatchEvent(type=WatchEventType.ADDED, cluster=cluster))

        self.synced = True
        self._watch_task = asyncio.create_task(self._watch_loop())

        logger.info("WatchCache started", objects=len(self._objects))

    async def stop(self) -> None:
        self._running = False

        if self._watch_task:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass

        if self._queue is not None:
            self._store.unwatch(self._queue)
            self._queue = None

        self.synced = False

        logger.info("WatchCache stopped")

    async def _watch_loop(self) -> None:
        while self._running:
            event = await self._queue.get()
            self._apply(event)

    def _apply(self, event: WatchEvent) -> None:
        cluster = event.cluster
        if self._namespace and cluster.namespace != self._namespace:
            return

        key = cluster.key
        cached = self._objects.get(key)

        if event.type == WatchEventType.DELETED:
            if cached is None:
                return
            del self._objects[key]
        else:
            if cached is not None and cached.resource_version >= cluster.resource_version:
                return
            self._objects[key] = cluster

        for listener in self._listeners:
            listener(event)

    def observe(self, cluster: Cluster) -> None:
        """Record an object this process just wrote, without notifying listeners."""
        cached = self._objects.get(cluster.key)
        if cached is None or cached.resource_version < cluster.resource_version:
            self._objects[cluster.key] = Cluster.from_dict(cluster.to_dict())

    def get(self, namespace: str, name: str) -> Optional[Cluster]:
        cached = self._objects.get(cluster_key(namespace, name))
        if cached is None:
            return None
        return Cluster.from_dict(cached.to_dict())

    def list(self) -> List[Cluster]:
        return [Cluster.from_dict(c.to_dict()) for _, c in sorted(self._objects.items())]
