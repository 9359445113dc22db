"""
In-memory state store.

Objects are kept serialized so every read constructs fresh values, and every
write bumps a store-wide version counter used as the concurrency token.
"""

import asyncio
from typing import Dict, List, Optional

from logoperator.cluster.model import Cluster, cluster_key
from logoperator.cluster.spec import ClusterSpec
from logoperator.cluster.status import ClusterStatus
from logoperator.errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    TransientError,
)
from logoperator.store.base import StateStore, WatchEvent, WatchEventType
from logoperator.utils.logging import get_logger

logger = get_logger(__name__)


class InMemoryStateStore(StateStore):
    """
    State store held in process memory.

    Set ``available = False`` to simulate an outage: every call then raises
    TransientError.
    """

    def __init__(self):
        # key -> serialized Cluster
        self._objects: Dict[str, dict] = {}
        self._version = 0
        self._watchers: List[asyncio.Queue] = []
        self._lock = asyncio.Lock()

        self.available = True
        self.status_writes = 0

        logger.info("InMemoryStateStore initialized")

    def _check_available(self) -> None:
        if not self.available:
            raise TransientError("state store unavailable")

    def _load(self, key: str) -> Cluster:
        if key not in self._objects:
            raise NotFoundError(f"cluster {key} not found")
        return Cluster.from_dict(self._objects[key])

    def _save(self, cluster: Cluster, event_type: WatchEventType) -> Cluster:
        self._version += 1
        cluster.resource_version = self._version
        self._objects[cluster.key] = cluster.to_dict()
        self._notify(event_type, cluster.key)
        return Cluster.from_dict(self._objects[cluster.key])

    def _notify(self, event_type: WatchEventType, key: str, data: Optional[dict] = None) -> None:
        payload = data if data is not None else self._objects[key]
        for queue in self._watchers:
            queue.put_nowait(WatchEvent(type=event_type, cluster=Cluster.from_dict(payload)))

    async def get(self, namespace: str, name: str) -> Cluster:
        self._check_available()
        return self._load(cluster_key(namespace, name))

    async def list(self, namespace: Optional[str] = None) -> List[Cluster]:
        self._check_available()
        clusters = [Cluster.from_dict(data) for data in self._objects.values()]
        if namespace:
            clusters = [c for c in clusters if c.namespace == namespace]
        return sorted(clusters, key=lambda c: c.key)

    async def create(self, cluster: Cluster) -> Cluster:
        self._check_available()
        async with self._lock:
            if cluster.key in self._objects:
                raise AlreadyExistsError(f"cluster {cluster.key} already exists")

            stored = Cluster.from_dict(cluster.to_dict())
            created = self._save(stored, WatchEventType.ADDED)

            logger.info("Cluster created", cluster=cluster.key)
            return created

    async def update_spec(
        self,
        namespace: str,
        name: str,
        spec: ClusterSpec,
        expected_version: Optional[int] = None,
    ) -> Cluster:
        self._check_available()
        async with self._lock:
            key = cluster_key(namespace, name)
            current = self._load(key)

            if expected_version is not None and current.resource_version != expected_version:
                raise ConflictError(key, expected_version, current.resource_version)

            current.spec = ClusterSpec.from_dict(spec.to_dict())
            return self._save(current, WatchEventType.MODIFIED)

    async def update_status(
        self,
        namespace: str,
        name: str,
        status: ClusterStatus,
        expected_version: int,
    ) -> Cluster:
        self._check_available()
        async with self._lock:
            key = cluster_key(namespace, name)
            if key not in self._objects:
                raise NotFoundError(f"cluster {key} not found")

            current = self._load(key)
            if current.resource_version != expected_version:
                raise ConflictError(key, expected_version, current.resource_version)

            current.status = status.copy()
            self.status_writes += 1
            return self._save(current, WatchEventType.MODIFIED)

    async def delete(self, namespace: str, name: str) -> None:
        self._check_available()
        async with self._lock:
            key = cluster_key(namespace, name)
            if key not in self._objects:
                raise NotFoundError(f"cluster {key} not found")

            data = self._objects.pop(key)
            self._notify(WatchEventType.DELETED, key, data)

            logger.info("Cluster deleted", cluster=key)

    def watch(self) -> "asyncio.Queue[WatchEvent]":
        queue: asyncio.Queue = asyncio.Queue()
        self._watchers.append(queue)
        return queue

    def unwatch(self, queue: "asyncio.Queue[WatchEvent]") -> None:
        if queue in self._watchers:
            self._watchers.remove(queue)
