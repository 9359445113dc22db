"""
State store client used by the reconciler.

Reads come from the watch cache once it is synced, writes go to the store
with the version token of the object that was read.
"""

from typing import List, Optional

from logoperator.cluster.model import Cluster
from logoperator.cluster.status import ClusterStatus
from logoperator.errors import NotFoundError
from logoperator.store.base import StateStore
from logoperator.store.cache import WatchCache


class StateStoreClient:
    """Typed access to cluster objects."""

    def __init__(self, store: StateStore, cache: Optional[WatchCache] = None):
        self.store = store
        self.cache = cache

    async def get(self, namespace: str, name: str) -> Optional[Cluster]:
        """
        Get a cluster, or None if it does not exist.

        Raises:
            TransientError: If the store is unavailable
        """
        if self.cache is not None and self.cache.synced:
            return self.cache.get(namespace, name)

        try:
            return await self.store.get(namespace, name)
        except NotFoundError:
            return None

    async def list(self, namespace: Optional[str] = None) -> List[Cluster]:
        if self.cache is not None and self.cache.synced:
            clusters = self.cache.list()
            if namespace:
                clusters = [c for c in clusters if c.namespace == namespace]
            return clusters
        return await self.store.list(namespace)

    async def update_status(self, cluster: Cluster, status: ClusterStatus) -> Cluster:
        """
        Write status using the version token of ``cluster``.

        Raises:
            ConflictError: If the object changed since it was read
        """
        updated = await self.store.update_status(
            cluster.namespace,
            cluster.name,
            status,
            expected_version=cluster.resource_version,
        )

        if self.cache is not None:
            self.cache.observe(updated)

        return updated
