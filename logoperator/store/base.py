"""
State store interface.

Typed CRUD and watch access to cluster objects keyed by namespace and name.
Spec and status are updated independently so a status write never clobbers
a concurrent user edit of the spec.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from logoperator.cluster.model import Cluster
from logoperator.cluster.spec import ClusterSpec
from logoperator.cluster.status import ClusterStatus


class WatchEventType(str, Enum):
    """Kinds of change notifications."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class WatchEvent:
    """A change to a cluster object."""
    type: WatchEventType
    cluster: Cluster


class StateStore(ABC):
    """Storage backend for cluster objects."""

    @abstractmethod
    async def get(self, namespace: str, name: str) -> Cluster:
        """
        Get a cluster object.

        Raises:
            NotFoundError: If the object does not exist
            TransientError: If the store is unavailable
        """

    @abstractmethod
    async def list(self, namespace: Optional[str] = None) -> List[Cluster]:
        """List cluster objects, optionally within one namespace."""

    @abstractmethod
    async def create(self, cluster: Cluster) -> Cluster:
        """
        Create a cluster object.

        Raises:
            AlreadyExistsError: If the object exists
        """

    @abstractmethod
    async def update_spec(
        self,
        namespace: str,
        name: str,
        spec: ClusterSpec,
        expected_version: Optional[int] = None,
    ) -> Cluster:
        """Replace the spec. Status is left untouched."""

    @abstractmethod
    async def update_status(
        self,
        namespace: str,
        name: str,
        status: ClusterStatus,
        expected_version: int,
    ) -> Cluster:
        """
        Replace the status if the object is still at ``expected_version``.

        Raises:
            ConflictError: If the object changed since it was read
        """

    @abstractmethod
    async def delete(self, namespace: str, name: str) -> None:
        """Delete a cluster object."""

    @abstractmethod
    def watch(self) -> "asyncio.Queue[WatchEvent]":
        """Subscribe to change events."""

    @abstractmethod
    def unwatch(self, queue: "asyncio.Queue[WatchEvent]") -> None:
        """Cancel a subscription."""
