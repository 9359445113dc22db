"""
Workload scheduler interfaces.

``ResourceClient`` stores auxiliary objects; ``WorkloadScheduler`` runs broker
workloads and reports their health and storage capacity.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from logoperator.resources.objects import Resource, ResourceKind


class WorkloadHealth(str, Enum):
    """Health signal reported per workload unit."""

    MISSING = "missing"      # No workload exists
    PENDING = "pending"      # Created, not ready yet
    READY = "ready"          # Passing readiness checks
    FAILED = "failed"        # Terminated or crash looping


@dataclass
class WorkloadStatus:
    """
    Observed state of one broker workload.

    Attributes:
        name: Workload name
        health: Health signal
        config_version: Configuration version the workload was created with
        ready_since: Time (ms) the workload became ready, 0 if not ready
    """
    name: str
    health: WorkloadHealth = WorkloadHealth.MISSING
    config_version: str = ""
    ready_since: int = 0

    @property
    def exists(self) -> bool:
        return self.health != WorkloadHealth.MISSING

    def ready_for(self, now_ms: int) -> int:
        """Milliseconds the workload has been continuously ready."""
        if self.health != WorkloadHealth.READY or self.ready_since == 0:
            return 0
        return max(0, now_ms - self.ready_since)


class ResourceClient(ABC):
    """CRUD access to auxiliary objects."""

    @abstractmethod
    async def get(self, kind: ResourceKind, namespace: str, name: str) -> Optional[Resource]:
        """Get an object, or None if it does not exist."""

    @abstractmethod
    async def list(self, namespace: str, labels: Dict[str, str]) -> List[Resource]:
        """List objects whose labels include ``labels``."""

    @abstractmethod
    async def create(self, resource: Resource) -> None:
        """Create an object. Creating an existing object is an error."""

    @abstractmethod
    async def patch(self, resource: Resource) -> None:
        """Replace labels, annotations and body of an existing object."""

    @abstractmethod
    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        """Delete an object. Deleting a missing object is a no-op."""


class WorkloadScheduler(ABC):
    """Runs broker workloads and their storage."""

    @abstractmethod
    async def workload_status(self, namespace: str, name: str) -> WorkloadStatus:
        """Health of a workload unit."""

    @abstractmethod
    async def restart_workload(self, workload: Resource) -> None:
        """Delete the running workload and create ``workload`` in its place."""

    @abstractmethod
    async def volume_capacity(self, namespace: str, claim_name: str) -> Optional[str]:
        """Provisioned capacity of a storage claim, None while unbound."""

    @abstractmethod
    async def expand_volume(self, namespace: str, claim_name: str, size: str) -> None:
        """Request expansion of a storage claim to ``size``."""
