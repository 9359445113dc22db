"""
In-memory scheduler backend.

Implements both ResourceClient and WorkloadScheduler. Used by the local
runner and by tests, which drive workload health and storage expansion
explicitly through the helper methods.
"""

import time
from typing import Callable, Dict, List, Optional, Tuple

from logoperator.errors import AlreadyExistsError, NotFoundError, TransientError
from logoperator.resources.objects import (
    CONFIG_VERSION_ANNOTATION,
    Resource,
    ResourceKind,
)
from logoperator.scheduler.base import (
    ResourceClient,
    WorkloadHealth,
    WorkloadScheduler,
    WorkloadStatus,
)
from logoperator.utils.logging import get_logger

logger = get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class InMemoryCluster(ResourceClient, WorkloadScheduler):
    """
    Scheduler held in process memory.

    Attributes:
        auto_ready: New workloads report ready immediately
        auto_expand: Expansion requests complete immediately
        available: False simulates an outage (TransientError on every call)
        mutations: Log of (operation, kind, name) for every write
    """

    def __init__(
        self,
        auto_ready: bool = True,
        auto_expand: bool = False,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.auto_ready = auto_ready
        self.auto_expand = auto_expand
        self.available = True
        self._clock = clock or _now_ms

        self._objects: Dict[Tuple[str, str, str], Resource] = {}
        self._health: Dict[Tuple[str, str], WorkloadStatus] = {}
        self._capacity: Dict[Tuple[str, str], str] = {}

        self.mutations: List[Tuple[str, str, str]] = []
        self.expansion_requests: List[Tuple[str, str]] = []

    def _check_available(self) -> None:
        if not self.available:
            raise TransientError("scheduler unavailable")

    def _record(self, operation: str, resource_key: Tuple[str, str, str]) -> None:
        kind, _, name = resource_key
        self.mutations.append((operation, kind, name))

    # ResourceClient

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> Optional[Resource]:
        self._check_available()
        resource = self._objects.get((kind.value, namespace, name))
        return resource.copy() if resource else None

    async def list(self, namespace: str, labels: Dict[str, str]) -> List[Resource]:
        self._check_available()
        found = []
        for (_, ns, _), resource in sorted(self._objects.items()):
            if ns != namespace:
                continue
            if all(resource.labels.get(k) == v for k, v in labels.items()):
                found.append(resource.copy())
        return found

    async def create(self, resource: Resource) -> None:
        self._check_available()
        if resource.key in self._objects:
            raise AlreadyExistsError(f"{resource.kind.value} {resource.name} already exists")

        self._objects[resource.key] = resource.copy()
        self._record("create", resource.key)

        if resource.kind == ResourceKind.WORKLOAD:
            self._start_workload(resource)
        elif resource.kind == ResourceKind.STORAGE_CLAIM:
            self._capacity[(resource.namespace, resource.name)] = resource.spec[
                "resources"]["requests"]["storage"]

    async def patch(self, resource: Resource) -> None:
        self._check_available()
        if resource.key not in self._objects:
            raise NotFoundError(f"{resource.kind.value} {resource.name} not found")

        self._objects[resource.key] = resource.copy()
        self._record("patch", resource.key)

    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        self._check_available()
        key = (kind.value, namespace, name)
        if key not in self._objects:
            return

        del self._objects[key]
        self._record("delete", key)

        if kind == ResourceKind.WORKLOAD:
            self._health.pop((namespace, name), None)
        elif kind == ResourceKind.STORAGE_CLAIM:
            self._capacity.pop((namespace, name), None)

    # WorkloadScheduler

    async def workload_status(self, namespace: str, name: str) -> WorkloadStatus:
        self._check_available()
        status = self._health.get((namespace, name))
        if status is None:
            return WorkloadStatus(name=name)
        return WorkloadStatus(
            name=status.name,
            health=status.health,
            config_version=status.config_version,
            ready_since=status.ready_since,
        )

    async def restart_workload(self, workload: Resource) -> None:
        await self.delete(workload.kind, workload.namespace, workload.name)
        await self.create(workload)

        logger.info(
            "Workload restarted",
            workload=workload.name,
            config_version=workload.annotations.get(CONFIG_VERSION_ANNOTATION, ""),
        )

    async def volume_capacity(self, namespace: str, claim_name: str) -> Optional[str]:
        self._check_available()
        return self._capacity.get((namespace, claim_name))

    async def expand_volume(self, namespace: str, claim_name: str, size: str) -> None:
        self._check_available()
        self.expansion_requests.append((claim_name, size))
        if self.auto_expand:
            self._capacity[(namespace, claim_name)] = size

    # Simulation helpers

    def _start_workload(self, resource: Resource) -> None:
        version = resource.annotations.get(CONFIG_VERSION_ANNOTATION, "")
        if self.auto_ready:
            status = WorkloadStatus(
                name=resource.name,
                health=WorkloadHealth.READY,
                config_version=version,
                ready_since=self._clock(),
            )
        else:
            status = WorkloadStatus(
                name=resource.name,
                health=WorkloadHealth.PENDING,
                config_version=version,
            )
        self._health[(resource.namespace, resource.name)] = status

    def mark_ready(self, namespace: str, name: str) -> None:
        status = self._health[(namespace, name)]
        if status.health != WorkloadHealth.READY:
            status.health = WorkloadHealth.READY
            status.ready_since = self._clock()

    def mark_failed(self, namespace: str, name: str) -> None:
        status = self._health[(namespace, name)]
        status.health = WorkloadHealth.FAILED
        status.ready_since = 0

    def complete_expansion(self, namespace: str, claim_name: str, size: str) -> None:
        self._capacity[(namespace, claim_name)] = size

    def objects(self, kind: Optional[ResourceKind] = None) -> List[Resource]:
        return [
            r.copy() for _, r in sorted(self._objects.items())
            if kind is None or r.kind == kind
        ]

    def has(self, kind: ResourceKind, namespace: str, name: str) -> bool:
        return (kind.value, namespace, name) in self._objects
