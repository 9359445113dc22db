"""
One reconciliation pass for one cluster.

Each pass reads the cluster, validates it, tears down drained brokers,
converges auxiliary objects, advances broker lifecycles, runs the rolling
upgrade coordinator and writes status back if it changed.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from logoperator.cluster.model import Cluster
from logoperator.cluster.spec import ClusterSpec
from logoperator.cluster.status import (
    BrokerPhase,
    BrokerState,
    ClusterPhase,
    ClusterStatus,
)
from logoperator.cluster.validation import validate_cluster
from logoperator.controller.lifecycle import BrokerLifecycleController
from logoperator.controller.upgrade import RollingUpgradeCoordinator, UpgradeProgress
from logoperator.errors import (
    ConflictError,
    NonRetryableError,
    TransientError,
    ValidationError,
)
from logoperator.rebalance.client import RebalanceTaskClient
from logoperator.resources.generator import ResourceSetGenerator
from logoperator.resources.objects import (
    Resource,
    ResourceKind,
    broker_labels,
    workload_name,
)
from logoperator.resources.quantity import is_larger
from logoperator.scheduler.base import ResourceClient, WorkloadScheduler
from logoperator.store.client import StateStoreClient
from logoperator.utils.config import OperatorConfig
from logoperator.utils.logging import bind_cluster, get_logger, unbind_cluster

logger = get_logger(__name__)

RebalanceClientFactory = Callable[[str], RebalanceTaskClient]


class ResultAction(str, Enum):
    """What the runtime should do after a pass."""

    CONVERGED = "converged"     # Nothing left to do until the next trigger
    REQUEUE = "requeue"         # Run again after a delay
    FAILED = "failed"           # Terminal until the spec changes


@dataclass
class ReconcileResult:
    """
    Outcome of a reconciliation pass.

    Attributes:
        action: Follow-up action
        after_ms: Requeue delay when action is REQUEUE
        error: Terminal error when action is FAILED
    """
    action: ResultAction
    after_ms: int = 0
    error: Optional[Exception] = None

    @classmethod
    def converged(cls) -> "ReconcileResult":
        return cls(action=ResultAction.CONVERGED)

    @classmethod
    def requeue(cls, after_ms: int) -> "ReconcileResult":
        return cls(action=ResultAction.REQUEUE, after_ms=after_ms)

    @classmethod
    def failed(cls, error: Exception) -> "ReconcileResult":
        return cls(action=ResultAction.FAILED, error=error)


class Reconciler:
    """
    Drives one cluster toward its spec.

    A pass never blocks waiting on an external condition: anything not yet
    true results in a requeue.
    """

    def __init__(
        self,
        store: StateStoreClient,
        resources: ResourceClient,
        scheduler: WorkloadScheduler,
        settings: Optional[OperatorConfig] = None,
        rebalance_factory: Optional[RebalanceClientFactory] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize reconciler.

        Args:
            store: State store client
            resources: Auxiliary object client
            scheduler: Workload scheduler
            settings: Operator settings
            rebalance_factory: Builds a rebalancing client from a base URL
            clock: Millisecond clock
        """
        self.store = store
        self.resources = resources
        self.scheduler = scheduler
        self.settings = settings or OperatorConfig()
        self._rebalance_factory = rebalance_factory or self._default_rebalance_client
        self._clock = clock or (lambda: int(time.time() * 1000))

        # cluster key -> (url, client)
        self._rebalance_clients: Dict[str, tuple] = {}

    def _default_rebalance_client(self, url: str) -> RebalanceTaskClient:
        return RebalanceTaskClient(url, timeout_ms=self.settings.rebalance_timeout_ms)

    async def close(self) -> None:
        for _, client in self._rebalance_clients.values():
            await client.close()
        self._rebalance_clients.clear()

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """
        Run one pass.

        Args:
            namespace: Cluster namespace
            name: Cluster name

        Returns:
            converged, requeue(after_ms) or failed(error)
        """
        bind_cluster(namespace, name)
        try:
            return await self._reconcile(namespace, name)

        except ConflictError as e:
            logger.info("Status write conflicted, requeueing", error=str(e))
            return ReconcileResult.requeue(0)

        except TransientError as e:
            logger.warning("Transient error, requeueing", error=str(e))
            return ReconcileResult.requeue(self.settings.requeue_interval_ms)

        except NonRetryableError as e:
            logger.error("Reconciliation failed", error=str(e))
            return ReconcileResult.failed(e)

        finally:
            unbind_cluster()

    async def _reconcile(self, namespace: str, name: str) -> ReconcileResult:
        cluster = await self.store.get(namespace, name)
        if cluster is None:
            await self._drop_rebalance_client(f"{namespace}/{name}")
            logger.debug("Cluster not found, nothing to do")
            return ReconcileResult.converged()

        spec = cluster.spec
        original = cluster.status
        status = original.copy()

        try:
            validate_cluster(spec, original)
        except ValidationError as e:
            status.phase = ClusterPhase.VALIDATION_FAILED
            status.message = str(e)
            await self._write_status(cluster, original, status)

            logger.warning("Cluster spec invalid", problems=e.problems)
            return ReconcileResult.failed(e)

        now_ms = self._clock()
        generator = ResourceSetGenerator(namespace, name, spec)

        await self._teardown_drained_brokers(cluster, status)
        await self._apply_resources(generator)

        rebalance = self._rebalance_client(cluster) if spec.rebalancing.enabled else None
        lifecycle = BrokerLifecycleController(
            namespace, name, spec, generator, self.scheduler, rebalance, now_ms
        )

        initial = not status.brokers
        for broker in spec.brokers:
            state = status.brokers.get(broker.id)
            if state is None:
                state = BrokerState()
                status.brokers[broker.id] = state
                logger.info("Broker added", broker_id=broker.id, initial=initial)
            await lifecycle.advance_member(broker, state, initial)

        spec_ids = set(spec.broker_ids())
        for broker_id in sorted(set(status.brokers) - spec_ids):
            await lifecycle.advance_removal(broker_id, status.brokers[broker_id])

        coordinator = RollingUpgradeCoordinator(
            namespace,
            name,
            spec,
            generator,
            self.scheduler,
            stability_window_ms=self.settings.stability_window_ms,
            readiness_timeout_ms=self.settings.readiness_timeout_ms,
            now_ms=now_ms,
        )
        progress = await coordinator.run(status)

        self._set_cluster_phase(spec, status, progress)
        await self._write_status(cluster, original, status)

        if status.phase == ClusterPhase.RUNNING:
            return ReconcileResult.converged()
        return ReconcileResult.requeue(self.settings.requeue_interval_ms)

    async def reset_rolling_upgrade(self, namespace: str, name: str) -> Optional[Cluster]:
        """
        Clear readiness failures so a halted rolling upgrade can continue.

        Returns:
            Updated cluster, or None if it does not exist

        Raises:
            ConflictError: If the cluster changed concurrently
        """
        cluster = await self.store.get(namespace, name)
        if cluster is None:
            return None

        status = cluster.status.copy()
        status.rolling_upgrade.error_count = 0
        for state in status.brokers.values():
            state.readiness_failed = False
        if status.phase == ClusterPhase.ROLLING_UPGRADE_HALTED:
            status.phase = ClusterPhase.ROLLING_UPGRADING
            status.message = ""

        logger.info("Rolling upgrade reset", cluster=cluster.key)
        return await self.store.update_status(cluster, status)

    async def _teardown_drained_brokers(self, cluster: Cluster, status: ClusterStatus) -> None:
        """Delete everything owned by brokers whose persisted phase is GracefulDownscaleSucceeded."""
        drained = [
            broker_id for broker_id, state in sorted(cluster.status.brokers.items())
            if state.phase == BrokerPhase.GRACEFUL_DOWNSCALE_SUCCEEDED
        ]

        for broker_id in drained:
            await self.resources.delete(
                ResourceKind.WORKLOAD, cluster.namespace, workload_name(cluster.name, broker_id)
            )
            owned = await self.resources.list(cluster.namespace, broker_labels(cluster.name, broker_id))
            for resource in owned:
                await self.resources.delete(resource.kind, resource.namespace, resource.name)

            status.brokers.pop(broker_id, None)
            if broker_id not in status.retired_broker_ids:
                status.retired_broker_ids.append(broker_id)

            logger.info("Broker torn down", broker_id=broker_id, deleted=len(owned) + 1)

    async def _apply_resources(self, generator: ResourceSetGenerator) -> None:
        """Create missing objects and patch differing ones."""
        for desired in generator.desired_resources():
            existing = await self.resources.get(desired.kind, desired.namespace, desired.name)

            if existing is None:
                await self.resources.create(desired)
                logger.info("Created resource", kind=desired.kind.value, name=desired.name)
                continue

            # Workloads are restarted by the coordinator, never patched
            if desired.kind == ResourceKind.WORKLOAD:
                continue

            if desired.kind == ResourceKind.STORAGE_CLAIM:
                desired = _without_shrink(desired, existing)

            if not existing.matches(desired):
                await self.resources.patch(desired)
                logger.info("Patched resource", kind=desired.kind.value, name=desired.name)

    def _rebalance_client(self, cluster: Cluster) -> RebalanceTaskClient:
        url = cluster.spec.rebalancing.url or self.settings.rebalance_url_template.format(
            name=cluster.name, namespace=cluster.namespace
        )

        cached = self._rebalance_clients.get(cluster.key)
        if cached is not None and cached[0] == url:
            return cached[1]

        client = self._rebalance_factory(url)
        self._rebalance_clients[cluster.key] = (url, client)
        return client

    async def _drop_rebalance_client(self, key: str) -> None:
        cached = self._rebalance_clients.pop(key, None)
        if cached is not None:
            await cached[1].close()

    def _set_cluster_phase(
        self,
        spec: ClusterSpec,
        status: ClusterStatus,
        progress: UpgradeProgress,
    ) -> None:
        status.message = ""

        if progress.halted:
            status.phase = ClusterPhase.ROLLING_UPGRADE_HALTED
            status.message = (
                f"rolling upgrade halted: {status.rolling_upgrade.error_count} broker(s) "
                f"failed readiness, failure threshold is {spec.rolling_upgrade.failure_threshold}"
            )
        elif progress.in_progress:
            status.phase = ClusterPhase.ROLLING_UPGRADING
        elif any(
            state.phase != BrokerPhase.CONFIG_IN_SYNC or not state.volumes_in_sync()
            for state in status.brokers.values()
        ):
            status.phase = ClusterPhase.RECONCILING
        else:
            status.phase = ClusterPhase.RUNNING

    async def _write_status(
        self,
        cluster: Cluster,
        original: ClusterStatus,
        status: ClusterStatus,
    ) -> None:
        if status.to_dict() == original.to_dict():
            return

        await self.store.update_status(cluster, status)

        logger.info(
            "Status updated",
            phase=status.phase.value,
            brokers={bid: s.phase.value for bid, s in sorted(status.brokers.items())},
        )


def _without_shrink(desired: Resource, existing: Resource) -> Resource:
    """Keep the existing claim size when the desired one is smaller."""
    current = existing.spec.get("resources", {}).get("requests", {}).get("storage", "")
    wanted = desired.spec["resources"]["requests"]["storage"]

    if current and is_larger(current, wanted):
        desired = desired.copy()
        desired.spec["resources"]["requests"]["storage"] = current
    return desired
