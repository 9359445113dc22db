"""
Broker lifecycle controller.

Moves one broker at a time through its lifecycle phases:

    Pending -> ConfigInSync                                 (initial broker)
    Pending -> GracefulUpscaleRunning -> GracefulUpscaleSucceeded -> ConfigInSync
    any -> GracefulDownscaleRunning -> GracefulDownscaleSucceeded   (removal)

Graceful phases are driven by tasks on the rebalancing service. Restarts are
owned by the rolling upgrade coordinator, not by this module.
"""

from typing import Optional

from logoperator.cluster.spec import BrokerSpec, ClusterSpec
from logoperator.cluster.status import (
    BrokerPhase,
    BrokerState,
    GracefulTaskPhase,
    VolumePhase,
    VolumeState,
)
from logoperator.errors import RebalanceRequestRejected, RebalanceServiceUnavailable
from logoperator.rebalance.client import RebalanceTaskClient
from logoperator.rebalance.retry import RetryPolicy
from logoperator.rebalance.task import TaskKind, TaskState
from logoperator.resources.generator import ResourceSetGenerator
from logoperator.resources.objects import workload_name
from logoperator.resources.quantity import is_larger
from logoperator.scheduler.base import WorkloadHealth, WorkloadScheduler
from logoperator.utils.logging import get_logger

logger = get_logger(__name__)


class BrokerLifecycleController:
    """
    Advances broker lifecycle state for one reconciliation pass.

    Created per pass with the spec being reconciled. Mutates the BrokerState
    objects it is given; the reconciler persists them.
    """

    def __init__(
        self,
        namespace: str,
        cluster_name: str,
        spec: ClusterSpec,
        generator: ResourceSetGenerator,
        scheduler: WorkloadScheduler,
        rebalance: Optional[RebalanceTaskClient],
        now_ms: int,
    ):
        """
        Initialize lifecycle controller.

        Args:
            namespace: Cluster namespace
            cluster_name: Cluster name
            spec: Cluster spec for this pass
            generator: Resource generator for this spec
            scheduler: Workload scheduler
            rebalance: Rebalancing client, None when rebalancing is disabled
            now_ms: Pass timestamp (ms)
        """
        self.namespace = namespace
        self.cluster_name = cluster_name
        self.spec = spec
        self.generator = generator
        self.scheduler = scheduler
        self.rebalance = rebalance
        self.now_ms = now_ms

        self.retry_policy = RetryPolicy(spec.rebalancing.task_defaults)

    @property
    def graceful(self) -> bool:
        return self.rebalance is not None and self.spec.rebalancing.enabled

    async def advance_member(self, broker: BrokerSpec, state: BrokerState, initial: bool) -> None:
        """
        Advance a broker that is present in the spec.

        Args:
            broker: Broker spec
            state: Broker state, mutated in place
            initial: Broker is part of the first set of brokers of the cluster
        """
        await self._sync_volumes(broker, state)

        phase = state.phase

        if phase == BrokerPhase.PENDING:
            await self._advance_pending(broker, state, initial)

        elif phase == BrokerPhase.GRACEFUL_UPSCALE_RUNNING:
            outcome = await self._drive_task(state, TaskKind.ADD_BROKER, broker.id)
            if outcome == TaskState.SUCCEEDED:
                self._transition(broker.id, state, BrokerPhase.GRACEFUL_UPSCALE_SUCCEEDED)

        elif phase == BrokerPhase.GRACEFUL_UPSCALE_SUCCEEDED:
            self._transition(broker.id, state, BrokerPhase.CONFIG_IN_SYNC)

        elif phase == BrokerPhase.CONFIG_IN_SYNC:
            await self._recover_applied_version(broker, state)

    async def advance_removal(self, broker_id: int, state: BrokerState) -> None:
        """
        Advance a broker that is in status but no longer in the spec.

        Its resources stay in place until GracefulDownscaleSucceeded; teardown
        happens on the following pass.
        """
        phase = state.phase

        if phase == BrokerPhase.GRACEFUL_DOWNSCALE_SUCCEEDED:
            return

        if phase == BrokerPhase.GRACEFUL_UPSCALE_RUNNING and state.graceful_action.has_outstanding_task():
            # Let the running upscale resolve before draining the broker
            outcome = await self._drive_task(state, TaskKind.ADD_BROKER, broker_id)
            if outcome is None:
                return

        state.clear_restart()

        if phase == BrokerPhase.PENDING or not self.graceful:
            # Never joined, or nothing to drain through
            state.graceful_action.reset()
            self._transition(broker_id, state, BrokerPhase.GRACEFUL_DOWNSCALE_SUCCEEDED)
            return

        if phase != BrokerPhase.GRACEFUL_DOWNSCALE_RUNNING:
            state.graceful_action.reset()
            self._transition(broker_id, state, BrokerPhase.GRACEFUL_DOWNSCALE_RUNNING)

        outcome = await self._drive_task(state, TaskKind.REMOVE_BROKER, broker_id)
        if outcome == TaskState.SUCCEEDED:
            self._transition(broker_id, state, BrokerPhase.GRACEFUL_DOWNSCALE_SUCCEEDED)

    async def _advance_pending(self, broker: BrokerSpec, state: BrokerState, initial: bool) -> None:
        status = await self.scheduler.workload_status(
            self.namespace, workload_name(self.cluster_name, broker.id)
        )
        if not status.exists:
            return

        if initial or not self.graceful:
            state.configuration_version = status.config_version
            self._transition(broker.id, state, BrokerPhase.CONFIG_IN_SYNC)
            return

        if status.health != WorkloadHealth.READY:
            return

        state.configuration_version = status.config_version
        state.graceful_action.reset()
        self._transition(broker.id, state, BrokerPhase.GRACEFUL_UPSCALE_RUNNING)

        await self._drive_task(state, TaskKind.ADD_BROKER, broker.id)

    async def _recover_applied_version(self, broker: BrokerSpec, state: BrokerState) -> None:
        """Adopt a desired version the running workload already carries."""
        desired = self.generator.configuration_version(broker)
        if state.configuration_version == desired:
            return

        status = await self.scheduler.workload_status(
            self.namespace, workload_name(self.cluster_name, broker.id)
        )
        if status.health == WorkloadHealth.READY and status.config_version == desired:
            logger.info(
                "Workload already runs desired configuration",
                broker_id=broker.id,
                config_version=desired,
            )
            state.configuration_version = desired

    async def _sync_volumes(self, broker: BrokerSpec, state: BrokerState) -> None:
        requested = self.generator.requested_volumes(broker)
        claims = self.generator.claim_names(broker)

        for mount_path in list(state.volumes):
            if mount_path not in requested:
                del state.volumes[mount_path]

        for mount_path, size in requested.items():
            volume = state.volumes.get(mount_path)
            if volume is None:
                volume = VolumeState(requested=size)
                state.volumes[mount_path] = volume

            capacity = await self.scheduler.volume_capacity(self.namespace, claims[mount_path])
            volume.provisioned = capacity or ""

            if capacity and is_larger(size, capacity):
                if volume.phase != VolumePhase.STORAGE_EXPANDING or volume.requested != size:
                    await self.scheduler.expand_volume(self.namespace, claims[mount_path], size)
                    logger.info(
                        "Storage expansion requested",
                        broker_id=broker.id,
                        mount_path=mount_path,
                        provisioned=capacity,
                        requested=size,
                    )
                volume.phase = VolumePhase.STORAGE_EXPANDING
            else:
                # Unknown capacity counts as in sync; claims are never shrunk
                volume.phase = VolumePhase.IN_SYNC

            volume.requested = size

    async def _drive_task(
        self,
        state: BrokerState,
        kind: TaskKind,
        broker_id: int,
    ) -> Optional[TaskState]:
        """
        Submit or poll the broker's rebalancing task.

        Returns:
            SUCCEEDED or FAILED once the task resolved (FAILED also while a
            failed task is held), None while it is outstanding or the service
            is unreachable
        """
        action = state.graceful_action

        if action.has_outstanding_task():
            try:
                status = await self.rebalance.status(action.task_id)
            except RebalanceServiceUnavailable as e:
                logger.warning(
                    "Rebalancing service unavailable, keeping task phase",
                    broker_id=broker_id,
                    task_id=action.task_id,
                    error=str(e),
                )
                return None
            except RebalanceRequestRejected as e:
                self._record_failure(broker_id, state, str(e))
                return TaskState.FAILED

            if status.task_id != action.task_id:
                logger.debug("Discarding stale task status", task_id=status.task_id)
                return None

            if status.state == TaskState.SUCCEEDED:
                action.task_id = ""
                action.task_phase = GracefulTaskPhase.SUCCEEDED
                action.error_message = ""
                logger.info("Rebalance task succeeded", broker_id=broker_id, kind=kind.value)
                return TaskState.SUCCEEDED

            if status.state == TaskState.FAILED:
                self._record_failure(broker_id, state, status.reason)
                return TaskState.FAILED

            if status.state == TaskState.IN_PROGRESS:
                action.task_phase = GracefulTaskPhase.RUNNING
            return None

        if action.task_phase == GracefulTaskPhase.FAILED:
            if not self.retry_policy.should_resubmit(
                action.last_failure_at, action.attempts, self.now_ms
            ):
                return TaskState.FAILED

        if action.task_phase == GracefulTaskPhase.SUCCEEDED and action.task_kind == kind.value:
            return TaskState.SUCCEEDED

        try:
            task_id = await self.rebalance.submit(kind, broker_id)
        except RebalanceServiceUnavailable as e:
            logger.warning(
                "Rebalancing service unavailable, task not submitted",
                broker_id=broker_id,
                kind=kind.value,
                error=str(e),
            )
            return None
        except RebalanceRequestRejected as e:
            action.attempts += 1
            action.task_kind = kind.value
            self._record_failure(broker_id, state, str(e))
            return TaskState.FAILED

        action.task_id = task_id
        action.task_kind = kind.value
        action.task_phase = GracefulTaskPhase.REQUESTED
        action.error_message = ""
        action.attempts += 1
        return None

    def _record_failure(self, broker_id: int, state: BrokerState, reason: str) -> None:
        action = state.graceful_action
        action.task_id = ""
        action.task_phase = GracefulTaskPhase.FAILED
        action.error_message = reason
        action.last_failure_at = self.now_ms

        if self.retry_policy.exhausted(action.attempts):
            logger.error(
                "Rebalance task failed, no attempts left",
                broker_id=broker_id,
                kind=action.task_kind,
                attempts=action.attempts,
                reason=reason,
            )
        else:
            logger.warning(
                "Rebalance task failed, holding broker",
                broker_id=broker_id,
                kind=action.task_kind,
                attempts=action.attempts,
                retry_at=self.retry_policy.next_attempt_at(action.last_failure_at, action.attempts),
                reason=reason,
            )

    def _transition(self, broker_id: int, state: BrokerState, phase: BrokerPhase) -> None:
        logger.info(
            "Broker phase changed",
            broker_id=broker_id,
            old_phase=state.phase.value,
            new_phase=phase.value,
        )
        state.phase = phase
