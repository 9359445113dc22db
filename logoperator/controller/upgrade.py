"""
Rolling upgrade coordinator.

Restarts brokers whose applied configuration version differs from the
desired one, never more at a time than the restart budget allows, and halts
once too many restarted brokers fail to become ready.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Dict, List

from logoperator.cluster.spec import ClusterSpec
from logoperator.cluster.status import BrokerPhase, BrokerState, ClusterStatus
from logoperator.resources.generator import ResourceSetGenerator
from logoperator.resources.objects import workload_name
from logoperator.scheduler.base import WorkloadHealth, WorkloadScheduler
from logoperator.utils.logging import get_logger

logger = get_logger(__name__)


def change_set_fingerprint(desired_versions: Dict[int, str]) -> str:
    """Fingerprint of the desired per-broker configuration versions."""
    payload = json.dumps({str(k): v for k, v in sorted(desired_versions.items())}, sort_keys=True)
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


@dataclass
class UpgradeProgress:
    """
    Outcome of one coordinator run.

    Attributes:
        halted: Failure threshold exceeded
        stale: Brokers still waiting for a restart
        reconciling: Brokers mid-restart
        started: Brokers restarted during this run
        completed: Brokers whose restart completed during this run
    """
    halted: bool = False
    stale: List[int] = field(default_factory=list)
    reconciling: List[int] = field(default_factory=list)
    started: List[int] = field(default_factory=list)
    completed: List[int] = field(default_factory=list)

    @property
    def in_progress(self) -> bool:
        return bool(self.stale or self.reconciling)


class RollingUpgradeCoordinator:
    """
    Sequences broker restarts for one reconciliation pass.

    Phases of a run:
    1. Detect readiness failures of brokers mid-restart
    2. Complete restarts that stayed ready for the stability window
    3. Stop if the failure threshold is exceeded
    4. Restart stale brokers up to the available budget, lowest id first
    """

    def __init__(
        self,
        namespace: str,
        cluster_name: str,
        spec: ClusterSpec,
        generator: ResourceSetGenerator,
        scheduler: WorkloadScheduler,
        stability_window_ms: int,
        readiness_timeout_ms: int,
        now_ms: int,
    ):
        self.namespace = namespace
        self.cluster_name = cluster_name
        self.spec = spec
        self.generator = generator
        self.scheduler = scheduler
        self.stability_window_ms = stability_window_ms
        self.readiness_timeout_ms = readiness_timeout_ms
        self.now_ms = now_ms

    async def run(self, status: ClusterStatus) -> UpgradeProgress:
        """
        Run the coordinator against a status, mutating it in place.

        Args:
            status: Cluster status for this pass

        Returns:
            Progress summary
        """
        progress = UpgradeProgress()
        upgrade = status.rolling_upgrade
        budget = self.spec.rolling_upgrade

        desired = {b.id: self.generator.configuration_version(b) for b in self.spec.brokers}
        # Only a new target for a broker already being rolled out is a new change
        # set; brokers joining or leaving keep the failure count
        retargeted = sorted(
            bid for bid, version in desired.items()
            if bid in upgrade.target_versions and upgrade.target_versions[bid] != version
        )
        if retargeted:
            if upgrade.error_count:
                logger.info(
                    "New change set, clearing readiness failures",
                    error_count=upgrade.error_count,
                    retargeted=retargeted,
                )
            upgrade.error_count = 0
            for state in status.brokers.values():
                state.readiness_failed = False
        upgrade.target_versions = dict(desired)
        upgrade.change_set = change_set_fingerprint(desired)

        members = {
            bid: status.brokers[bid] for bid in sorted(desired) if bid in status.brokers
        }

        for broker_id, state in members.items():
            if state.phase != BrokerPhase.RECONCILING:
                continue

            if state.restart_target_version != desired[broker_id]:
                # Desired configuration moved on mid-restart; restart onto the new one
                await self._restart(broker_id, state, desired[broker_id])
                progress.reconciling.append(broker_id)
                continue

            workload = await self.scheduler.workload_status(
                self.namespace, workload_name(self.cluster_name, broker_id)
            )

            timed_out = (
                workload.health != WorkloadHealth.READY
                and self.now_ms - state.restart_started_at > self.readiness_timeout_ms
            )
            if workload.health == WorkloadHealth.FAILED or timed_out:
                if not state.readiness_failed:
                    state.readiness_failed = True
                    upgrade.error_count += 1
                    logger.warning(
                        "Broker failed readiness after restart",
                        broker_id=broker_id,
                        health=workload.health.value,
                        timed_out=timed_out,
                        error_count=upgrade.error_count,
                    )
                progress.reconciling.append(broker_id)
                continue

            stable = (
                workload.config_version == state.restart_target_version
                and workload.ready_for(self.now_ms) >= self.stability_window_ms
            )
            if stable:
                state.configuration_version = state.restart_target_version
                state.phase = BrokerPhase.CONFIG_IN_SYNC
                state.clear_restart()
                progress.completed.append(broker_id)

                logger.info(
                    "Broker restart completed",
                    broker_id=broker_id,
                    config_version=state.configuration_version,
                )
            else:
                progress.reconciling.append(broker_id)

        progress.stale = [
            broker_id for broker_id, state in members.items()
            if state.phase == BrokerPhase.CONFIG_IN_SYNC
            and state.configuration_version != desired[broker_id]
            and state.volumes_in_sync()
        ]

        if upgrade.error_count > budget.failure_threshold:
            progress.halted = True
            upgrade.reconciling_count = len(progress.reconciling)
            logger.error(
                "Rolling upgrade halted",
                error_count=upgrade.error_count,
                failure_threshold=budget.failure_threshold,
                reconciling=progress.reconciling,
            )
            return progress

        available = max(0, budget.max_concurrent_restarts - len(progress.reconciling))

        for broker_id in progress.stale[:available]:
            await self._restart(broker_id, members[broker_id], desired[broker_id])
            progress.started.append(broker_id)

        progress.stale = [b for b in progress.stale if b not in progress.started]
        progress.reconciling.extend(progress.started)
        upgrade.reconciling_count = len(progress.reconciling)

        if not progress.in_progress:
            upgrade.error_count = 0

        return progress

    async def _restart(self, broker_id: int, state: BrokerState, desired_version: str) -> None:
        broker = self.spec.get_broker(broker_id)
        workload = self.generator.workload(broker)

        state.phase = BrokerPhase.RECONCILING
        state.restart_started_at = self.now_ms
        state.restart_target_version = desired_version
        state.readiness_failed = False

        current = await self.scheduler.workload_status(self.namespace, workload.name)
        if current.exists and current.config_version == desired_version:
            logger.info(
                "Workload already carries desired configuration, waiting for readiness",
                broker_id=broker_id,
                config_version=desired_version,
            )
            return

        await self.scheduler.restart_workload(workload)

        logger.info(
            "Restarting broker",
            broker_id=broker_id,
            from_version=state.configuration_version,
            to_version=desired_version,
        )
