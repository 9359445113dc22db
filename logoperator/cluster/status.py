"""
Observed cluster state.

Status is written only by the reconciler. Every field round-trips through
``to_dict``/``from_dict`` so a controller restart resumes from the stored
state alone.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List


class ClusterPhase(str, Enum):
    """Cluster-level phases."""

    RECONCILING = "Reconciling"                     # Converging resources or membership
    RUNNING = "Running"                             # Fully converged
    ROLLING_UPGRADING = "RollingUpgrading"          # Restarting stale brokers
    ROLLING_UPGRADE_HALTED = "RollingUpgradeHalted" # Failure threshold exceeded
    VALIDATION_FAILED = "ValidationFailed"          # Spec violates an invariant


class BrokerPhase(str, Enum):
    """Per-broker lifecycle phases."""

    PENDING = "Pending"
    CONFIG_IN_SYNC = "ConfigInSync"
    RECONCILING = "Reconciling"
    GRACEFUL_UPSCALE_RUNNING = "GracefulUpscaleRunning"
    GRACEFUL_UPSCALE_SUCCEEDED = "GracefulUpscaleSucceeded"
    GRACEFUL_DOWNSCALE_RUNNING = "GracefulDownscaleRunning"
    GRACEFUL_DOWNSCALE_SUCCEEDED = "GracefulDownscaleSucceeded"


DOWNSCALE_PHASES = (
    BrokerPhase.GRACEFUL_DOWNSCALE_RUNNING,
    BrokerPhase.GRACEFUL_DOWNSCALE_SUCCEEDED,
)


class GracefulTaskPhase(str, Enum):
    """Phase of the rebalancing task attached to a broker."""

    NONE = "None"
    REQUESTED = "Requested"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class VolumePhase(str, Enum):
    """Storage volume phases."""

    IN_SYNC = "InSync"
    STORAGE_EXPANDING = "StorageExpanding"


@dataclass
class VolumeState:
    """
    State of one broker data volume.

    Attributes:
        requested: Capacity requested by the spec
        provisioned: Capacity reported by the storage layer
        phase: InSync or StorageExpanding
    """
    requested: str
    provisioned: str = ""
    phase: VolumePhase = VolumePhase.IN_SYNC

    def to_dict(self) -> dict:
        return {
            "requested": self.requested,
            "provisioned": self.provisioned,
            "phase": self.phase.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VolumeState":
        return cls(
            requested=data["requested"],
            provisioned=data.get("provisioned", ""),
            phase=VolumePhase(data.get("phase", VolumePhase.IN_SYNC.value)),
        )


@dataclass
class GracefulActionState:
    """
    Rebalancing task bookkeeping for one broker.

    Attributes:
        task_id: Outstanding task id, empty if none
        task_kind: Kind of the last submitted task
        task_phase: Last known task phase
        error_message: Failure reason when task_phase is Failed
        attempts: Submissions made for the current graceful action
        last_failure_at: Timestamp (ms) of the last failure
    """
    task_id: str = ""
    task_kind: str = ""
    task_phase: GracefulTaskPhase = GracefulTaskPhase.NONE
    error_message: str = ""
    attempts: int = 0
    last_failure_at: int = 0

    def has_outstanding_task(self) -> bool:
        return bool(self.task_id)

    def reset(self) -> None:
        """Forget everything about the previous graceful action."""
        self.task_id = ""
        self.task_kind = ""
        self.task_phase = GracefulTaskPhase.NONE
        self.error_message = ""
        self.attempts = 0
        self.last_failure_at = 0

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "task_kind": self.task_kind,
            "task_phase": self.task_phase.value,
            "error_message": self.error_message,
            "attempts": self.attempts,
            "last_failure_at": self.last_failure_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GracefulActionState":
        return cls(
            task_id=data.get("task_id", ""),
            task_kind=data.get("task_kind", ""),
            task_phase=GracefulTaskPhase(data.get("task_phase", GracefulTaskPhase.NONE.value)),
            error_message=data.get("error_message", ""),
            attempts=int(data.get("attempts", 0)),
            last_failure_at=int(data.get("last_failure_at", 0)),
        )


@dataclass
class BrokerState:
    """
    Observed state of one broker.

    Attributes:
        configuration_version: Configuration version last applied
        phase: Lifecycle phase
        graceful_action: Rebalancing task bookkeeping
        volumes: Mount path -> volume state
        restart_started_at: When the current restart was triggered (ms)
        restart_target_version: Version the current restart applies
        readiness_failed: Counted as a readiness failure in this upgrade
    """
    configuration_version: str = ""
    phase: BrokerPhase = BrokerPhase.PENDING
    graceful_action: GracefulActionState = field(default_factory=GracefulActionState)
    volumes: Dict[str, VolumeState] = field(default_factory=dict)
    restart_started_at: int = 0
    restart_target_version: str = ""
    readiness_failed: bool = False

    def volumes_in_sync(self) -> bool:
        return all(v.phase == VolumePhase.IN_SYNC for v in self.volumes.values())

    def clear_restart(self) -> None:
        self.restart_started_at = 0
        self.restart_target_version = ""
        self.readiness_failed = False

    def to_dict(self) -> dict:
        return {
            "configuration_version": self.configuration_version,
            "phase": self.phase.value,
            "graceful_action": self.graceful_action.to_dict(),
            "volumes": {path: v.to_dict() for path, v in self.volumes.items()},
            "restart_started_at": self.restart_started_at,
            "restart_target_version": self.restart_target_version,
            "readiness_failed": self.readiness_failed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BrokerState":
        return cls(
            configuration_version=data.get("configuration_version", ""),
            phase=BrokerPhase(data.get("phase", BrokerPhase.PENDING.value)),
            graceful_action=GracefulActionState.from_dict(data.get("graceful_action") or {}),
            volumes={
                path: VolumeState.from_dict(v) for path, v in (data.get("volumes") or {}).items()
            },
            restart_started_at=int(data.get("restart_started_at", 0)),
            restart_target_version=data.get("restart_target_version", ""),
            readiness_failed=bool(data.get("readiness_failed", False)),
        )


@dataclass
class RollingUpgradeStatus:
    """
    Progress of the current rolling upgrade.

    Attributes:
        reconciling_count: Brokers currently mid-restart
        error_count: Brokers that failed readiness since the upgrade began
        change_set: Fingerprint of the desired configuration being rolled out
        target_versions: Broker id -> desired configuration version being rolled out
    """
    reconciling_count: int = 0
    error_count: int = 0
    change_set: str = ""
    target_versions: Dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "reconciling_count": self.reconciling_count,
            "error_count": self.error_count,
            "change_set": self.change_set,
            "target_versions": {str(bid): v for bid, v in sorted(self.target_versions.items())},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RollingUpgradeStatus":
        return cls(
            reconciling_count=int(data.get("reconciling_count", 0)),
            error_count=int(data.get("error_count", 0)),
            change_set=data.get("change_set", ""),
            target_versions={
                int(bid): v for bid, v in (data.get("target_versions") or {}).items()
            },
        )


@dataclass
class ClusterStatus:
    """
    Observed cluster state.

    Attributes:
        phase: Cluster-level phase
        message: Human-readable detail for ValidationFailed/RollingUpgradeHalted
        brokers: Broker id -> broker state
        rolling_upgrade: Rolling upgrade progress
        retired_broker_ids: Ids torn down after a graceful downscale
    """
    phase: ClusterPhase = ClusterPhase.RECONCILING
    message: str = ""
    brokers: Dict[int, BrokerState] = field(default_factory=dict)
    rolling_upgrade: RollingUpgradeStatus = field(default_factory=RollingUpgradeStatus)
    retired_broker_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "message": self.message,
            "brokers": {str(bid): s.to_dict() for bid, s in sorted(self.brokers.items())},
            "rolling_upgrade": self.rolling_upgrade.to_dict(),
            "retired_broker_ids": list(self.retired_broker_ids),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ClusterStatus":
        data = data or {}
        return cls(
            phase=ClusterPhase(data.get("phase", ClusterPhase.RECONCILING.value)),
            message=data.get("message", ""),
            brokers={
                int(bid): BrokerState.from_dict(s) for bid, s in (data.get("brokers") or {}).items()
            },
            rolling_upgrade=RollingUpgradeStatus.from_dict(data.get("rolling_upgrade") or {}),
            retired_broker_ids=[int(b) for b in data.get("retired_broker_ids", [])],
        )

    def copy(self) -> "ClusterStatus":
        return ClusterStatus.from_dict(self.to_dict())
