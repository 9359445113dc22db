"""
Cluster data model: declarative spec, observed status and validation.
"""

from logoperator.cluster.spec import (
    BrokerConfig,
    BrokerSpec,
    ClusterSpec,
    DisruptionBudget,
    ExternalListener,
    InternalListener,
    ListenersConfig,
    RackAwareness,
    RebalanceTaskDefaults,
    RebalancingConfig,
    RollingUpgradeConfig,
    StorageConfig,
)
from logoperator.cluster.status import (
    BrokerPhase,
    BrokerState,
    ClusterPhase,
    ClusterStatus,
    GracefulActionState,
    GracefulTaskPhase,
    RollingUpgradeStatus,
    VolumePhase,
    VolumeState,
)
from logoperator.cluster.model import Cluster, cluster_key
from logoperator.cluster.validation import validate_cluster

__all__ = [
    # Spec
    "ClusterSpec",
    "BrokerSpec",
    "BrokerConfig",
    "StorageConfig",
    "ListenersConfig",
    "InternalListener",
    "ExternalListener",
    "RackAwareness",
    "RollingUpgradeConfig",
    "RebalancingConfig",
    "RebalanceTaskDefaults",
    "DisruptionBudget",
    # Status
    "ClusterStatus",
    "ClusterPhase",
    "BrokerState",
    "BrokerPhase",
    "GracefulActionState",
    "GracefulTaskPhase",
    "VolumeState",
    "VolumePhase",
    "RollingUpgradeStatus",
    # Object
    "Cluster",
    "cluster_key",
    # Validation
    "validate_cluster",
]
