"""
Auxiliary objects managed on behalf of a cluster.

Objects are plain values; the scheduler side decides how to store them.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

LABEL_APP = "app"
LABEL_CLUSTER = "kafka_cr"
LABEL_BROKER_ID = "brokerId"
APP_NAME = "kafka"

CONFIG_VERSION_ANNOTATION = "logoperator/config-version"
MOUNT_PATH_ANNOTATION = "mountPath"


class ResourceKind(str, Enum):
    """Kinds of objects rendered for a cluster."""

    CONFIG_MAP = "ConfigMap"
    SERVICE = "Service"
    DISRUPTION_BUDGET = "PodDisruptionBudget"
    STORAGE_CLAIM = "PersistentVolumeClaim"
    WORKLOAD = "Pod"


@dataclass
class Resource:
    """
    A rendered object.

    Attributes:
        kind: Object kind
        namespace: Namespace
        name: Object name, unique per kind and namespace
        labels: Selection labels
        annotations: Free-form annotations
        spec: Kind-specific body
    """
    kind: ResourceKind
    namespace: str
    name: str
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    spec: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.kind.value, self.namespace, self.name)

    def broker_id(self) -> Optional[int]:
        value = self.labels.get(LABEL_BROKER_ID)
        return int(value) if value is not None else None

    def matches(self, other: "Resource") -> bool:
        """True if ``other`` has the same labels, annotations and body."""
        return (
            self.labels == other.labels
            and self.annotations == other.annotations
            and self.spec == other.spec
        )

    def copy(self) -> "Resource":
        return Resource(
            kind=self.kind,
            namespace=self.namespace,
            name=self.name,
            labels=dict(self.labels),
            annotations=dict(self.annotations),
            spec=copy.deepcopy(self.spec),
        )


def cluster_labels(cluster_name: str) -> Dict[str, str]:
    return {LABEL_APP: APP_NAME, LABEL_CLUSTER: cluster_name}


def broker_labels(cluster_name: str, broker_id: int) -> Dict[str, str]:
    labels = cluster_labels(cluster_name)
    labels[LABEL_BROKER_ID] = str(broker_id)
    return labels


def workload_name(cluster_name: str, broker_id: int) -> str:
    return f"{cluster_name}-{broker_id}"


def config_map_name(cluster_name: str, broker_id: int) -> str:
    return f"{cluster_name}-config-{broker_id}"


def broker_service_name(cluster_name: str, broker_id: int) -> str:
    return f"{cluster_name}-{broker_id}"


def claim_name(cluster_name: str, broker_id: int, index: int) -> str:
    return f"{cluster_name}-{broker_id}-storage-{index}"


def all_broker_service_name(cluster_name: str) -> str:
    return f"{cluster_name}-all-broker"


def disruption_budget_name(cluster_name: str) -> str:
    return f"{cluster_name}-pdb"


def broker_host(cluster_name: str, namespace: str, broker_id: int) -> str:
    return f"{cluster_name}-{broker_id}.{namespace}.svc.cluster.local"
