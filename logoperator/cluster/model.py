"""
The cluster object as stored: identity, spec, status and version token.
"""

from dataclasses import dataclass, field
from typing import Any, Dict

from logoperator.cluster.spec import ClusterSpec
from logoperator.cluster.status import ClusterStatus


def cluster_key(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


@dataclass
class Cluster:
    """
    A cluster object read from the state store.

    Attributes:
        namespace: Namespace of the object
        name: Cluster name
        spec: Desired state (externally owned)
        status: Observed state (owned by the reconciler)
        resource_version: Version token for optimistic concurrency
    """
    namespace: str
    name: str
    spec: ClusterSpec = field(default_factory=ClusterSpec)
    status: ClusterStatus = field(default_factory=ClusterStatus)
    resource_version: int = 0

    @property
    def key(self) -> str:
        return cluster_key(self.namespace, self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": {
                "namespace": self.namespace,
                "name": self.name,
                "resource_version": self.resource_version,
            },
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Cluster":
        metadata = data.get("metadata") or {}
        return cls(
            namespace=metadata.get("namespace", "default"),
            name=metadata["name"],
            spec=ClusterSpec.from_dict(data.get("spec") or {}),
            status=ClusterStatus.from_dict(data.get("status") or {}),
            resource_version=int(metadata.get("resource_version", 0)),
        )
