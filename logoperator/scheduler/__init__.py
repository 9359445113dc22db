"""
Workload scheduler seam: object storage, workload health and volumes.
"""

from logoperator.scheduler.base import (
    ResourceClient,
    WorkloadHealth,
    WorkloadScheduler,
    WorkloadStatus,
)
from logoperator.scheduler.memory import InMemoryCluster

__all__ = [
    "ResourceClient",
    "WorkloadScheduler",
    "WorkloadHealth",
    "WorkloadStatus",
    "InMemoryCluster",
]
