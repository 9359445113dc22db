"""
Rebalancing task state.

Kinds, states and polled status of tasks run by the rebalancing service.
"""

from dataclasses import dataclass
from enum import Enum


class TaskKind(str, Enum):
    """Operations the rebalancing service runs."""

    ADD_BROKER = "add_broker"          # Move partitions onto new brokers
    REMOVE_BROKER = "remove_broker"    # Drain brokers before removal
    REBALANCE = "rebalance"            # Even out load across the cluster


class TaskState(str, Enum):
    """Task states as seen by the operator."""

    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


# Service-side status names
SERVICE_STATES = {
    "Active": TaskState.PENDING,
    "InExecution": TaskState.IN_PROGRESS,
    "Completed": TaskState.SUCCEEDED,
    "CompletedWithError": TaskState.FAILED,
}


@dataclass
class TaskStatus:
    """
    Status of one task.

    Attributes:
        task_id: Task id issued by the service
        state: Task state
        reason: Failure detail when state is Failed
    """
    task_id: str
    state: TaskState
    reason: str = ""

