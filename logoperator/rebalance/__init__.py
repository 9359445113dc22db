"""
Rebalancing service integration: task client, task states and retry policy.
"""

from logoperator.rebalance.client import RebalanceTaskClient
from logoperator.rebalance.retry import RetryPolicy
from logoperator.rebalance.task import (
    TaskKind,
    TaskState,
    TaskStatus,
)

__all__ = [
    "RebalanceTaskClient",
    "RetryPolicy",
    "TaskKind",
    "TaskState",
    "TaskStatus",
]
