"""
Control loop: broker lifecycle, rolling upgrades, reconciliation passes and
the runtime that schedules them.
"""

from logoperator.controller.lifecycle import BrokerLifecycleController
from logoperator.controller.manager import ClusterManager
from logoperator.controller.reconciler import ReconcileResult, Reconciler, ResultAction
from logoperator.controller.upgrade import RollingUpgradeCoordinator, UpgradeProgress

__all__ = [
    "BrokerLifecycleController",
    "RollingUpgradeCoordinator",
    "UpgradeProgress",
    "Reconciler",
    "ReconcileResult",
    "ResultAction",
    "ClusterManager",
]
