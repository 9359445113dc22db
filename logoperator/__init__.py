"""
LogOperator - keeps a multi-broker distributed log cluster converged on its
declared topology.

Features:
- Declarative cluster spec with per-broker config groups and listeners
- Graceful broker upscale and downscale through an external rebalancing service
- Rolling restarts bounded by a concurrency budget and a failure threshold
- Storage expansion without shrinking existing claims
- Crash-safe progress: every decision is derived from persisted status
"""

__version__ = "0.1.0"
__author__ = "Horace Njoroge"

from logoperator import cluster, controller, rebalance, resources, scheduler, store

__all__ = [
    "cluster",
    "controller",
    "rebalance",
    "resources",
    "scheduler",
    "store",
]
