"""
Resource set generation: the auxiliary objects a cluster needs.
"""

from logoperator.resources.broker_config import parse_properties, render_broker_config
from logoperator.resources.generator import ResourceSetGenerator, compute_min_available
from logoperator.resources.objects import (
    CONFIG_VERSION_ANNOTATION,
    Resource,
    ResourceKind,
)
from logoperator.resources.quantity import is_larger, parse_size

__all__ = [
    "ResourceSetGenerator",
    "compute_min_available",
    "render_broker_config",
    "parse_properties",
    "Resource",
    "ResourceKind",
    "CONFIG_VERSION_ANNOTATION",
    "parse_size",
    "is_larger",
]
