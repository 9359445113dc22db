"""
Cluster spec validation.

Runs at the start of every reconciliation pass. A violation is terminal for
the pass: nothing is mutated and the problems are surfaced on status.
"""

from collections import Counter
from typing import List, Optional

from logoperator.cluster.spec import ClusterSpec
from logoperator.cluster.status import DOWNSCALE_PHASES, ClusterStatus
from logoperator.errors import ValidationError
from logoperator.resources.generator import compute_min_available
from logoperator.resources.quantity import parse_size


def validate_cluster(spec: ClusterSpec, status: Optional[ClusterStatus] = None) -> None:
    """
    Validate a cluster spec against its invariants and current status.

    Args:
        spec: Desired cluster spec
        status: Current status, used to reject reuse of retired broker ids

    Raises:
        ValidationError: With every problem found
    """
    problems: List[str] = []

    problems.extend(_check_broker_ids(spec, status))
    problems.extend(_check_broker_configs(spec))
    problems.extend(_check_listeners(spec))
    problems.extend(_check_rack_awareness(spec))
    problems.extend(_check_budgets(spec))

    if problems:
        raise ValidationError(problems)


def _check_broker_ids(spec: ClusterSpec, status: Optional[ClusterStatus]) -> List[str]:
    problems = []
    counts = Counter(spec.broker_ids())

    for broker_id, count in sorted(counts.items()):
        if count > 1:
            problems.append(f"duplicate broker id {broker_id}")
        if broker_id < 0:
            problems.append(f"broker id {broker_id} must not be negative")

    if status is not None:
        retired = set(status.retired_broker_ids)
        for broker_id in sorted(counts):
            if broker_id in retired:
                problems.append(f"broker id {broker_id} was retired and cannot be reused")
                continue
            state = status.brokers.get(broker_id)
            if state is not None and state.phase in DOWNSCALE_PHASES:
                problems.append(
                    f"broker id {broker_id} is being removed and cannot be re-added"
                )

    return problems


def _check_broker_configs(spec: ClusterSpec) -> List[str]:
    problems = []

    for broker in spec.brokers:
        group = broker.broker_config_group
        if group and group not in spec.broker_config_groups:
            problems.append(f"broker {broker.id} references unknown config group {group!r}")
            continue

        config = spec.effective_broker_config(broker)
        if not config.storage_configs:
            problems.append(f"broker {broker.id} has no storage configured")

        for storage in config.storage_configs:
            try:
                parse_size(storage.size)
            except ValueError:
                problems.append(
                    f"broker {broker.id} storage {storage.mount_path} has invalid size {storage.size!r}"
                )

    return problems


def _check_listeners(spec: ClusterSpec) -> List[str]:
    problems = []
    listeners = spec.listeners

    if not listeners.internal_listeners:
        problems.append("at least one internal listener is required")

    names = [l.name for l in listeners.internal_listeners] + [
        l.name for l in listeners.external_listeners
    ]
    for name, count in sorted(Counter(names).items()):
        if count > 1:
            problems.append(f"duplicate listener name {name!r}")

    ports = [l.container_port for l in listeners.internal_listeners] + [
        l.container_port for l in listeners.external_listeners
    ]
    for port, count in sorted(Counter(ports).items()):
        if count > 1:
            problems.append(f"listener port {port} is used more than once")

    inter_broker = [l for l in listeners.internal_listeners if l.used_for_inner_broker_communication]
    if listeners.internal_listeners and len(inter_broker) != 1:
        problems.append("exactly one internal listener must be used for inter-broker communication")

    controller = [l for l in listeners.internal_listeners if l.used_for_controller_communication]
    if len(controller) > 1:
        problems.append("at most one internal listener may be used for controller communication")

    return problems


def _check_rack_awareness(spec: ClusterSpec) -> List[str]:
    if spec.rack_awareness is None:
        return []

    problems = []
    labels = spec.rack_awareness.labels

    if not labels:
        problems.append("rack awareness is enabled but no labels are set")
    if len(set(labels)) != len(labels):
        problems.append("rack awareness labels must be unique")
    if len(labels) > len(spec.brokers):
        problems.append(
            f"rack awareness has {len(labels)} labels but only {len(spec.brokers)} brokers"
        )

    return problems


def _check_budgets(spec: ClusterSpec) -> List[str]:
    problems = []
    upgrade = spec.rolling_upgrade

    if upgrade.max_concurrent_restarts < 1:
        problems.append("rolling upgrade max_concurrent_restarts must be at least 1")
    if upgrade.failure_threshold < 0:
        problems.append("rolling upgrade failure_threshold must not be negative")

    try:
        compute_min_available(len(spec.brokers), spec.disruption_budget.budget)
    except ValueError as e:
        problems.append(str(e))

    defaults = spec.rebalancing.task_defaults
    if defaults.retry_cooldown_ms < 0:
        problems.append("rebalancing retry_cooldown_ms must not be negative")
    if defaults.backoff_multiplier < 1:
        problems.append("rebalancing backoff_multiplier must be at least 1")
    if defaults.max_attempts is not None and defaults.max_attempts < 1:
        problems.append("rebalancing max_attempts must be at least 1 when set")

    return problems
