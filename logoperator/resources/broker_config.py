"""
Per-broker configuration text.

Renders the ``key=value`` properties file handed to each broker. Keys the
operator manages always win over user supplied settings.
"""

from typing import Dict

from logoperator.cluster.spec import BrokerConfig, BrokerSpec, ClusterSpec
from logoperator.resources.objects import all_broker_service_name, broker_host

METRICS_REPORTER_CLASS = "com.linkedin.kafka.cruisecontrol.metricsreporter.CruiseControlMetricsReporter"


def parse_properties(text: str) -> Dict[str, str]:
    """
    Parse ``key=value`` lines, ignoring blanks and ``#`` comments.

    Args:
        text: Properties text

    Returns:
        Parsed properties
    """
    properties = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        properties[key.strip()] = value.strip()
    return properties


def render_broker_config(
    cluster_name: str,
    namespace: str,
    spec: ClusterSpec,
    broker: BrokerSpec,
    config: BrokerConfig,
) -> str:
    """
    Render the broker properties for one broker.

    Args:
        cluster_name: Cluster name
        namespace: Cluster namespace
        spec: Cluster spec
        broker: Broker being rendered
        config: The broker's effective config

    Returns:
        Sorted properties text, one ``key=value`` per line
    """
    properties = parse_properties(spec.read_only_config)
    properties.update(parse_properties(broker.config))

    properties.update(_managed_properties(cluster_name, namespace, spec, broker, config))

    return "\n".join(f"{key}={properties[key]}" for key in sorted(properties))


def _managed_properties(
    cluster_name: str,
    namespace: str,
    spec: ClusterSpec,
    broker: BrokerSpec,
    config: BrokerConfig,
) -> Dict[str, str]:
    listeners = spec.listeners
    host = broker_host(cluster_name, namespace, broker.id)
    external_host = f"{all_broker_service_name(cluster_name)}.{namespace}.svc.cluster.local"

    listener_entries = [
        f"{l.name.upper()}://:{l.container_port}" for l in listeners.internal_listeners
    ] + [
        f"{l.name.upper()}://:{l.container_port}" for l in listeners.external_listeners
    ]

    advertised = [
        f"{l.name.upper()}://{l.hostname or external_host}:{l.external_starting_port + broker.id}"
        for l in listeners.external_listeners
    ] + [
        f"{l.name.upper()}://{host}:{l.container_port}" for l in listeners.internal_listeners
    ]

    protocol_map = [
        f"{l.name.upper()}:{l.type.upper()}" for l in listeners.internal_listeners
    ] + [
        f"{l.name.upper()}:{l.type.upper()}" for l in listeners.external_listeners
    ]

    inter_broker = listeners.inter_broker_listener()
    controller = listeners.controller_listener() or inter_broker

    properties = {
        "broker.id": str(broker.id),
        "listeners": ",".join(listener_entries),
        "advertised.listeners": ",".join(advertised),
        "listener.security.protocol.map": ",".join(protocol_map),
        "log.dirs": ",".join(f"{s.mount_path}/kafka" for s in config.storage_configs),
        "metric.reporters": METRICS_REPORTER_CLASS,
        "cruise.control.metrics.reporter.kubernetes.mode": "true",
        "zookeeper.connect": ",".join(spec.zk_addresses) + spec.zk_path,
    }

    if inter_broker is not None:
        properties["inter.broker.listener.name"] = inter_broker.name.upper()
        properties["cruise.control.metrics.reporter.bootstrap.servers"] = (
            f"{inter_broker.name.upper()}://{host}:{inter_broker.container_port}"
        )

    if controller is not None:
        properties["control.plane.listener.name"] = controller.name.upper()

    return properties
