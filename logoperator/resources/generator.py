"""
Desired resource set for a cluster.

Deterministic and side-effect free: the same spec always renders the same
objects, so the reconciler's diff is stable across passes.
"""

import hashlib
import json
import math
import re
from typing import Any, Dict, List, Optional

from logoperator.cluster.spec import DEFAULT_HEAP_OPTS, BrokerConfig, BrokerSpec, ClusterSpec
from logoperator.resources.broker_config import render_broker_config
from logoperator.resources.objects import (
    CONFIG_VERSION_ANNOTATION,
    MOUNT_PATH_ANNOTATION,
    Resource,
    ResourceKind,
    all_broker_service_name,
    broker_labels,
    broker_service_name,
    claim_name,
    cluster_labels,
    config_map_name,
    disruption_budget_name,
    workload_name,
)

BROKER_CONFIG_KEY = "broker-config"
METRICS_PORT = 9020
CONFIG_MOUNT_PATH = "/config"
EXTENSIONS_PATH = "/opt/kafka/libs/extensions"
JMX_JAR_PATH = "/opt/jmx-exporter"
RACK_LABELS_ANNOTATION = "logoperator/rack-labels"

METRICS_REPORTER_IMAGE = "ghcr.io/banzaicloud/cruise-control:2.5.28"
JMX_EXPORTER_IMAGE = "ghcr.io/banzaicloud/jmx-javaagent:0.15.0"

_BUDGET_PATTERN = re.compile(r"^(\d+)(%?)$")


def compute_min_available(broker_count: int, budget: Optional[str]) -> int:
    """
    Compute the disruption budget floor.

    ``"N%"`` tolerates losing ``floor(brokers * N / 100)`` brokers, ``"N"``
    tolerates losing N. Unset tolerates losing all but one.

    Args:
        broker_count: Brokers in the spec
        budget: Budget string or None

    Returns:
        Minimum available brokers, never negative

    Raises:
        ValueError: If the budget is malformed or a percentage above 100
    """
    if budget is None:
        return min(1, broker_count)

    match = _BUDGET_PATTERN.match(budget.strip())
    if not match:
        raise ValueError(f"malformed disruption budget {budget!r}")

    value = int(match.group(1))
    if match.group(2):
        if value > 100:
            raise ValueError(f"disruption budget {budget!r} exceeds 100%")
        tolerated = math.floor(broker_count * value / 100)
    else:
        tolerated = value

    return max(0, broker_count - tolerated)


class ResourceSetGenerator:
    """
    Renders the auxiliary objects of one cluster.

    Per cluster: an all-broker service and a disruption budget. Per broker:
    a config object, a service, one storage claim per mount and a workload.
    """

    def __init__(self, namespace: str, cluster_name: str, spec: ClusterSpec):
        self.namespace = namespace
        self.cluster_name = cluster_name
        self.spec = spec

    def desired_resources(self) -> List[Resource]:
        """Every object the spec asks for, cluster objects first."""
        resources = self.cluster_resources()
        for broker in self.spec.brokers:
            resources.extend(self.broker_resources(broker))
        return resources

    def cluster_resources(self) -> List[Resource]:
        return [self._all_broker_service(), self._disruption_budget()]

    def broker_resources(self, broker: BrokerSpec) -> List[Resource]:
        config = self.spec.effective_broker_config(broker)
        resources = [
            self._config_map(broker, config),
            self._broker_service(broker),
        ]
        resources.extend(self._storage_claims(broker, config))
        resources.append(self.workload(broker))
        return resources

    def configuration_version(self, broker: BrokerSpec) -> str:
        """
        Version of everything a broker restart would apply.

        Hash of the broker config text and the workload template.
        """
        return self.workload(broker).annotations[CONFIG_VERSION_ANNOTATION]

    def requested_volumes(self, broker: BrokerSpec) -> Dict[str, str]:
        """Mount path -> requested size."""
        config = self.spec.effective_broker_config(broker)
        return {s.mount_path: s.size for s in config.storage_configs}

    def claim_names(self, broker: BrokerSpec) -> Dict[str, str]:
        """Mount path -> storage claim name."""
        config = self.spec.effective_broker_config(broker)
        return {
            s.mount_path: claim_name(self.cluster_name, broker.id, index)
            for index, s in enumerate(config.storage_configs)
        }

    def workload(self, broker: BrokerSpec) -> Resource:
        config = self.spec.effective_broker_config(broker)
        labels = broker_labels(self.cluster_name, broker.id)

        annotations = dict(config.annotations)
        if self.spec.rack_awareness is not None:
            annotations[RACK_LABELS_ANNOTATION] = ",".join(self.spec.rack_awareness.labels)

        body = self._workload_body(broker, config)

        fingerprint = json.dumps(
            {
                "config": render_broker_config(
                    self.cluster_name, self.namespace, self.spec, broker, config
                ),
                "labels": labels,
                "annotations": annotations,
                "spec": body,
            },
            sort_keys=True,
        )
        annotations[CONFIG_VERSION_ANNOTATION] = hashlib.sha256(
            fingerprint.encode()
        ).hexdigest()[:16]

        return Resource(
            kind=ResourceKind.WORKLOAD,
            namespace=self.namespace,
            name=workload_name(self.cluster_name, broker.id),
            labels=labels,
            annotations=annotations,
            spec=body,
        )

    # Cluster objects

    def _listener_ports(self) -> List[Dict[str, Any]]:
        listeners = self.spec.listeners
        ports = []
        for listener in listeners.internal_listeners + listeners.external_listeners:
            ports.append({
                "name": f"tcp-{listener.name}",
                "protocol": "TCP",
                "port": listener.container_port,
                "targetPort": listener.container_port,
            })
        return ports

    def _all_broker_service(self) -> Resource:
        labels = cluster_labels(self.cluster_name)
        return Resource(
            kind=ResourceKind.SERVICE,
            namespace=self.namespace,
            name=all_broker_service_name(self.cluster_name),
            labels=labels,
            spec={
                "type": "ClusterIP",
                "sessionAffinity": "None",
                "selector": dict(labels),
                "ports": self._listener_ports(),
            },
        )

    def _disruption_budget(self) -> Resource:
        labels = cluster_labels(self.cluster_name)
        return Resource(
            kind=ResourceKind.DISRUPTION_BUDGET,
            namespace=self.namespace,
            name=disruption_budget_name(self.cluster_name),
            labels=labels,
            spec={
                "minAvailable": compute_min_available(
                    len(self.spec.brokers), self.spec.disruption_budget.budget
                ),
                "selector": {"matchLabels": dict(labels)},
            },
        )

    # Broker objects

    def _config_map(self, broker: BrokerSpec, config: BrokerConfig) -> Resource:
        return Resource(
            kind=ResourceKind.CONFIG_MAP,
            namespace=self.namespace,
            name=config_map_name(self.cluster_name, broker.id),
            labels=broker_labels(self.cluster_name, broker.id),
            spec={
                "data": {
                    BROKER_CONFIG_KEY: render_broker_config(
                        self.cluster_name, self.namespace, self.spec, broker, config
                    ),
                },
            },
        )

    def _broker_service(self, broker: BrokerSpec) -> Resource:
        labels = broker_labels(self.cluster_name, broker.id)
        ports = self._listener_ports()
        ports.append({
            "name": "metrics",
            "protocol": "TCP",
            "port": METRICS_PORT,
            "targetPort": METRICS_PORT,
        })
        return Resource(
            kind=ResourceKind.SERVICE,
            namespace=self.namespace,
            name=broker_service_name(self.cluster_name, broker.id),
            labels=labels,
            spec={
                "type": "ClusterIP",
                "selector": dict(labels),
                "ports": ports,
            },
        )

    def _storage_claims(self, broker: BrokerSpec, config: BrokerConfig) -> List[Resource]:
        claims = []
        for index, storage in enumerate(config.storage_configs):
            claims.append(Resource(
                kind=ResourceKind.STORAGE_CLAIM,
                namespace=self.namespace,
                name=claim_name(self.cluster_name, broker.id, index),
                labels=broker_labels(self.cluster_name, broker.id),
                annotations={MOUNT_PATH_ANNOTATION: storage.mount_path},
                spec={
                    "accessModes": ["ReadWriteOnce"],
                    "resources": {"requests": {"storage": storage.size}},
                },
            ))
        return claims

    def _workload_body(self, broker: BrokerSpec, config: BrokerConfig) -> Dict[str, Any]:
        listeners = self.spec.listeners
        data_volumes = [
            {
                "name": f"kafka-data-{index}",
                "persistentVolumeClaim": {
                    "claimName": claim_name(self.cluster_name, broker.id, index),
                },
            }
            for index, _ in enumerate(config.storage_configs)
        ]
        data_mounts = [
            {"name": f"kafka-data-{index}", "mountPath": storage.mount_path}
            for index, storage in enumerate(config.storage_configs)
        ]

        container = {
            "name": "kafka",
            "image": config.image or self.spec.cluster_image,
            "command": [
                "bash", "-c",
                f"/opt/kafka/bin/kafka-server-start.sh {CONFIG_MOUNT_PATH}/broker-config",
            ],
            "env": [
                {"name": "CLASSPATH", "value": f"{EXTENSIONS_PATH}/*"},
                {
                    "name": "KAFKA_OPTS",
                    "value": f"-javaagent:{JMX_JAR_PATH}/jmx_prometheus.jar={METRICS_PORT}:"
                             f"{JMX_JAR_PATH}/config.yaml",
                },
                {
                    "name": "KAFKA_JVM_PERFORMANCE_OPTS",
                    "value": "-server -XX:+UseG1GC -XX:MaxGCPauseMillis=20 "
                             "-XX:InitiatingHeapOccupancyPercent=35 -XX:+ExplicitGCInvokesConcurrent "
                             "-Djava.awt.headless=true -Dsun.net.inetaddr.ttl=60",
                },
                {
                    "name": "ENVOY_SIDECAR_STATUS",
                    "valueFrom": {
                        "fieldRef": {
                            "apiVersion": "v1",
                            "fieldPath": "metadata.annotations['sidecar.istio.io/status']",
                        },
                    },
                },
                {"name": "KAFKA_HEAP_OPTS", "value": config.heap_opts or DEFAULT_HEAP_OPTS},
            ],
            "lifecycle": {
                "preStop": {
                    "exec": {
                        "command": [
                            "bash", "-c",
                            "if [[ -n \"$ENVOY_SIDECAR_STATUS\" ]]; then "
                            "touch /var/run/wait/do-not-exit-yet; fi; "
                            "/opt/kafka/bin/kafka-server-stop.sh",
                        ],
                    },
                },
            },
            "ports": [
                {"name": f"tcp-{l.name}", "containerPort": l.container_port, "protocol": "TCP"}
                for l in listeners.internal_listeners + listeners.external_listeners
            ] + [{"name": "metrics", "containerPort": METRICS_PORT, "protocol": "TCP"}],
            "resources": {k: dict(v) for k, v in sorted(config.resources.items())},
            "volumeMounts": [
                {"name": "broker-config", "mountPath": CONFIG_MOUNT_PATH},
                {"name": "extensions", "mountPath": EXTENSIONS_PATH},
                {"name": "jmx-jar-data", "mountPath": JMX_JAR_PATH},
                {"name": "exitfile", "mountPath": "/var/run/wait"},
            ] + data_mounts,
        }

        return {
            "initContainers": [
                {
                    "name": "cruise-control-reporter",
                    "image": METRICS_REPORTER_IMAGE,
                    "command": [
                        "/bin/sh", "-cex",
                        "cp -v /opt/cruise-control/cruise-control/build/dependant-libs/"
                        f"cruise-control-metrics-reporter.jar {EXTENSIONS_PATH}/",
                    ],
                    "volumeMounts": [{"name": "extensions", "mountPath": EXTENSIONS_PATH}],
                },
                {
                    "name": "jmx-exporter",
                    "image": JMX_EXPORTER_IMAGE,
                    "command": ["cp", "/opt/jmx_exporter/jmx_prometheus_javaagent.jar",
                                f"{JMX_JAR_PATH}/jmx_prometheus.jar"],
                    "volumeMounts": [{"name": "jmx-jar-data", "mountPath": JMX_JAR_PATH}],
                },
            ],
            "affinity": {
                "podAntiAffinity": {
                    "preferredDuringSchedulingIgnoredDuringExecution": [
                        {
                            "weight": 100,
                            "podAffinityTerm": {
                                "labelSelector": {
                                    "matchLabels": cluster_labels(self.cluster_name),
                                },
                                "topologyKey": "kubernetes.io/hostname",
                            },
                        },
                    ],
                },
            },
            "containers": [container],
            "volumes": [
                {"name": "exitfile", "emptyDir": {}},
                {
                    "name": "broker-config",
                    "configMap": {
                        "name": config_map_name(self.cluster_name, broker.id),
                        "defaultMode": 0o644,
                    },
                },
                {"name": "extensions", "emptyDir": {}},
                {"name": "jmx-jar-data", "emptyDir": {}},
            ] + data_volumes,
            "nodeSelector": dict(sorted(config.node_selector.items())),
            "restartPolicy": "Never",
            "terminationGracePeriodSeconds": self.spec.termination_grace_period_seconds,
        }
