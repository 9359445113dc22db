"""
Declarative cluster specification.

Plain value types with explicit dictionary construction. The spec is owned
by whoever writes the cluster object; the operator only reads it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

DEFAULT_BROKER_IMAGE = "ghcr.io/banzaicloud/kafka:2.13-2.6.0-bzc.1"
DEFAULT_HEAP_OPTS = "-Xmx2G -Xms2G"


@dataclass
class StorageConfig:
    """
    A data volume mounted into a broker.

    Attributes:
        mount_path: Path inside the broker container
        size: Requested capacity as a quantity string (e.g. "10Gi")
    """
    mount_path: str
    size: str

    def to_dict(self) -> dict:
        return {"mount_path": self.mount_path, "size": self.size}

    @classmethod
    def from_dict(cls, data: dict) -> "StorageConfig":
        return cls(mount_path=data["mount_path"], size=str(data["size"]))


@dataclass
class BrokerConfig:
    """
    Broker runtime settings, used inline or as a named config group.

    Attributes:
        image: Broker container image (empty means cluster default)
        storage_configs: Data volumes
        resources: Resource requests/limits ({"requests": {...}, "limits": {...}})
        node_selector: Node selector labels
        annotations: Extra workload annotations
        heap_opts: JVM heap options (empty means default)
    """
    image: str = ""
    storage_configs: List[StorageConfig] = field(default_factory=list)
    resources: Dict[str, Dict[str, str]] = field(default_factory=dict)
    node_selector: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    heap_opts: str = ""

    def merged_with(self, override: Optional["BrokerConfig"]) -> "BrokerConfig":
        """
        Merge an inline broker config over this one.

        Scalar fields of the override win when set. Storage entries are
        merged by mount path; maps are merged key by key.

        Args:
            override: Inline broker config, may be None

        Returns:
            New merged BrokerConfig
        """
        if override is None:
            return BrokerConfig.from_dict(self.to_dict())

        storage = {s.mount_path: s for s in self.storage_configs}
        for s in override.storage_configs:
            storage[s.mount_path] = s

        resources = {k: dict(v) for k, v in self.resources.items()}
        for kind, values in override.resources.items():
            resources.setdefault(kind, {}).update(values)

        return BrokerConfig(
            image=override.image or self.image,
            storage_configs=[StorageConfig(s.mount_path, s.size) for s in storage.values()],
            resources=resources,
            node_selector={**self.node_selector, **override.node_selector},
            annotations={**self.annotations, **override.annotations},
            heap_opts=override.heap_opts or self.heap_opts,
        )

    def to_dict(self) -> dict:
        return {
            "image": self.image,
            "storage_configs": [s.to_dict() for s in self.storage_configs],
            "resources": {k: dict(v) for k, v in self.resources.items()},
            "node_selector": dict(self.node_selector),
            "annotations": dict(self.annotations),
            "heap_opts": self.heap_opts,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "BrokerConfig":
        data = data or {}
        return cls(
            image=data.get("image", ""),
            storage_configs=[
                StorageConfig.from_dict(s) for s in data.get("storage_configs", [])
            ],
            resources={k: dict(v) for k, v in (data.get("resources") or {}).items()},
            node_selector=dict(data.get("node_selector") or {}),
            annotations=dict(data.get("annotations") or {}),
            heap_opts=data.get("heap_opts", ""),
        )


@dataclass
class BrokerSpec:
    """
    A single broker in the desired topology.

    Attributes:
        id: Stable broker id, never reused
        broker_config_group: Name of a config group to inherit from
        broker_config: Inline config, merged over the group
        config: Extra per-broker "key=value" lines for the broker config
    """
    id: int
    broker_config_group: Optional[str] = None
    broker_config: Optional[BrokerConfig] = None
    config: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "broker_config_group": self.broker_config_group,
            "broker_config": self.broker_config.to_dict() if self.broker_config else None,
            "config": self.config,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BrokerSpec":
        inline = data.get("broker_config")
        return cls(
            id=int(data["id"]),
            broker_config_group=data.get("broker_config_group"),
            broker_config=BrokerConfig.from_dict(inline) if inline is not None else None,
            config=data.get("config", "") or "",
        )


@dataclass
class InternalListener:
    """Listener reachable from inside the cluster network."""
    name: str
    type: str
    container_port: int
    used_for_inner_broker_communication: bool = False
    used_for_controller_communication: bool = False

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type,
            "container_port": self.container_port,
            "used_for_inner_broker_communication": self.used_for_inner_broker_communication,
            "used_for_controller_communication": self.used_for_controller_communication,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InternalListener":
        return cls(
            name=data["name"],
            type=data.get("type", ""),
            container_port=int(data["container_port"]),
            used_for_inner_broker_communication=bool(
                data.get("used_for_inner_broker_communication", False)
            ),
            used_for_controller_communication=bool(
                data.get("used_for_controller_communication", False)
            ),
        )


@dataclass
class ExternalListener:
    """
    Listener advertised to clients outside the cluster.

    Each broker is advertised on ``external_starting_port + broker_id``.
    """
    name: str
    type: str
    container_port: int
    external_starting_port: int
    hostname: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type,
            "container_port": self.container_port,
            "external_starting_port": self.external_starting_port,
            "hostname": self.hostname,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExternalListener":
        return cls(
            name=data["name"],
            type=data.get("type", ""),
            container_port=int(data["container_port"]),
            external_starting_port=int(data.get("external_starting_port", 0)),
            hostname=data.get("hostname", ""),
        )


@dataclass
class ListenersConfig:
    """Internal and external listener definitions."""
    internal_listeners: List[InternalListener] = field(default_factory=list)
    external_listeners: List[ExternalListener] = field(default_factory=list)

    def inter_broker_listener(self) -> Optional[InternalListener]:
        for listener in self.internal_listeners:
            if listener.used_for_inner_broker_communication:
                return listener
        return None

    def controller_listener(self) -> Optional[InternalListener]:
        for listener in self.internal_listeners:
            if listener.used_for_controller_communication:
                return listener
        return None

    def to_dict(self) -> dict:
        return {
            "internal_listeners": [l.to_dict() for l in self.internal_listeners],
            "external_listeners": [l.to_dict() for l in self.external_listeners],
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ListenersConfig":
        data = data or {}
        return cls(
            internal_listeners=[
                InternalListener.from_dict(l) for l in data.get("internal_listeners", [])
            ],
            external_listeners=[
                ExternalListener.from_dict(l) for l in data.get("external_listeners", [])
            ],
        )


@dataclass
class RackAwareness:
    """Node labels used to derive a broker's rack."""
    labels: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"labels": list(self.labels)}

    @classmethod
    def from_dict(cls, data: dict) -> "RackAwareness":
        return cls(labels=list(data.get("labels", [])))


@dataclass
class RollingUpgradeConfig:
    """
    Budget for sequenced broker restarts.

    Attributes:
        max_concurrent_restarts: Brokers allowed mid-restart at once
        failure_threshold: Readiness failures tolerated before halting
    """
    max_concurrent_restarts: int = 1
    failure_threshold: int = 1

    def to_dict(self) -> dict:
        return {
            "max_concurrent_restarts": self.max_concurrent_restarts,
            "failure_threshold": self.failure_threshold,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RollingUpgradeConfig":
        data = data or {}
        return cls(
            max_concurrent_restarts=int(data.get("max_concurrent_restarts", 1)),
            failure_threshold=int(data.get("failure_threshold", 1)),
        )


@dataclass
class RebalanceTaskDefaults:
    """
    Resubmission policy for failed rebalancing tasks.

    Attributes:
        retry_cooldown_ms: Wait after the first failure before resubmitting
        backoff_multiplier: Growth factor for each further failure
        max_backoff_ms: Upper bound on the wait between attempts
        max_attempts: Give up after this many submissions (None = never)
    """
    retry_cooldown_ms: int = 60000          # 1 minute
    backoff_multiplier: float = 2.0
    max_backoff_ms: int = 1800000           # 30 minutes
    max_attempts: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "retry_cooldown_ms": self.retry_cooldown_ms,
            "backoff_multiplier": self.backoff_multiplier,
            "max_backoff_ms": self.max_backoff_ms,
            "max_attempts": self.max_attempts,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RebalanceTaskDefaults":
        data = data or {}
        max_attempts = data.get("max_attempts")
        return cls(
            retry_cooldown_ms=int(data.get("retry_cooldown_ms", 60000)),
            backoff_multiplier=float(data.get("backoff_multiplier", 2.0)),
            max_backoff_ms=int(data.get("max_backoff_ms", 1800000)),
            max_attempts=int(max_attempts) if max_attempts is not None else None,
        )


@dataclass
class RebalancingConfig:
    """
    Integration with the external rebalancing service.

    Attributes:
        enabled: Coordinate broker add/remove with the service
        url: Service base URL (empty means operator default)
        task_defaults: Resubmission policy for failed tasks
    """
    enabled: bool = False
    url: str = ""
    task_defaults: RebalanceTaskDefaults = field(default_factory=RebalanceTaskDefaults)

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "url": self.url,
            "task_defaults": self.task_defaults.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RebalancingConfig":
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", False)),
            url=data.get("url", ""),
            task_defaults=RebalanceTaskDefaults.from_dict(data.get("task_defaults")),
        )


@dataclass
class DisruptionBudget:
    """Tolerated voluntary disruption, "N" brokers or "N%" of brokers."""
    budget: Optional[str] = None

    def to_dict(self) -> dict:
        return {"budget": self.budget}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "DisruptionBudget":
        data = data or {}
        budget = data.get("budget")
        return cls(budget=str(budget) if budget is not None else None)


@dataclass
class ClusterSpec:
    """
    Desired cluster topology.

    Attributes:
        brokers: Ordered broker list
        broker_config_groups: Named shared broker configs
        listeners: Listener definitions
        rack_awareness: Rack awareness settings, None when disabled
        rolling_upgrade: Restart budget
        rebalancing: Rebalancing service integration
        disruption_budget: Disruption budget for voluntary evictions
        cluster_image: Default broker image
        read_only_config: Cluster-wide "key=value" broker settings
        zk_addresses: Coordination service addresses
        zk_path: Chroot path on the coordination service
        termination_grace_period_seconds: Broker shutdown grace period
    """
    brokers: List[BrokerSpec] = field(default_factory=list)
    broker_config_groups: Dict[str, BrokerConfig] = field(default_factory=dict)
    listeners: ListenersConfig = field(default_factory=ListenersConfig)
    rack_awareness: Optional[RackAwareness] = None
    rolling_upgrade: RollingUpgradeConfig = field(default_factory=RollingUpgradeConfig)
    rebalancing: RebalancingConfig = field(default_factory=RebalancingConfig)
    disruption_budget: DisruptionBudget = field(default_factory=DisruptionBudget)
    cluster_image: str = DEFAULT_BROKER_IMAGE
    read_only_config: str = ""
    zk_addresses: List[str] = field(default_factory=list)
    zk_path: str = "/"
    termination_grace_period_seconds: int = 120

    def broker_ids(self) -> List[int]:
        return [b.id for b in self.brokers]

    def get_broker(self, broker_id: int) -> Optional[BrokerSpec]:
        for broker in self.brokers:
            if broker.id == broker_id:
                return broker
        return None

    def effective_broker_config(self, broker: BrokerSpec) -> BrokerConfig:
        """
        Resolve a broker's config group and inline config.

        Raises:
            KeyError: If the broker references an unknown config group
        """
        base = BrokerConfig()
        if broker.broker_config_group:
            base = self.broker_config_groups[broker.broker_config_group]
        return base.merged_with(broker.broker_config)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "brokers": [b.to_dict() for b in self.brokers],
            "broker_config_groups": {
                name: group.to_dict() for name, group in self.broker_config_groups.items()
            },
            "listeners": self.listeners.to_dict(),
            "rack_awareness": self.rack_awareness.to_dict() if self.rack_awareness else None,
            "rolling_upgrade": self.rolling_upgrade.to_dict(),
            "rebalancing": self.rebalancing.to_dict(),
            "disruption_budget": self.disruption_budget.to_dict(),
            "cluster_image": self.cluster_image,
            "read_only_config": self.read_only_config,
            "zk_addresses": list(self.zk_addresses),
            "zk_path": self.zk_path,
            "termination_grace_period_seconds": self.termination_grace_period_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusterSpec":
        rack = data.get("rack_awareness")
        return cls(
            brokers=[BrokerSpec.from_dict(b) for b in data.get("brokers", [])],
            broker_config_groups={
                name: BrokerConfig.from_dict(group)
                for name, group in (data.get("broker_config_groups") or {}).items()
            },
            listeners=ListenersConfig.from_dict(data.get("listeners")),
            rack_awareness=RackAwareness.from_dict(rack) if rack is not None else None,
            rolling_upgrade=RollingUpgradeConfig.from_dict(data.get("rolling_upgrade")),
            rebalancing=RebalancingConfig.from_dict(data.get("rebalancing")),
            disruption_budget=DisruptionBudget.from_dict(data.get("disruption_budget")),
            cluster_image=data.get("cluster_image") or DEFAULT_BROKER_IMAGE,
            read_only_config=data.get("read_only_config", "") or "",
            zk_addresses=list(data.get("zk_addresses") or []),
            zk_path=data.get("zk_path") or "/",
            termination_grace_period_seconds=int(
                data.get("termination_grace_period_seconds", 120)
            ),
        )
