"""
Shared fixtures: a controllable clock, spec builders, a fake rebalancing
service behind httpx.MockTransport and a wired reconciler environment.
"""

from typing import Dict, List, Optional, Tuple

import httpx
import pytest

from logoperator.cluster.model import Cluster
from logoperator.cluster.spec import ClusterSpec
from logoperator.controller.reconciler import Reconciler
from logoperator.rebalance.client import RebalanceTaskClient
from logoperator.scheduler.memory import InMemoryCluster
from logoperator.store.client import StateStoreClient
from logoperator.store.memory import InMemoryStateStore
from logoperator.utils.config import OperatorConfig

NAMESPACE = "kafka"
CLUSTER = "kafka"


class FakeClock:
    """Millisecond clock advanced explicitly by tests."""

    def __init__(self, start_ms: int = 1_000_000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeRebalanceService:
    """
    In-process stand-in for the rebalancing service HTTP API.

    Tasks start Active; tests move them on with ``set_status``.
    """

    def __init__(self):
        self.tasks: Dict[str, str] = {}
        self.submissions: List[Tuple[str, Optional[int]]] = []
        self.available = True
        self.reject_submissions = False
        self._counter = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not self.available:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if request.method == "POST":
            if self.reject_submissions:
                return httpx.Response(400, text="invalid broker id")

            endpoint = path.rsplit("/", 1)[-1]
            broker_id = request.url.params.get("brokerid")
            self._counter += 1
            task_id = f"task-{self._counter}"
            self.tasks[task_id] = "Active"
            self.submissions.append((endpoint, int(broker_id) if broker_id else None))
            return httpx.Response(202, headers={"User-Task-ID": task_id}, json={"progress": []})

        if path.endswith("/user_tasks"):
            requested = request.url.params.get("user_task_ids", "").split(",")
            tasks = [
                {"UserTaskId": task_id, "Status": self.tasks[task_id]}
                for task_id in requested if task_id in self.tasks
            ]
            return httpx.Response(200, json={"userTasks": tasks})

        return httpx.Response(404, text="not found")

    def set_status(self, task_id: str, status: str) -> None:
        self.tasks[task_id] = status

    def last_task_id(self) -> str:
        return f"task-{self._counter}"

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client_factory(self):
        return lambda url: RebalanceTaskClient(url, transport=self.transport())


def build_spec(
    broker_ids=(0, 1, 2),
    size: str = "10Gi",
    rebalancing: bool = False,
    max_concurrent_restarts: int = 1,
    failure_threshold: int = 1,
    read_only_config: str = "",
    task_defaults: Optional[dict] = None,
) -> ClusterSpec:
    return ClusterSpec.from_dict({
        "zk_addresses": ["zk-0:2181"],
        "zk_path": "/kafka",
        "read_only_config": read_only_config,
        "broker_config_groups": {
            "default": {
                "storage_configs": [{"mount_path": "/kafka-logs", "size": size}],
            },
        },
        "brokers": [
            {"id": broker_id, "broker_config_group": "default"} for broker_id in broker_ids
        ],
        "listeners": {
            "internal_listeners": [
                {
                    "name": "internal",
                    "type": "plaintext",
                    "container_port": 29092,
                    "used_for_inner_broker_communication": True,
                },
                {
                    "name": "controller",
                    "type": "plaintext",
                    "container_port": 29093,
                    "used_for_controller_communication": True,
                },
            ],
        },
        "rolling_upgrade": {
            "max_concurrent_restarts": max_concurrent_restarts,
            "failure_threshold": failure_threshold,
        },
        "rebalancing": {
            "enabled": rebalancing,
            "url": "http://cruisecontrol:8090" if rebalancing else "",
            "task_defaults": task_defaults or {"retry_cooldown_ms": 1000},
        },
    })


class OperatorEnv:
    """A reconciler wired to in-memory collaborators."""

    def __init__(self, clock: FakeClock, service: FakeRebalanceService):
        self.clock = clock
        self.service = service
        self.store = InMemoryStateStore()
        self.scheduler = InMemoryCluster(auto_ready=True, clock=clock)
        self.settings = OperatorConfig(
            stability_window_ms=1000,
            readiness_timeout_ms=60000,
            requeue_interval_ms=15000,
        )
        self.reconciler = self.new_reconciler()

    def new_reconciler(self) -> Reconciler:
        return Reconciler(
            StateStoreClient(self.store),
            self.scheduler,
            self.scheduler,
            self.settings,
            rebalance_factory=self.service.client_factory(),
            clock=self.clock,
        )

    async def create(self, spec: ClusterSpec) -> Cluster:
        return await self.store.create(Cluster(namespace=NAMESPACE, name=CLUSTER, spec=spec))

    async def update_spec(self, spec: ClusterSpec) -> Cluster:
        return await self.store.update_spec(NAMESPACE, CLUSTER, spec)

    async def reconcile(self):
        return await self.reconciler.reconcile(NAMESPACE, CLUSTER)

    async def cluster(self) -> Cluster:
        return await self.store.get(NAMESPACE, CLUSTER)

    async def status(self):
        return (await self.cluster()).status

    async def converge(self, passes: int = 20, step_ms: int = 1000):
        """Run passes, advancing the clock, until a pass converges."""
        result = None
        for _ in range(passes):
            result = await self.reconcile()
            if result.action.value == "converged":
                return result
            self.clock.advance(step_ms)
        return result


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rebalance_service():
    return FakeRebalanceService()


@pytest.fixture
def make_spec():
    return build_spec


@pytest.fixture
def env(clock, rebalance_service):
    return OperatorEnv(clock, rebalance_service)
