"""
Reconciliation runtime.

Turns watch events, timed resyncs and requeues into reconciliation passes.
At most one pass per cluster runs at a time; different clusters run
concurrently.
"""

import asyncio
from typing import Callable, Dict, Optional, Set

from logoperator.cluster.model import Cluster
from logoperator.controller.reconciler import (
    RebalanceClientFactory,
    ReconcileResult,
    Reconciler,
    ResultAction,
)
from logoperator.scheduler.base import ResourceClient, WorkloadScheduler
from logoperator.store.base import StateStore, WatchEvent
from logoperator.store.cache import WatchCache
from logoperator.store.client import StateStoreClient
from logoperator.utils.config import OperatorConfig
from logoperator.utils.logging import get_logger

logger = get_logger(__name__)


class ClusterManager:
    """
    Schedules reconciliation passes.

    A trigger arriving while a pass for the same cluster is in flight marks
    the cluster dirty; exactly one follow-up pass runs when the current one
    ends.
    """

    def __init__(
        self,
        store: StateStore,
        resources: ResourceClient,
        scheduler: WorkloadScheduler,
        settings: Optional[OperatorConfig] = None,
        rebalance_factory: Optional[RebalanceClientFactory] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize cluster manager.

        Args:
            store: Backing state store
            resources: Auxiliary object client
            scheduler: Workload scheduler
            settings: Operator settings
            rebalance_factory: Builds a rebalancing client from a base URL
            clock: Millisecond clock
        """
        self.settings = settings or OperatorConfig()

        self.cache = WatchCache(store, self.settings.namespace)
        self.client = StateStoreClient(store, self.cache)
        self.reconciler = Reconciler(
            self.client,
            resources,
            scheduler,
            self.settings,
            rebalance_factory=rebalance_factory,
            clock=clock,
        )

        # cluster key -> in-flight pass
        self._active: Dict[str, asyncio.Task] = {}
        self._dirty: Set[str] = set()
        self._requeues: Dict[str, asyncio.TimerHandle] = {}

        self._resync_task: Optional[asyncio.Task] = None
        self._running = False

        self.passes = 0

    async def start(self) -> None:
        """Start the watch cache, reconcile every known cluster and begin resyncing."""
        if self._running:
            return

        self._running = True

        self.cache.add_listener(self._on_event)
        await self.cache.start()

        for cluster in self.cache.list():
            self.enqueue(cluster.key)

        self._resync_task = asyncio.create_task(self._resync_loop())

        logger.info(
            "ClusterManager started",
            namespace=self.settings.namespace or "*",
            resync_interval_ms=self.settings.resync_interval_ms,
        )

    async def stop(self) -> None:
        """Stop resyncing, cancel in-flight passes and release clients."""
        self._running = False

        if self._resync_task:
            self._resync_task.cancel()
            try:
                await self._resync_task
            except asyncio.CancelledError:
                pass

        for handle in self._requeues.values():
            handle.cancel()
        self._requeues.clear()

        tasks = list(self._active.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._active.clear()
        self._dirty.clear()

        await self.cache.stop()
        await self.reconciler.close()

        logger.info("ClusterManager stopped", passes=self.passes)

    def enqueue(self, key: str) -> None:
        """Request a pass for a cluster key ("namespace/name")."""
        if not self._running:
            return

        if key in self._active:
            self._dirty.add(key)
            return

        self._active[key] = asyncio.create_task(self._run(key))

    async def wait_idle(self) -> None:
        """Wait until no pass is in flight."""
        while self._active:
            await asyncio.gather(*list(self._active.values()), return_exceptions=True)

    def _on_event(self, event: WatchEvent) -> None:
        self.enqueue(event.cluster.key)

    async def _run(self, key: str) -> None:
        namespace, name = key.split("/", 1)
        try:
            while True:
                self._dirty.discard(key)

                result = await self._reconcile_once(namespace, name)
                self._handle_result(key, result)

                if key not in self._dirty or not self._running:
                    break

                # Let the watch cache catch up before the follow-up pass
                await asyncio.sleep(0)
        finally:
            self._active.pop(key, None)

    async def _reconcile_once(self, namespace: str, name: str) -> ReconcileResult:
        self.passes += 1
        try:
            return await self.reconciler.reconcile(namespace, name)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Error in reconciliation pass",
                cluster=f"{namespace}/{name}",
                error=str(e),
                exc_info=True,
            )
            return ReconcileResult.requeue(self.settings.requeue_interval_ms)

    def _handle_result(self, key: str, result: ReconcileResult) -> None:
        handle = self._requeues.pop(key, None)
        if handle is not None:
            handle.cancel()

        if result.action != ResultAction.REQUEUE or not self._running:
            return

        if result.after_ms <= 0:
            self._dirty.add(key)
            return

        loop = asyncio.get_running_loop()
        self._requeues[key] = loop.call_later(
            result.after_ms / 1000, self._fire_requeue, key
        )

    def _fire_requeue(self, key: str) -> None:
        self._requeues.pop(key, None)
        self.enqueue(key)

    async def _resync_loop(self) -> None:
        """Periodically reconcile every known cluster."""
        while self._running:
            try:
                await asyncio.sleep(self.settings.resync_interval_ms / 1000)

                clusters = self.cache.list()
                for cluster in clusters:
                    self.enqueue(cluster.key)

                logger.debug("Resync triggered", clusters=len(clusters))

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in resync loop", error=str(e))
                await asyncio.sleep(1.0)

    def clusters(self) -> Dict[str, Cluster]:
        return {cluster.key: cluster for cluster in self.cache.list()}
