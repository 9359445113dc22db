"""
Tests for the reconciliation pass: resource convergence, validation,
storage expansion, error classification and restart recovery.
"""

import pytest

from logoperator.cluster.status import BrokerPhase, ClusterPhase, VolumePhase
from logoperator.controller.reconciler import ResultAction
from logoperator.resources import ResourceKind, ResourceSetGenerator

NAMESPACE = "kafka"
CLUSTER = "kafka"


def _pod_deletes(scheduler):
    return [name for op, kind, name in scheduler.mutations if op == "delete" and kind == "Pod"]


async def _running(env, spec):
    await env.create(spec)
    result = await env.converge()
    assert result.action == ResultAction.CONVERGED
    return await env.status()


class TestInitialCreation:
    """Test the first passes over a new cluster."""

    @pytest.mark.asyncio
    async def test_creates_everything_and_converges(self, env, make_spec):
        """Test one pass creates all objects and reaches Running."""
        await env.create(make_spec())

        result = await env.reconcile()

        assert result.action == ResultAction.CONVERGED
        creates = [m for m in env.scheduler.mutations if m[0] == "create"]
        assert len(creates) == 2 + 3 * 4

        status = await env.status()
        assert status.phase == ClusterPhase.RUNNING
        assert sorted(status.brokers) == [0, 1, 2]
        for state in status.brokers.values():
            assert state.phase == BrokerPhase.CONFIG_IN_SYNC
            assert state.volumes["/kafka-logs"].phase == VolumePhase.IN_SYNC
            assert state.volumes["/kafka-logs"].provisioned == "10Gi"

    @pytest.mark.asyncio
    async def test_applied_versions_match_desired(self, env, make_spec):
        """Test initial brokers record the version they were created with."""
        spec = make_spec()
        status = await _running(env, spec)

        generator = ResourceSetGenerator(NAMESPACE, CLUSTER, spec)
        for broker in spec.brokers:
            assert status.brokers[broker.id].configuration_version == (
                generator.configuration_version(broker)
            )

    @pytest.mark.asyncio
    async def test_second_pass_is_idempotent(self, env, make_spec):
        """Test a converged cluster causes no writes."""
        await _running(env, make_spec())
        mutations = list(env.scheduler.mutations)
        writes = env.store.status_writes

        result = await env.reconcile()

        assert result.action == ResultAction.CONVERGED
        assert env.scheduler.mutations == mutations
        assert env.store.status_writes == writes

    @pytest.mark.asyncio
    async def test_missing_cluster(self, env):
        """Test a deleted cluster converges without doing anything."""
        result = await env.reconcile()

        assert result.action == ResultAction.CONVERGED
        assert env.scheduler.mutations == []

    @pytest.mark.asyncio
    async def test_recreates_deleted_object(self, env, make_spec):
        """Test objects removed out of band are created again."""
        await _running(env, make_spec())
        await env.scheduler.delete(ResourceKind.SERVICE, NAMESPACE, "kafka-1")

        await env.reconcile()

        assert env.scheduler.has(ResourceKind.SERVICE, NAMESPACE, "kafka-1")


class TestValidation:
    """Test invalid specs."""

    @pytest.mark.asyncio
    async def test_invalid_spec_touches_nothing(self, env, make_spec):
        """Test validation failure writes status and no objects."""
        await env.create(make_spec(broker_ids=(0, 1, 1)))

        result = await env.reconcile()

        assert result.action == ResultAction.FAILED
        assert "duplicate broker id 1" in str(result.error)
        assert env.scheduler.mutations == []

        status = await env.status()
        assert status.phase == ClusterPhase.VALIDATION_FAILED
        assert "duplicate broker id 1" in status.message

    @pytest.mark.asyncio
    async def test_fixed_spec_recovers(self, env, make_spec):
        """Test correcting the spec resumes reconciliation."""
        await env.create(make_spec(broker_ids=(0, 1, 1)))
        await env.reconcile()

        await env.update_spec(make_spec(broker_ids=(0, 1)))
        result = await env.converge()

        assert result.action == ResultAction.CONVERGED
        status = await env.status()
        assert status.phase == ClusterPhase.RUNNING
        assert status.message == ""

    @pytest.mark.asyncio
    async def test_repeated_failure_writes_once(self, env, make_spec):
        """Test an unchanged invalid spec does not rewrite status."""
        await env.create(make_spec(broker_ids=(0, 0)))
        await env.reconcile()
        writes = env.store.status_writes

        await env.reconcile()

        assert env.store.status_writes == writes


class TestErrorHandling:
    """Test retryable errors."""

    @pytest.mark.asyncio
    async def test_scheduler_outage_requeues(self, env, make_spec):
        """Test transient errors requeue after the configured interval."""
        await env.create(make_spec())
        env.scheduler.available = False

        result = await env.reconcile()

        assert result.action == ResultAction.REQUEUE
        assert result.after_ms == 15000
        assert env.store.status_writes == 0

    @pytest.mark.asyncio
    async def test_store_outage_requeues(self, env, make_spec):
        """Test store outages are transient."""
        await env.create(make_spec())
        env.store.available = False

        result = await env.reconcile()

        assert result.action == ResultAction.REQUEUE
        assert result.after_ms == 15000

    @pytest.mark.asyncio
    async def test_conflict_requeues_immediately(self, env, make_spec, monkeypatch):
        """Test a stale status write requeues without delay."""
        await env.create(make_spec())
        stale = await env.cluster()
        await env.update_spec(make_spec())

        async def stale_get(namespace, name):
            return stale

        monkeypatch.setattr(env.reconciler.store, "get", stale_get)

        result = await env.reconcile()

        assert result.action == ResultAction.REQUEUE
        assert result.after_ms == 0
        assert env.store.status_writes == 0

    @pytest.mark.asyncio
    async def test_recovers_after_outage(self, env, make_spec):
        """Test reconciliation continues once the scheduler is back."""
        await env.create(make_spec())
        env.scheduler.available = False
        await env.reconcile()

        env.scheduler.available = True
        result = await env.reconcile()

        assert result.action == ResultAction.CONVERGED


class TestStorage:
    """Test storage expansion."""

    @pytest.mark.asyncio
    async def test_expansion(self, env, make_spec):
        """Test a larger size patches claims and waits for capacity."""
        await _running(env, make_spec(size="10Gi"))
        deletes = _pod_deletes(env.scheduler)

        await env.update_spec(make_spec(size="20Gi"))
        result = await env.reconcile()

        assert result.action == ResultAction.REQUEUE
        assert ("patch", "PersistentVolumeClaim", "kafka-0-storage-0") in env.scheduler.mutations
        assert sorted(env.scheduler.expansion_requests) == [
            ("kafka-0-storage-0", "20Gi"),
            ("kafka-1-storage-0", "20Gi"),
            ("kafka-2-storage-0", "20Gi"),
        ]

        status = await env.status()
        assert status.phase == ClusterPhase.RECONCILING
        volume = status.brokers[0].volumes["/kafka-logs"]
        assert volume.phase == VolumePhase.STORAGE_EXPANDING
        assert volume.provisioned == "10Gi"
        assert volume.requested == "20Gi"

        # Still expanding: no duplicate requests
        await env.reconcile()
        assert len(env.scheduler.expansion_requests) == 3

        for broker_id in (0, 1, 2):
            env.scheduler.complete_expansion(NAMESPACE, f"kafka-{broker_id}-storage-0", "20Gi")

        result = await env.reconcile()

        assert result.action == ResultAction.CONVERGED
        status = await env.status()
        assert status.phase == ClusterPhase.RUNNING
        assert status.brokers[0].volumes["/kafka-logs"].provisioned == "20Gi"
        # Resizing never restarts brokers
        assert _pod_deletes(env.scheduler) == deletes

    @pytest.mark.asyncio
    async def test_claims_never_shrink(self, env, make_spec):
        """Test a smaller size leaves the claim at its current size."""
        env.scheduler.auto_expand = True
        await _running(env, make_spec(size="10Gi"))
        await env.update_spec(make_spec(size="20Gi"))
        await env.converge()

        await env.update_spec(make_spec(size="5Gi"))
        result = await env.converge()

        assert result.action == ResultAction.CONVERGED
        claim = await env.scheduler.get(ResourceKind.STORAGE_CLAIM, NAMESPACE, "kafka-0-storage-0")
        assert claim.spec["resources"]["requests"]["storage"] == "20Gi"

        volume = (await env.status()).brokers[0].volumes["/kafka-logs"]
        assert volume.phase == VolumePhase.IN_SYNC
        assert volume.provisioned == "20Gi"


class TestRecovery:
    """Test resuming from persisted status after a controller restart."""

    @pytest.mark.asyncio
    async def test_fresh_reconciler_finishes_upgrade(self, env, make_spec):
        """Test a new reconciler continues a rolling upgrade in flight."""
        await _running(env, make_spec())
        await env.update_spec(make_spec(read_only_config="auto.create.topics.enable=false"))
        await env.reconcile()
        assert (await env.status()).brokers[0].phase == BrokerPhase.RECONCILING

        await env.reconciler.close()
        env.reconciler = env.new_reconciler()
        result = await env.converge()

        assert result.action == ResultAction.CONVERGED
        assert _pod_deletes(env.scheduler) == ["kafka-0", "kafka-1", "kafka-2"]

    @pytest.mark.asyncio
    async def test_unrecorded_restart_is_adopted(self, env, make_spec):
        """Test a restart whose status write was lost is not repeated."""
        await _running(env, make_spec())
        spec = make_spec(read_only_config="auto.create.topics.enable=false")
        await env.update_spec(spec)

        # Restart applied but the pass died before writing status
        generator = ResourceSetGenerator(NAMESPACE, CLUSTER, spec)
        await env.scheduler.restart_workload(generator.workload(spec.get_broker(0)))

        result = await env.converge()

        assert result.action == ResultAction.CONVERGED
        assert _pod_deletes(env.scheduler) == ["kafka-0", "kafka-1", "kafka-2"]
        status = await env.status()
        for broker in spec.brokers:
            assert status.brokers[broker.id].configuration_version == (
                generator.configuration_version(broker)
            )
