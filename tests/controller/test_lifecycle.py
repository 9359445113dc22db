"""
Tests for broker lifecycle: graceful upscale and downscale through the
rebalancing service, task failures and teardown.
"""

import pytest

from logoperator.cluster.status import (
    BrokerPhase,
    BrokerState,
    ClusterPhase,
    GracefulActionState,
    GracefulTaskPhase,
)
from logoperator.controller.lifecycle import BrokerLifecycleController
from logoperator.controller.reconciler import ResultAction
from logoperator.rebalance import TaskKind, TaskState, TaskStatus
from logoperator.resources import ResourceKind, ResourceSetGenerator
from logoperator.scheduler import InMemoryCluster

NAMESPACE = "kafka"
CLUSTER = "kafka"


async def _running(env, spec):
    await env.create(spec)
    result = await env.converge()
    assert result.action == ResultAction.CONVERGED


async def _broker(env, broker_id):
    return (await env.status()).brokers.get(broker_id)


async def _owned(env, broker_id):
    return await env.scheduler.list(
        NAMESPACE, {"kafka_cr": CLUSTER, "brokerId": str(broker_id)}
    )


class TestInitialBrokers:
    """Test brokers created with the cluster."""

    @pytest.mark.asyncio
    async def test_no_rebalancing_for_initial_brokers(self, env, make_spec, rebalance_service):
        """Test initial brokers join without an add task."""
        await _running(env, make_spec(rebalancing=True))

        assert rebalance_service.submissions == []
        for broker_id in (0, 1, 2):
            assert (await _broker(env, broker_id)).phase == BrokerPhase.CONFIG_IN_SYNC


class TestGracefulUpscale:
    """Test adding brokers to a running cluster."""

    @pytest.mark.asyncio
    async def test_add_broker_task_gates_sync(self, env, make_spec, rebalance_service):
        """Test a new broker waits for its add task before ConfigInSync."""
        await _running(env, make_spec(rebalancing=True))
        await env.update_spec(make_spec(broker_ids=(0, 1, 2, 3), rebalancing=True))

        result = await env.reconcile()

        assert result.action == ResultAction.REQUEUE
        assert rebalance_service.submissions == [("add_broker", 3)]
        state = await _broker(env, 3)
        assert state.phase == BrokerPhase.GRACEFUL_UPSCALE_RUNNING
        assert state.graceful_action.task_id == "task-1"
        assert state.graceful_action.task_phase == GracefulTaskPhase.REQUESTED
        assert (await env.status()).phase == ClusterPhase.RECONCILING

        rebalance_service.set_status("task-1", "InExecution")
        await env.reconcile()
        state = await _broker(env, 3)
        assert state.phase == BrokerPhase.GRACEFUL_UPSCALE_RUNNING
        assert state.graceful_action.task_phase == GracefulTaskPhase.RUNNING

        rebalance_service.set_status("task-1", "Completed")
        await env.reconcile()
        assert (await _broker(env, 3)).phase == BrokerPhase.GRACEFUL_UPSCALE_SUCCEEDED

        result = await env.reconcile()

        assert result.action == ResultAction.CONVERGED
        assert (await _broker(env, 3)).phase == BrokerPhase.CONFIG_IN_SYNC
        assert rebalance_service.submissions == [("add_broker", 3)]

    @pytest.mark.asyncio
    async def test_add_task_waits_for_readiness(self, env, make_spec, rebalance_service):
        """Test the add task is submitted only once the workload is ready."""
        await _running(env, make_spec(rebalancing=True))
        env.scheduler.auto_ready = False
        await env.update_spec(make_spec(broker_ids=(0, 1, 2, 3), rebalancing=True))

        await env.reconcile()

        assert (await _broker(env, 3)).phase == BrokerPhase.PENDING
        assert rebalance_service.submissions == []

        env.scheduler.mark_ready(NAMESPACE, "kafka-3")
        await env.reconcile()

        assert (await _broker(env, 3)).phase == BrokerPhase.GRACEFUL_UPSCALE_RUNNING
        assert rebalance_service.submissions == [("add_broker", 3)]

    @pytest.mark.asyncio
    async def test_disabled_rebalancing_skips_tasks(self, env, make_spec, rebalance_service):
        """Test brokers join directly when rebalancing is disabled."""
        await _running(env, make_spec())
        await env.update_spec(make_spec(broker_ids=(0, 1, 2, 3)))

        result = await env.reconcile()

        assert result.action == ResultAction.CONVERGED
        assert (await _broker(env, 3)).phase == BrokerPhase.CONFIG_IN_SYNC
        assert rebalance_service.submissions == []


class TestGracefulDownscale:
    """Test removing brokers."""

    @pytest.mark.asyncio
    async def test_remove_task_gates_teardown(self, env, make_spec, rebalance_service):
        """Test resources stay until the remove task succeeds."""
        await _running(env, make_spec(rebalancing=True))
        await env.update_spec(make_spec(broker_ids=(0, 1), rebalancing=True))

        await env.reconcile()

        assert rebalance_service.submissions == [("remove_broker", 2)]
        assert (await _broker(env, 2)).phase == BrokerPhase.GRACEFUL_DOWNSCALE_RUNNING
        assert env.scheduler.has(ResourceKind.WORKLOAD, NAMESPACE, "kafka-2")

        await env.reconcile()
        assert env.scheduler.has(ResourceKind.WORKLOAD, NAMESPACE, "kafka-2")

        rebalance_service.set_status("task-1", "Completed")
        await env.reconcile()

        assert (await _broker(env, 2)).phase == BrokerPhase.GRACEFUL_DOWNSCALE_SUCCEEDED
        assert len(await _owned(env, 2)) == 4

        result = await env.reconcile()

        assert result.action == ResultAction.CONVERGED
        assert await _owned(env, 2) == []
        status = await env.status()
        assert 2 not in status.brokers
        assert status.retired_broker_ids == [2]
        assert status.phase == ClusterPhase.RUNNING

    @pytest.mark.asyncio
    async def test_retired_id_rejected(self, env, make_spec):
        """Test a torn-down id cannot be added back."""
        await _running(env, make_spec())
        await env.update_spec(make_spec(broker_ids=(0, 1)))
        await env.converge()

        await env.update_spec(make_spec(broker_ids=(0, 1, 2)))
        result = await env.reconcile()

        assert result.action == ResultAction.FAILED
        status = await env.status()
        assert status.phase == ClusterPhase.VALIDATION_FAILED
        assert "broker id 2 was retired" in status.message

    @pytest.mark.asyncio
    async def test_disabled_rebalancing_tears_down_next_pass(self, env, make_spec, rebalance_service):
        """Test removal without rebalancing needs no task."""
        await _running(env, make_spec())
        await env.update_spec(make_spec(broker_ids=(0, 1)))

        await env.reconcile()
        assert (await _broker(env, 2)).phase == BrokerPhase.GRACEFUL_DOWNSCALE_SUCCEEDED

        result = await env.reconcile()

        assert result.action == ResultAction.CONVERGED
        assert await _owned(env, 2) == []
        assert rebalance_service.submissions == []

    @pytest.mark.asyncio
    async def test_pending_broker_removed_directly(self, env, make_spec, rebalance_service):
        """Test a broker that never joined is removed without a task."""
        await _running(env, make_spec(rebalancing=True))
        env.scheduler.auto_ready = False
        await env.update_spec(make_spec(broker_ids=(0, 1, 2, 3), rebalancing=True))
        await env.reconcile()
        assert (await _broker(env, 3)).phase == BrokerPhase.PENDING

        await env.update_spec(make_spec(broker_ids=(0, 1, 2), rebalancing=True))
        await env.reconcile()
        await env.reconcile()

        assert rebalance_service.submissions == []
        assert await _owned(env, 3) == []
        assert (await env.status()).retired_broker_ids == [3]

    @pytest.mark.asyncio
    async def test_removal_waits_for_running_upscale(self, env, make_spec, rebalance_service):
        """Test a broker removed mid-upscale drains after its add task resolves."""
        await _running(env, make_spec(rebalancing=True))
        await env.update_spec(make_spec(broker_ids=(0, 1, 2, 3), rebalancing=True))
        await env.reconcile()

        await env.update_spec(make_spec(broker_ids=(0, 1, 2), rebalancing=True))
        await env.reconcile()

        assert (await _broker(env, 3)).phase == BrokerPhase.GRACEFUL_UPSCALE_RUNNING
        assert rebalance_service.submissions == [("add_broker", 3)]

        rebalance_service.set_status("task-1", "Completed")
        await env.reconcile()

        assert (await _broker(env, 3)).phase == BrokerPhase.GRACEFUL_DOWNSCALE_RUNNING
        assert rebalance_service.submissions == [("add_broker", 3), ("remove_broker", 3)]


class TestTaskFailures:
    """Test failed and unreachable rebalancing tasks."""

    @pytest.mark.asyncio
    async def test_failed_task_holds_then_resubmits(self, env, make_spec, rebalance_service):
        """Test a failed task holds the broker until the backoff elapsed."""
        await _running(env, make_spec(rebalancing=True))
        await env.update_spec(make_spec(broker_ids=(0, 1), rebalancing=True))
        await env.reconcile()

        rebalance_service.set_status("task-1", "CompletedWithError")
        await env.reconcile()

        state = await _broker(env, 2)
        assert state.phase == BrokerPhase.GRACEFUL_DOWNSCALE_RUNNING
        assert state.graceful_action.task_phase == GracefulTaskPhase.FAILED
        assert state.graceful_action.error_message
        assert state.graceful_action.attempts == 1
        assert env.scheduler.has(ResourceKind.WORKLOAD, NAMESPACE, "kafka-2")

        env.clock.advance(999)
        await env.reconcile()
        assert len(rebalance_service.submissions) == 1

        env.clock.advance(1)
        await env.reconcile()

        assert rebalance_service.submissions == [("remove_broker", 2), ("remove_broker", 2)]
        state = await _broker(env, 2)
        assert state.graceful_action.task_id == "task-2"
        assert state.graceful_action.attempts == 2

    @pytest.mark.asyncio
    async def test_attempts_exhausted(self, env, make_spec, rebalance_service):
        """Test no resubmission once max attempts is reached."""
        defaults = {"retry_cooldown_ms": 1000, "max_attempts": 1}
        await _running(env, make_spec(rebalancing=True, task_defaults=defaults))
        await env.update_spec(make_spec(
            broker_ids=(0, 1), rebalancing=True, task_defaults=defaults,
        ))
        await env.reconcile()
        rebalance_service.set_status("task-1", "CompletedWithError")
        await env.reconcile()

        env.clock.advance(10 ** 6)
        result = await env.reconcile()

        assert result.action == ResultAction.REQUEUE
        assert len(rebalance_service.submissions) == 1
        state = await _broker(env, 2)
        assert state.phase == BrokerPhase.GRACEFUL_DOWNSCALE_RUNNING
        assert state.graceful_action.task_phase == GracefulTaskPhase.FAILED

    @pytest.mark.asyncio
    async def test_rejected_submission_counts_as_failure(self, env, make_spec, rebalance_service):
        """Test a rejected request is recorded as a failed attempt."""
        await _running(env, make_spec(rebalancing=True))
        rebalance_service.reject_submissions = True
        await env.update_spec(make_spec(broker_ids=(0, 1), rebalancing=True))

        await env.reconcile()

        state = await _broker(env, 2)
        assert state.phase == BrokerPhase.GRACEFUL_DOWNSCALE_RUNNING
        assert state.graceful_action.task_phase == GracefulTaskPhase.FAILED
        assert state.graceful_action.attempts == 1

    @pytest.mark.asyncio
    async def test_forgotten_task_is_failed(self, env, make_spec, rebalance_service):
        """Test a task unknown to the service counts as failed."""
        await _running(env, make_spec(rebalancing=True))
        await env.update_spec(make_spec(broker_ids=(0, 1), rebalancing=True))
        await env.reconcile()

        rebalance_service.tasks.clear()
        await env.reconcile()

        state = await _broker(env, 2)
        assert state.graceful_action.task_phase == GracefulTaskPhase.FAILED
        assert "not known" in state.graceful_action.error_message

    @pytest.mark.asyncio
    async def test_unreachable_service_keeps_phase(self, env, make_spec, rebalance_service):
        """Test an outage neither fails nor advances the task."""
        await _running(env, make_spec(rebalancing=True))
        await env.update_spec(make_spec(broker_ids=(0, 1), rebalancing=True))
        await env.reconcile()
        before = await _broker(env, 2)

        rebalance_service.available = False
        result = await env.reconcile()

        assert result.action == ResultAction.REQUEUE
        after = await _broker(env, 2)
        assert after == before
        assert after.graceful_action.task_id == "task-1"

    @pytest.mark.asyncio
    async def test_unreachable_service_delays_submission(self, env, make_spec, rebalance_service):
        """Test submission is retried once the service is back."""
        await _running(env, make_spec(rebalancing=True))
        rebalance_service.available = False
        await env.update_spec(make_spec(broker_ids=(0, 1), rebalancing=True))

        await env.reconcile()

        state = await _broker(env, 2)
        assert state.phase == BrokerPhase.GRACEFUL_DOWNSCALE_RUNNING
        assert state.graceful_action.task_phase == GracefulTaskPhase.NONE
        assert state.graceful_action.attempts == 0

        rebalance_service.available = True
        await env.reconcile()

        assert rebalance_service.submissions == [("remove_broker", 2)]


class ReplayingRebalanceClient:
    """Answers every poll with a fixed status, whatever task id was asked for."""

    def __init__(self, answer):
        self.answer = answer
        self.polled = []
        self.submitted = []

    async def status(self, task_id):
        self.polled.append(task_id)
        return self.answer

    async def submit(self, kind, broker_id=None):
        self.submitted.append((kind, broker_id))
        return "task-new"


class TestStaleTaskStatus:
    """Test poll results for a superseded task are discarded."""

    @pytest.mark.asyncio
    async def test_superseded_task_result_ignored(self, make_spec):
        """Test a result for an older task id changes nothing."""
        spec = make_spec(broker_ids=(0, 1), rebalancing=True)
        client = ReplayingRebalanceClient(TaskStatus("task-old", TaskState.SUCCEEDED))
        lifecycle = BrokerLifecycleController(
            NAMESPACE,
            CLUSTER,
            spec,
            ResourceSetGenerator(NAMESPACE, CLUSTER, spec),
            InMemoryCluster(),
            client,
            now_ms=1_000_000,
        )
        state = BrokerState(
            phase=BrokerPhase.GRACEFUL_DOWNSCALE_RUNNING,
            graceful_action=GracefulActionState(
                task_id="task-new",
                task_kind=TaskKind.REMOVE_BROKER.value,
                task_phase=GracefulTaskPhase.RUNNING,
                attempts=2,
            ),
        )

        await lifecycle.advance_removal(2, state)

        assert client.polled == ["task-new"]
        assert client.submitted == []
        assert state.phase == BrokerPhase.GRACEFUL_DOWNSCALE_RUNNING
        assert state.graceful_action.task_id == "task-new"
        assert state.graceful_action.task_phase == GracefulTaskPhase.RUNNING
        assert state.graceful_action.attempts == 2
