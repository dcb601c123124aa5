"""Tests for the orchestration runtime: starting, leasing and resuming."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import update

from oncall.database import get_session_maker
from oncall.durable.errors import (
    InstanceAlreadyRunningError,
    InstanceNotFoundError,
    UnknownFunctionError,
)
from oncall.durable.journal import load_history
from oncall.durable.runtime import OrchestrationRuntime
from oncall.models.orchestration import OrchestrationInstance, OrchestrationStatus


@pytest.fixture
def durable(database, clock) -> OrchestrationRuntime:
    runtime = OrchestrationRuntime(
        clock=clock,
        max_concurrent_runs=4,
        lease_seconds=600,
        worker_id="test-worker",
    )

    async def wait_then_finish(ctx, data):
        await ctx.call_activity("noop", data)
        await ctx.delay(timedelta(minutes=5))
        return {"done": data}

    async def noop(value):
        return value

    runtime.register_activity("noop", noop)
    runtime.register_orchestrator("waiter", wait_then_finish)
    return runtime


async def set_lease(instance_id: str, owner: str, expires_at) -> None:
    async with get_session_maker()() as db:
        await db.execute(
            update(OrchestrationInstance)
            .where(OrchestrationInstance.instance_id == instance_id)
            .values(lease_owner=owner, lease_expires_at=expires_at)
        )
        await db.commit()


class TestStartNew:
    """Tests for creating instances."""

    @pytest.mark.asyncio
    async def test_creates_pending_instance(self, durable, clock):
        instance_id = await durable.start_new("waiter", "alert-1", "x")

        assert instance_id == "alert-1"
        instance = await durable.get_status("alert-1")
        assert instance.status == OrchestrationStatus.PENDING
        assert instance.input == "x"
        assert instance.created_at == clock.now

    @pytest.mark.asyncio
    async def test_duplicate_start_rejected_while_active(self, durable):
        await durable.start_new("waiter", "alert-1", "x")

        with pytest.raises(InstanceAlreadyRunningError):
            await durable.start_new("waiter", "alert-1", "x")

        await durable.execute("alert-1")
        with pytest.raises(InstanceAlreadyRunningError):
            await durable.start_new("waiter", "alert-1", "x")

    @pytest.mark.asyncio
    async def test_unknown_orchestrator_rejected(self, durable):
        with pytest.raises(UnknownFunctionError):
            await durable.start_new("nope", "alert-1")

    @pytest.mark.asyncio
    async def test_completed_instance_can_be_restarted(self, durable, clock):
        await durable.start_new("waiter", "alert-1", "first")
        await durable.execute("alert-1")
        clock.advance(timedelta(minutes=5))
        assert await durable.execute("alert-1") == OrchestrationStatus.COMPLETED

        await durable.start_new("waiter", "alert-1", "second")

        instance = await durable.get_status("alert-1")
        assert instance.status == OrchestrationStatus.PENDING
        assert instance.output is None
        assert instance.input == "second"
        async with get_session_maker()() as db:
            assert await load_history(db, "alert-1") == []


class TestGetStatus:
    """Tests for status lookup."""

    @pytest.mark.asyncio
    async def test_unknown_instance_raises(self, durable):
        with pytest.raises(InstanceNotFoundError):
            await durable.get_status("missing")


class TestExecute:
    """Tests for claiming and executing instances."""

    @pytest.mark.asyncio
    async def test_suspended_instance_records_wake_time(self, durable, clock):
        await durable.start_new("waiter", "alert-1", "x")

        assert await durable.execute("alert-1") == OrchestrationStatus.SUSPENDED

        instance = await durable.get_status("alert-1")
        assert instance.wake_at == clock.now + timedelta(minutes=5)
        assert instance.lease_owner is None

    @pytest.mark.asyncio
    async def test_concurrent_execution_in_process_rejected(self, durable):
        await durable.start_new("waiter", "alert-1", "x")

        results = await asyncio.gather(
            durable.execute("alert-1"),
            durable.execute("alert-1"),
        )

        assert None in results
        assert OrchestrationStatus.SUSPENDED in results

    @pytest.mark.asyncio
    async def test_instance_leased_elsewhere_not_executed(self, durable, clock):
        await durable.start_new("waiter", "alert-1", "x")
        await set_lease("alert-1", "other-worker", clock.now + timedelta(minutes=10))

        assert await durable.execute("alert-1") is None

        instance = await durable.get_status("alert-1")
        assert instance.status == OrchestrationStatus.PENDING
        assert instance.lease_owner == "other-worker"

    @pytest.mark.asyncio
    async def test_expired_lease_taken_over(self, durable, clock):
        await durable.start_new("waiter", "alert-1", "x")
        await set_lease("alert-1", "other-worker", clock.now + timedelta(minutes=10))

        clock.advance(timedelta(minutes=11))

        assert await durable.execute("alert-1") == OrchestrationStatus.SUSPENDED

    @pytest.mark.asyncio
    async def test_terminal_instance_not_executed(self, durable, clock):
        await durable.start_new("waiter", "alert-1", "x")
        await durable.execute("alert-1")
        clock.advance(timedelta(minutes=5))
        await durable.execute("alert-1")

        assert await durable.execute("alert-1") is None


class TestTick:
    """Tests for the periodic due-instance sweep."""

    @pytest.mark.asyncio
    async def test_tick_runs_pending_then_due_instances(self, durable, clock):
        await durable.start_new("waiter", "alert-1", "a")
        await durable.start_new("waiter", "alert-2", "b")

        assert await durable.tick() == 2
        assert await durable.due_instances() == []
        assert await durable.tick() == 0

        clock.advance(timedelta(minutes=5))
        assert sorted(await durable.due_instances()) == ["alert-1", "alert-2"]
        assert await durable.tick() == 2

        for instance_id in ("alert-1", "alert-2"):
            instance = await durable.get_status(instance_id)
            assert instance.status == OrchestrationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_tick_skips_leased_instances(self, durable, clock):
        await durable.start_new("waiter", "alert-1", "a")
        await set_lease("alert-1", "other-worker", clock.now + timedelta(minutes=10))

        assert await durable.due_instances() == []

    @pytest.mark.asyncio
    async def test_abandoned_running_instance_is_due(self, durable, clock):
        await durable.start_new("waiter", "alert-1", "a")
        async with get_session_maker()() as db:
            await db.execute(
                update(OrchestrationInstance)
                .where(OrchestrationInstance.instance_id == "alert-1")
                .values(
                    status=OrchestrationStatus.RUNNING,
                    lease_owner="dead-worker",
                    lease_expires_at=clock.now - timedelta(seconds=1),
                )
            )
            await db.commit()

        assert await durable.due_instances() == ["alert-1"]


class TestDispatch:
    """Tests for background execution."""

    @pytest.mark.asyncio
    async def test_dispatch_and_drain(self, durable):
        await durable.start_new("waiter", "alert-1", "x")

        durable.dispatch("alert-1")
        await durable.drain()

        instance = await durable.get_status("alert-1")
        assert instance.status == OrchestrationStatus.SUSPENDED


class TestFailureHandler:
    """Tests for the per-orchestrator failure handler."""

    @pytest.mark.asyncio
    async def test_handler_called_when_instance_fails(self, durable):
        on_failure = AsyncMock()

        async def explode(ctx, data):
            raise RuntimeError("journal unreadable")

        durable.register_orchestrator("exploder", explode, on_failure=on_failure)
        await durable.start_new("exploder", "alert-1")

        assert await durable.execute("alert-1") == OrchestrationStatus.FAILED

        on_failure.assert_awaited_once_with("alert-1", "journal unreadable")

    @pytest.mark.asyncio
    async def test_handler_not_called_on_success_or_suspend(self, durable, clock):
        on_failure = AsyncMock()

        async def wait_once(ctx, data):
            await ctx.delay(timedelta(minutes=5))
            return data

        durable.register_orchestrator("watched", wait_once, on_failure=on_failure)
        await durable.start_new("watched", "alert-1", "x")

        assert await durable.execute("alert-1") == OrchestrationStatus.SUSPENDED
        clock.advance(timedelta(minutes=5))
        assert await durable.execute("alert-1") == OrchestrationStatus.COMPLETED

        on_failure.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_handler_error_leaves_instance_failed(self, durable):
        on_failure = AsyncMock(side_effect=RuntimeError("store down"))

        async def explode(ctx, data):
            raise RuntimeError("boom")

        durable.register_orchestrator("exploder", explode, on_failure=on_failure)
        await durable.start_new("exploder", "alert-1")

        assert await durable.execute("alert-1") == OrchestrationStatus.FAILED

        instance = await durable.get_status("alert-1")
        assert instance.error == "boom"
        assert instance.lease_owner is None
