"""Tests for the top-level alert orchestrator."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import update

from oncall.database import get_session_maker
from oncall.models.alert import AlertSeverity, AlertStatus
from oncall.models.orchestration import JournalEntry, OrchestrationStatus
from oncall.schemas.notification import NotificationResult
from oncall.services import alert_service
from oncall.services.alert_orchestrator import (
    FAILED_COMMENT_PREFIX,
    NO_COVERAGE_COMMENT,
)
from oncall.services.escalation_activities import (
    ALERT_ORCHESTRATOR,
    start_alert_escalation,
)

DISPATCH = "oncall.services.escalation_activities.dispatch_notification"
RESOLVE_COVERAGE = "oncall.services.escalation_activities.resolve_coverage"


async def new_alert(db_session, customer_id: str = "cust-1"):
    alert = await alert_service.create_alert(
        db_session,
        customer_id,
        "api-gateway",
        AlertSeverity.CRITICAL,
        title="5xx rate above threshold",
    )
    return alert_service.to_record(alert)


async def load_alert(alert_id: str):
    async with get_session_maker()() as db:
        return await alert_service.get_alert(db, alert_id)


class TestNoCoverage:
    """Tests for alerts nobody is on call for."""

    @pytest.mark.asyncio
    async def test_marks_escalated_without_paging(self, runtime, db_session):
        alert = await new_alert(db_session)

        with patch(DISPATCH, new_callable=AsyncMock) as mock_dispatch:
            await runtime.start_new(ALERT_ORCHESTRATOR, alert.id, alert)
            assert await runtime.execute(alert.id) == OrchestrationStatus.COMPLETED

        mock_dispatch.assert_not_awaited()

        instance = await runtime.get_status(alert.id)
        assert instance.output == {"outcome": "no_coverage", "attempts": 0}

        stored = await load_alert(alert.id)
        assert stored.status == AlertStatus.ESCALATED
        assert stored.escalation_attempts == 0
        assert len(stored.changes) == 1
        assert stored.changes[0].comment == NO_COVERAGE_COMMENT
        assert stored.changes[0].previous_status == AlertStatus.RECEIVED

    @pytest.mark.asyncio
    async def test_other_customers_coverage_not_used(
        self, runtime, db_session, seed_coverage
    ):
        await seed_coverage("cust-2", ["alice"])
        alert = await new_alert(db_session, "cust-1")

        with patch(DISPATCH, new_callable=AsyncMock) as mock_dispatch:
            await runtime.start_new(ALERT_ORCHESTRATOR, alert.id, alert)
            await runtime.execute(alert.id)

        mock_dispatch.assert_not_awaited()
        instance = await runtime.get_status(alert.id)
        assert instance.output["outcome"] == "no_coverage"


class TestFailures:
    """Tests for errors during a run."""

    @pytest.mark.asyncio
    async def test_coverage_lookup_failure_marks_alert_failed(
        self, runtime, db_session
    ):
        alert = await new_alert(db_session)

        with patch(RESOLVE_COVERAGE, new_callable=AsyncMock) as mock_resolve:
            mock_resolve.side_effect = RuntimeError("store unavailable")
            await runtime.start_new(ALERT_ORCHESTRATOR, alert.id, alert)
            assert await runtime.execute(alert.id) == OrchestrationStatus.COMPLETED

        instance = await runtime.get_status(alert.id)
        assert instance.output == {"outcome": "failed", "attempts": 0}

        stored = await load_alert(alert.id)
        assert stored.status == AlertStatus.FAILED
        assert stored.changes[-1].comment.startswith("Orchestration failed:")
        assert "store unavailable" in stored.changes[-1].comment

    @pytest.mark.asyncio
    async def test_dispatcher_crash_marks_alert_failed(
        self, runtime, db_session, seed_coverage
    ):
        await seed_coverage("cust-1", ["alice"])
        alert = await new_alert(db_session)

        with patch(DISPATCH, new_callable=AsyncMock) as mock_dispatch:
            mock_dispatch.side_effect = RuntimeError("client misconfigured")
            await runtime.start_new(ALERT_ORCHESTRATOR, alert.id, alert)
            await runtime.execute(alert.id)

        stored = await load_alert(alert.id)
        assert stored.status == AlertStatus.FAILED
        assert "client misconfigured" in stored.changes[-1].comment

    @pytest.mark.asyncio
    async def test_failure_after_acknowledge_keeps_status(
        self, runtime, db_session, seed_coverage
    ):
        await seed_coverage("cust-1", ["alice"])
        alert = await new_alert(db_session)
        async with get_session_maker()() as db:
            await alert_service.acknowledge_alert(db, alert.id, "alice")

        with patch(RESOLVE_COVERAGE, new_callable=AsyncMock) as mock_resolve:
            mock_resolve.side_effect = RuntimeError("store unavailable")
            await runtime.start_new(ALERT_ORCHESTRATOR, alert.id, alert)
            await runtime.execute(alert.id)

        stored = await load_alert(alert.id)
        assert stored.status == AlertStatus.ACCEPTED


class TestStartAlertEscalation:
    """Tests for starting runs from the service layer."""

    @pytest.mark.asyncio
    async def test_starts_and_dispatches(self, runtime, db_session, seed_coverage):
        await seed_coverage("cust-1", ["alice"])
        alert = await new_alert(db_session)

        with patch(DISPATCH, new_callable=AsyncMock) as mock_dispatch:
            mock_dispatch.return_value = NotificationResult(email_sent=True)
            instance_id = await start_alert_escalation(runtime, alert)
            await runtime.drain()

        assert instance_id == alert.id
        instance = await runtime.get_status(alert.id)
        assert instance.status == OrchestrationStatus.SUSPENDED
        mock_dispatch.assert_awaited_once()


class TestRunFailureHandling:
    """Tests for runs the runtime fails outside the orchestrator."""

    @pytest.mark.asyncio
    async def test_journal_mismatch_marks_alert_failed(
        self, runtime, clock, db_session, seed_coverage
    ):
        await seed_coverage("cust-1", ["alice"])
        alert = await new_alert(db_session)

        with patch(DISPATCH, new_callable=AsyncMock) as mock_dispatch:
            mock_dispatch.return_value = NotificationResult(email_sent=True)
            await runtime.start_new(ALERT_ORCHESTRATOR, alert.id, alert)
            assert await runtime.execute(alert.id) == OrchestrationStatus.SUSPENDED

            async with get_session_maker()() as db:
                await db.execute(
                    update(JournalEntry)
                    .where(
                        JournalEntry.instance_id == alert.id,
                        JournalEntry.step_index == 0,
                    )
                    .values(name="renamed_activity")
                )
                await db.commit()

            clock.advance(timedelta(minutes=5))
            assert await runtime.execute(alert.id) == OrchestrationStatus.FAILED

        stored = await load_alert(alert.id)
        assert stored.status == AlertStatus.FAILED
        assert stored.changes[-1].new_status == AlertStatus.FAILED
        assert stored.changes[-1].comment.startswith(FAILED_COMMENT_PREFIX)

    @pytest.mark.asyncio
    async def test_failed_mark_activity_still_fails_alert(self, runtime, db_session):
        alert = await new_alert(db_session)
        real_mark_failed = alert_service.mark_failed
        comments = []

        async def flaky_mark_failed(db, alert_id, comment):
            comments.append(comment)
            if len(comments) == 1:
                raise RuntimeError("timeline write failed")
            return await real_mark_failed(db, alert_id, comment)

        with (
            patch(RESOLVE_COVERAGE, new_callable=AsyncMock) as mock_resolve,
            patch.object(alert_service, "mark_failed", new=flaky_mark_failed),
        ):
            mock_resolve.side_effect = RuntimeError("store unavailable")
            await runtime.start_new(ALERT_ORCHESTRATOR, alert.id, alert)
            assert await runtime.execute(alert.id) == OrchestrationStatus.FAILED

        stored = await load_alert(alert.id)
        assert stored.status == AlertStatus.FAILED
        assert "timeline write failed" in stored.changes[-1].comment
