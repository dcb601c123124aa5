"""Tests for the alert and orchestration endpoints."""

from unittest.mock import patch

import pytest

from oncall.config import settings
from oncall.models.alert import AlertSeverity, AlertStatus
from oncall.services.alert_service import create_alert


async def make_alert(db, status: AlertStatus | None = None):
    alert = await create_alert(
        db, "cust-1", "checkout-api", AlertSeverity.HIGH, title="Latency spike"
    )
    if status is not None:
        alert.status = status
        await db.commit()
    return alert


class TestGetAlert:
    """Tests for GET /api/alerts/{id}."""

    @pytest.mark.asyncio
    async def test_unknown_alert(self, client):
        response = await client.get("/api/alerts/missing")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_returns_alert_with_timeline(self, client, db_session):
        alert = await make_alert(db_session, AlertStatus.PENDING)
        await client.post(f"/api/alerts/{alert.id}/acknowledge", json={"actor": "alice"})

        response = await client.get(f"/api/alerts/{alert.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == alert.id
        assert data["status"] == "accepted"
        assert data["timeline"] == [
            {
                "sequence": 1,
                "actor": "alice",
                "comment": "Acknowledged by alice",
                "previous_status": "pending",
                "new_status": "accepted",
                "created_at": data["timeline"][0]["created_at"],
            }
        ]


class TestEscalate:
    """Tests for POST /api/alerts/{id}/escalate."""

    @pytest.mark.asyncio
    async def test_unknown_alert(self, client):
        response = await client.post("/api/alerts/missing/escalate")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_starts_run(self, client, runtime, db_session):
        alert = await make_alert(db_session)

        response = await client.post(f"/api/alerts/{alert.id}/escalate")
        await runtime.drain()

        assert response.status_code == 202
        assert response.json() == {
            "alert_id": alert.id,
            "instance_id": alert.id,
            "status": "escalating",
        }

        status_response = await client.get(f"/api/orchestrations/{alert.id}")
        assert status_response.status_code == 200
        assert status_response.json()["status"] == "completed"
        assert status_response.json()["output"] == {
            "outcome": "no_coverage",
            "attempts": 0,
        }

    @pytest.mark.asyncio
    async def test_second_escalation_while_running_rejected(
        self, client, runtime, db_session
    ):
        alert = await make_alert(db_session)

        with patch.object(runtime, "dispatch"):
            first = await client.post(f"/api/alerts/{alert.id}/escalate")
            second = await client.post(f"/api/alerts/{alert.id}/escalate")

        assert first.status_code == 202
        assert second.status_code == 409

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status", [AlertStatus.ACCEPTED, AlertStatus.RESOLVED, AlertStatus.FAILED]
    )
    async def test_handled_alert_rejected(self, client, db_session, status):
        alert = await make_alert(db_session, status)

        response = await client.post(f"/api/alerts/{alert.id}/escalate")

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_configured_handled_status_rejected(self, client, db_session):
        alert = await make_alert(db_session, AlertStatus.ESCALATED)

        with patch.object(settings, "escalation_handled_statuses", ["escalated"]):
            response = await client.post(f"/api/alerts/{alert.id}/escalate")

        assert response.status_code == 409
        assert response.json()["detail"] == "Alert is already escalated"


class TestAcknowledgeAndResolve:
    """Tests for the out-of-band actions."""

    @pytest.mark.asyncio
    async def test_acknowledge(self, client, db_session):
        alert = await make_alert(db_session, AlertStatus.ESCALATED)

        response = await client.post(
            f"/api/alerts/{alert.id}/acknowledge",
            json={"actor": "bob", "comment": "Looking into it"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "accepted"

    @pytest.mark.asyncio
    async def test_acknowledge_twice_conflicts(self, client, db_session):
        alert = await make_alert(db_session, AlertStatus.ACCEPTED)

        response = await client.post(
            f"/api/alerts/{alert.id}/acknowledge", json={"actor": "bob"}
        )

        assert response.status_code == 409
        assert response.json()["detail"] == "Alert is already accepted"

    @pytest.mark.asyncio
    async def test_acknowledge_requires_actor(self, client, db_session):
        alert = await make_alert(db_session)

        response = await client.post(f"/api/alerts/{alert.id}/acknowledge", json={})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_resolve(self, client, db_session):
        alert = await make_alert(db_session, AlertStatus.ACCEPTED)

        response = await client.post(
            f"/api/alerts/{alert.id}/resolve", json={"actor": "bob"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "resolved"
        assert data["resolved_at"] is not None

    @pytest.mark.asyncio
    async def test_resolve_unknown_alert(self, client):
        response = await client.post("/api/alerts/missing/resolve", json={"actor": "bob"})

        assert response.status_code == 404


class TestOrchestrationStatus:
    """Tests for GET /api/orchestrations/{id}."""

    @pytest.mark.asyncio
    async def test_unknown_instance(self, client):
        response = await client.get("/api/orchestrations/missing")

        assert response.status_code == 404
