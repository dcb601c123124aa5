"""Pytest configuration and shared fixtures.

Every test that touches the database gets a fresh in-memory SQLite
database; the engine is disposed afterwards so the next test starts
empty.
"""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

# Set testing mode BEFORE importing the app
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from oncall.config import settings

settings.testing = True
settings.database_url = "sqlite+aiosqlite:///:memory:"

from oncall.database import get_session_maker, init_models, reset_database
from oncall.durable.runtime import OrchestrationRuntime
from oncall.main import app
from oncall.models.roster import (
    CustomerPlanBinding,
    OnCallPlan,
    OnCallUser,
    ScheduleSlice,
    SliceRole,
)
from oncall.services.escalation_activities import (
    get_runtime,
    register_escalation_workflows,
)

START_TIME = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


class FakeClock:
    """Controllable replacement for the runtime's wall clock."""

    def __init__(self, start: datetime = START_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Create the schema in a fresh database and dispose it afterwards."""
    await init_models()
    yield
    await reset_database()


@pytest_asyncio.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for each test."""
    async with get_session_maker()() as session:
        yield session


@pytest.fixture
def runtime(database, clock) -> OrchestrationRuntime:
    """Runtime with the escalation workflows registered and a fake clock."""
    return register_escalation_workflows(
        OrchestrationRuntime(
            clock=clock,
            max_concurrent_runs=4,
            lease_seconds=600,
            worker_id="test-worker",
        )
    )


SeedCoverage = Callable[..., Awaitable[OnCallPlan]]


@pytest_asyncio.fixture
async def seed_coverage(db_session, clock) -> SeedCoverage:
    """Factory that binds a customer to a plan and covers the current day.

    Users are created on first mention with an email address and a
    phone number.
    """

    async def _seed(
        customer_id: str,
        primary: list[str],
        backup: list[str] | None = None,
        *,
        ack_timeout_minutes: int = 5,
        max_attempts_per_tier: int = 3,
    ) -> OnCallPlan:
        backup = backup or []

        for user_id in [*primary, *backup]:
            if await db_session.get(OnCallUser, user_id) is None:
                db_session.add(
                    OnCallUser(
                        id=user_id,
                        display_name=user_id.title(),
                        email=f"{user_id}@example.com",
                        phone="+15550100",
                    )
                )

        plan = OnCallPlan(
            name=f"{customer_id} plan",
            ack_timeout_minutes=ack_timeout_minutes,
            max_attempts_per_tier=max_attempts_per_tier,
            retry_delay_minutes=5,
        )
        db_session.add(plan)
        await db_session.flush()

        db_session.add(
            CustomerPlanBinding(
                customer_id=customer_id,
                plan_id=plan.id,
                primary_member_ids=primary,
                backup_member_ids=backup,
            )
        )

        start = clock.now - timedelta(days=1)
        end = clock.now + timedelta(days=1)
        for role, member_ids in ((SliceRole.PRIMARY, primary), (SliceRole.BACKUP, backup)):
            if member_ids:
                db_session.add(
                    ScheduleSlice(
                        customer_id=customer_id,
                        plan_id=plan.id,
                        role=role,
                        member_ids=member_ids,
                        start_utc=start,
                        end_utc=end,
                    )
                )

        await db_session.commit()
        return plan

    return _seed


@pytest_asyncio.fixture
async def client(runtime) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client wired to the test runtime."""
    app.dependency_overrides[get_runtime] = lambda: runtime
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
    await runtime.drain()
