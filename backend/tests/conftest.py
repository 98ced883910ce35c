"""Pytest configuration and fixtures for async testing."""
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from metering.config import settings
from metering.database import Database
from metering.main import create_app
from metering.models.customer import BillingCustomer
from metering.models.plan import Plan
from metering.workers.dispatcher import InProcessEventDispatcher
from utils.helpers import FakeStripeAdapter, auth_headers


@pytest.fixture(autouse=True)
def _no_plan_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    """Plan reads go straight to the database."""
    monkeypatch.setattr(settings, "cache_enabled", False)


@pytest_asyncio.fixture(scope="function")
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """
    Fresh SQLite database file for each test.

    Yields:
        Database: Handle with all tables created
    """
    db = Database(f"sqlite+aiosqlite:///{tmp_path}/metering.db", connect_args={"timeout": 30})
    await db.create_all()
    yield db
    await db.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test.

    Yields:
        AsyncSession: Database session for testing
    """
    async with database.session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
def fake_stripe() -> FakeStripeAdapter:
    """In-memory Stripe adapter."""
    return FakeStripeAdapter()


@pytest_asyncio.fixture(scope="function")
async def dispatcher(
    database: Database, fake_stripe: FakeStripeAdapter
) -> AsyncGenerator[InProcessEventDispatcher, None]:
    """Running in-process dispatcher without the periodic sweeper."""
    event_dispatcher = InProcessEventDispatcher(database, fake_stripe, sweep_interval=None)
    await event_dispatcher.start()
    yield event_dispatcher
    await event_dispatcher.stop()


@pytest_asyncio.fixture(scope="function")
async def async_client(
    database: Database,
    fake_stripe: FakeStripeAdapter,
    dispatcher: InProcessEventDispatcher,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client bound to an application using the test database.

    Yields:
        AsyncClient: Async HTTP client for API testing
    """
    app = create_app(database=database, dispatcher=dispatcher, stripe_adapter=fake_stripe)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture(scope="function")
def user_id() -> UUID:
    """Id of the authenticated test user."""
    return uuid4()


@pytest.fixture(scope="function")
def user_headers(user_id: UUID) -> dict[str, str]:
    """Bearer header for a regular user."""
    return auth_headers(user_id)


@pytest.fixture(scope="function")
def admin_headers() -> dict[str, str]:
    """Bearer header for an administrator."""
    return auth_headers(uuid4(), role="ADMIN")


@pytest.fixture(scope="function")
def sample_plan_data() -> dict:
    """
    Sample plan data for testing.

    Returns:
        dict: Plan creation data
    """
    return {
        "name": "Básico",
        "price_monthly": 4990,
        "currency": "BRL",
        "stripe_price_id": "price_basic_monthly",
        "features": {"generations": 50, "diagnostics": 10, "funnel_analysis": 0},
    }


async def _create_plan(db_session: AsyncSession, **fields) -> Plan:
    plan = Plan(**fields)
    db_session.add(plan)
    await db_session.commit()
    await db_session.refresh(plan)
    return plan


@pytest_asyncio.fixture(scope="function")
async def free_plan(db_session: AsyncSession) -> Plan:
    """Default plan applied to users without a subscription."""
    return await _create_plan(
        db_session,
        name=settings.default_plan_name,
        price_monthly=0,
        features={"generations": 5, "diagnostics": 1, "funnel_analysis": 0},
    )


@pytest_asyncio.fixture(scope="function")
async def basic_plan(db_session: AsyncSession) -> Plan:
    """Paid plan with finite limits."""
    return await _create_plan(
        db_session,
        name="Básico",
        price_monthly=4990,
        stripe_price_id="price_basic_monthly",
        features={"generations": 50, "diagnostics": 10, "funnel_analysis": 0},
    )


@pytest_asyncio.fixture(scope="function")
async def premium_plan(db_session: AsyncSession) -> Plan:
    """Paid plan with every feature unlimited."""
    return await _create_plan(
        db_session,
        name="Premium",
        price_monthly=14990,
        stripe_price_id="price_premium_monthly",
        features={"generations": -1, "diagnostics": -1, "funnel_analysis": -1},
    )


@pytest_asyncio.fixture(scope="function")
async def billing_customer(db_session: AsyncSession, user_id: UUID) -> BillingCustomer:
    """Processor customer linked to the test user."""
    customer = BillingCustomer(user_id=user_id, external_customer_id="cus_test_123", email="user@example.com")
    db_session.add(customer)
    await db_session.commit()
    await db_session.refresh(customer)
    return customer
