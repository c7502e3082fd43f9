"""Shared test configuration and fixtures.

Every test gets a fresh in-memory SQLite database (aiosqlite). A single
connection is shared through ``StaticPool`` so the test session and the
sessions opened by the app see the same data. Fixture data must be committed
before calling the API.
"""

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from coachpay.auth.jwt import create_access_token
from coachpay.billing.clock import FrozenClock, get_clock
from coachpay.database import Base, get_db
from coachpay.main import app
from coachpay.models import PackageTemplate, Subscription, SubscriptionStatus, User
from coachpay.notifications.email import EmailNotifier, get_email_notifier

NOW = datetime(2025, 6, 15, 12, 0, 0)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Clock and notifications
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def notifier() -> AsyncMock:
    return AsyncMock(spec=EmailNotifier)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(session_factory, clock, notifier) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient bound to the app, the test database and the frozen clock."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_email_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    with patch("coachpay.api.v1.webhooks.async_session_factory", session_factory):
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    async def _make_user(**overrides) -> User:
        unique = uuid.uuid4().hex[:8]
        fields = {
            "email": f"user-{unique}@test.com",
            "name": "Test User",
            "first_name": "Alex",
            "is_active": True,
            "stripe_customer_id": f"cus_{unique}",
        }
        fields.update(overrides)
        user = User(**fields)
        db_session.add(user)
        await db_session.flush()
        return user

    return _make_user


@pytest.fixture
def make_package(db_session: AsyncSession) -> Callable[..., Awaitable[PackageTemplate]]:
    async def _make_package(**overrides) -> PackageTemplate:
        fields = {
            "name": "Premium Yearly",
            "stripe_lookup_key": "premium_yearly",
            "duration": "YEARLY",
            "price_cents": 9900,
        }
        fields.update(overrides)
        package = PackageTemplate(**fields)
        db_session.add(package)
        await db_session.flush()
        return package

    return _make_package


@pytest.fixture
def make_subscription(db_session: AsyncSession) -> Callable[..., Awaitable[Subscription]]:
    async def _make_subscription(user: User, package: PackageTemplate, **overrides) -> Subscription:
        fields = {
            "user_id": user.id,
            "package_id": package.id,
            "status": SubscriptionStatus.ACTIVE,
            "stripe_subscription_id": f"sub_{uuid.uuid4().hex[:8]}",
            "stripe_lookup_key": package.stripe_lookup_key,
            "start_date": NOW - timedelta(days=120),
            "end_date": NOW + timedelta(days=245),
        }
        fields.update(overrides)
        subscription = Subscription(**fields)
        db_session.add(subscription)
        await db_session.flush()
        return subscription

    return _make_subscription


@pytest.fixture
def auth_headers_for() -> Callable[[User], dict[str, str]]:
    def _headers(user: User) -> dict[str, str]:
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers
