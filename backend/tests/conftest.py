"""
Pytest configuration and shared fixtures for backend tests.
"""

import sys
from pathlib import Path

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable
from unittest.mock import AsyncMock, MagicMock

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import after path is set
from adapters.analysis.scoring_client import AnalysisWebhookClient
from adapters.payments.paypal_adapter import PayPalAdapter
from core.container import ApplicationContainer, build_container
from core.plans import PLANS, PlanCatalog
from core.security import TokenService
from infrastructure.config.settings import Settings
from infrastructure.database.models import Base
from infrastructure.repositories.entitlement_store import SQLAlchemyEntitlementStore

# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_JWT_SECRET = "test-jwt-secret-key-that-is-long-enough-for-hs256"

# External plan ids used throughout the tests
TEST_EXTERNAL_PLAN_IDS = {
    "P-STARTER-TEST": "starter",
    "plan_pro": "pro",
    "P-BUSINESS-TEST": "business",
}

OWNER_ID = "owner-0001"


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    return Settings(
        _env_file=None,
        environment="testing",
        database_url=TEST_DATABASE_URL,
        redis_url=None,
        jwt_secret_key=TEST_JWT_SECRET,
        jwt_audience="authenticated",
        paypal_client_id="test-client-id",
        paypal_client_secret="test-client-secret",
        paypal_webhook_id=None,
        paypal_plan_starter="P-STARTER-TEST",
        paypal_plan_pro="plan_pro",
        paypal_plan_business="P-BUSINESS-TEST",
        owner_user_ids=OWNER_ID,
        guest_monthly_cap=2,
        degraded_fallback_limit=999,
        entitlement_store_timeout=5.0,
    )


@pytest.fixture
def catalog() -> PlanCatalog:
    return PlanCatalog(PLANS, external_ids=TEST_EXTERNAL_PLAN_IDS, default_plan_id="free")


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Session for arranging rows directly in tests."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def store(session_maker) -> SQLAlchemyEntitlementStore:
    return SQLAlchemyEntitlementStore(session_maker, timeout=5.0)


@pytest.fixture
def token_service() -> TokenService:
    return TokenService(secret_key=TEST_JWT_SECRET, audience="authenticated")


@pytest.fixture
def make_auth_headers(token_service: TokenService) -> Callable[..., dict]:
    """Build Authorization headers for any user id / role."""

    def _make(user_id: str, role: str | None = None) -> dict:
        token = token_service.create_access_token(user_id, email=f"{user_id}@example.com", role=role)
        return {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def mock_paypal() -> MagicMock:
    """PayPal adapter with every network call mocked."""
    paypal = MagicMock(spec=PayPalAdapter)
    paypal.get_access_token = AsyncMock(return_value="test-access-token")
    paypal.create_subscription = AsyncMock()
    paypal.get_subscription = AsyncMock()
    paypal.cancel_subscription = AsyncMock(return_value=True)
    paypal.verify_webhook_signature = AsyncMock(return_value=True)
    return paypal


@pytest.fixture
def mock_scoring() -> MagicMock:
    scoring = MagicMock(spec=AnalysisWebhookClient)
    scoring.analyze = AsyncMock(return_value={"score": 82, "recommendations": ["Add an FAQ"]})
    scoring.compare = AsyncMock(return_value={"user_score": 70, "competitor_score": 64})
    return scoring


@pytest.fixture
def container(
    test_settings, db_engine, mock_paypal, mock_scoring, token_service
) -> ApplicationContainer:
    return build_container(
        test_settings,
        engine=db_engine,
        paypal=mock_paypal,
        scoring=mock_scoring,
        token_service=token_service,
    )


@pytest.fixture
async def async_client(container: ApplicationContainer) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the test container installed."""
    # Import app here so settings and routes load after sys.path is set
    from main import app

    app.state.container = container

    # Reset rate limiter state between tests to prevent cross-test 429s
    if hasattr(app.state, "limiter"):
        app.state.limiter.reset()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.state.container = None


def webhook_payload(
    event_type: str,
    subscription_id: str = "I-SUB0001",
    custom_id: str | None = "user-1",
    plan_id: str | None = "plan_pro",
    create_time: datetime | None = None,
) -> dict:
    """Build a PayPal webhook envelope."""
    resource: dict = {"id": subscription_id, "status": "ACTIVE"}
    if custom_id is not None:
        resource["custom_id"] = custom_id
    if plan_id is not None:
        resource["plan_id"] = plan_id

    payload: dict = {
        "id": f"WH-{subscription_id}-{event_type}",
        "event_type": event_type,
        "resource_type": "subscription",
        "resource": resource,
    }
    if create_time is not None:
        payload["create_time"] = create_time.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    return payload


def at(minutes: int) -> datetime:
    """A fixed UTC instant offset by ``minutes``; keeps event ordering explicit."""
    return datetime(2026, 10, 15, 12, 0, tzinfo=timezone.utc) + timedelta(minutes=minutes)


@pytest.fixture
def make_webhook() -> Callable[..., dict]:
    return webhook_payload


@pytest.fixture
def event_time() -> Callable[[int], datetime]:
    return at
