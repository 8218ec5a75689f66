from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from attention.config.settings import Settings, get_settings
from attention.infra.database import Base, get_session
from attention.main import create_app

# Import models to ensure they're registered
from attention.v1.core import sessions as session_models  # noqa: F401
from attention.v1.core.security import ShopPrincipal, get_principal
from attention.v1.infra.jobs import models as job_models  # noqa: F401
from attention.v1.infra.jobs.executor import (
    ActionType,
    ExecutorInput,
    ExecutorResult,
    InsightExplanation,
)
from attention.v1.insights.models import ProductInsight
from attention.v1.webhooks import models as webhook_models  # noqa: F401

TEST_SHOP = "test-shop.myshopify.com"
WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture(autouse=True)
def reset_structlog():
    """Start every test with uncached loggers, so none outlives a CliRunner stream."""
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()


@pytest.fixture
def test_settings() -> Settings:
    """Settings tuned for fast tests; the database URL is unused by the store."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        debug=False,
        environment="development",
        shopify_api_secret=WEBHOOK_SECRET,
        job_poll_interval_ms=10,
        dev_shop=TEST_SHOP,
    )


@pytest.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File backed SQLite engine, so concurrent sessions use real connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'attention.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def app(session_factory, test_settings):
    """Create a test FastAPI application bound to the test database."""
    app = create_app()

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_principal] = lambda: ShopPrincipal(shop=TEST_SHOP)

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def now() -> datetime:
    return datetime.now(UTC)


class FakeClock:
    """Controllable clock for the worker."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def clock(now) -> FakeClock:
    return FakeClock(now)


class FakeExecutor:
    """
    Executor double that plays back scripted outcomes.

    Each call consumes the next outcome: an exception instance is raised,
    anything else produces a successful explanation. With no script left
    every call succeeds.
    """

    model_name = "fake-model"

    def __init__(self, outcomes: list | None = None):
        self.outcomes = list(outcomes or [])
        self.calls: list[ExecutorInput] = []

    async def generate(self, request: ExecutorInput) -> ExecutorResult:
        self.calls.append(request)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome

        output = InsightExplanation(
            summary=f"{request.title} has not been touched in a while.",
            action_type=ActionType.COPY,
            next_steps=["Refresh the description.", "Check the price."],
            caveats="Based on catalog data only.",
        )
        return ExecutorResult(output=output, model=self.model_name)


async def create_insight(
    session: AsyncSession,
    product_id: str,
    shop: str = TEST_SHOP,
    title: str | None = None,
    days_old: int = 90,
    inventory_status: str | None = "OK",
) -> ProductInsight:
    """Insert a product insight row the worker can generate for."""
    updated_at = datetime.now(UTC) - timedelta(days=days_old)
    insight = ProductInsight(
        shop=shop,
        product_id=product_id,
        product_title=title or f"Product {product_id}",
        attention_score=days_old,
        status="NEGLECTED" if days_old > 60 else "HEALTHY",
        recommendation="Consider refreshing the listing.",
        last_product_updated_at=updated_at,
        product_status="ACTIVE",
        has_featured_image=True,
        inventory_status=inventory_status,
        inventory_available=25,
    )
    session.add(insight)
    await session.commit()
    return insight


@pytest.fixture
def make_insight():
    return create_insight


@pytest.fixture
def make_executor():
    return FakeExecutor
