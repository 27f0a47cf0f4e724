from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx
import pytest
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from orderqueue.config.settings import AuthMode, Settings, get_settings
from orderqueue.infra.database import Base, get_session
from orderqueue.main import create_app
from orderqueue.v1.core.registries import JobRegistry, get_job_registry
from orderqueue.v1.core.security import Principal
from orderqueue.v1.infra.jobs.models import Job
from orderqueue.v1.infra.jobs.registry_init import register_job_handlers
from orderqueue.v1.infra.jobs.service import JobService
from orderqueue.v1.infra.jobs.worker import JobWorker

# Import models to ensure they're registered
from orderqueue.v1.orders import models as order_models  # noqa: F401

PROCESSING_STATUS = {"status": "processing", "progress": {}}


class FakeFulfillmentAPI:
    """Scriptable fulfillment API served through httpx.MockTransport.

    ``statuses`` is consumed one entry per status poll; an entry may be a
    JSON body, an ``httpx.Response`` or an exception to raise. Once it is
    empty, ``default_status`` is returned.
    """

    def __init__(self):
        self.create_response: dict[str, Any] = {
            "order_id": "ord_123",
            "status": "pending",
            "message": "Order created",
        }
        self.statuses: list[Any] = []
        self.default_status: dict[str, Any] = PROCESSING_STATUS
        self.requests: list[httpx.Request] = []
        self.on_status_poll: Callable[[], Any] | None = None

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.method == "POST" and request.url.path.endswith("/orders/create"):
            return httpx.Response(200, json=self.create_response)

        if request.method == "GET" and request.url.path.endswith("/status"):
            if self.on_status_poll is not None:
                await self.on_status_poll()
            item = self.statuses.pop(0) if self.statuses else self.default_status
            if isinstance(item, Exception):
                raise item
            if isinstance(item, httpx.Response):
                return item
            return httpx.Response(200, json=item)

        return httpx.Response(404, json={"error": "not found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def status_polls(self) -> int:
        return sum(1 for r in self.requests if r.url.path.endswith("/status"))


@pytest.fixture(autouse=True)
def uncached_loggers(monkeypatch):
    """Build loggers per call so CliRunner's temporary stdout is never kept."""
    monkeypatch.setattr("orderqueue.main.setup_logging", lambda: None)
    monkeypatch.setattr("cli.commands.worker.setup_logging", lambda: None)
    structlog.configure(cache_logger_on_first_use=False)


@pytest.fixture
def settings() -> Settings:
    """Settings with timings shrunk for tests."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        auth_mode=AuthMode.DEV,
        job_poll_interval_s=0,
        job_retry_delay_s=0,
        job_timeout_s=5.0,
        order_poll_interval_s=0.01,
        order_poll_budget_s=2.0,
        order_poll_extension_s=2.0,
        fulfillment_api_base_url="http://fulfillment.test/api",
        fulfillment_api_key="test-key",
        fulfillment_api_timeout_s=1.0,
    )


@pytest.fixture
async def test_engine():
    """In-memory SQLite engine shared by every session of a test."""
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
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_api() -> FakeFulfillmentAPI:
    return FakeFulfillmentAPI()


@pytest.fixture
def make_registry(fake_api) -> Callable[[Settings], JobRegistry]:
    """Build a registry whose order handlers talk to the fake API."""

    def factory(app_settings: Settings) -> JobRegistry:
        return register_job_handlers(JobRegistry(), app_settings, fake_api.transport)

    return factory


@pytest.fixture
def registry(make_registry, settings) -> JobRegistry:
    return make_registry(settings)


@pytest.fixture
def job_service(settings, registry) -> JobService:
    return JobService(settings, registry)


@pytest.fixture
def worker(settings, session_factory, registry) -> JobWorker:
    return JobWorker(settings, session_factory, registry)


@pytest.fixture
def principal() -> Principal:
    return Principal(user_id="user_1", team_id="team_1")


@pytest.fixture
def other_principal() -> Principal:
    return Principal(user_id="user_2", team_id="team_2")


@pytest.fixture
def auth_headers():
    """Default auth headers for testing."""
    return {"X-User-ID": "user_1", "X-Team-ID": "team_1"}


@pytest.fixture
def app(settings, session_factory, registry):
    """Create a test FastAPI application with test database."""
    app = create_app()

    async def override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_job_registry] = lambda: registry

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def set_job_fields(session_factory):
    """Force column values on a job, bypassing the state machine."""

    async def apply(job_id: str, **values: Any) -> None:
        async with session_factory() as session:
            await session.execute(
                update(Job)
                .where(Job.job_id == job_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    return apply
