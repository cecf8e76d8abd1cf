"""
Pytest configuration and shared fixtures for the enrollment service tests.

Provides an in-memory SQLite session, a file-backed session factory for
multi-connection concurrency tests, an HTTP client over ASGITransport,
JWT header helpers and catalog fixtures.
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# ── Test Configuration ───────────────────────────────────────────────
# Must be set before config.settings is first imported.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "development"
os.environ["SIMULATION_MODE"] = "true"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["GATEWAY_KEY_ID"] = "rzp_test_key"
os.environ["GATEWAY_KEY_SECRET"] = "test-gateway-secret-for-pytest-only"
os.environ["GATEWAY_WEBHOOK_SECRET"] = "test-webhook-secret-for-pytest-only"
os.environ["JWT_SECRET"] = "test-jwt-secret-for-pytest-only-0123456789"
os.environ["CORS_ORIGINS"] = "http://localhost:3000"

from typing import AsyncGenerator, Callable
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings
from database import Base, get_db
from main import app
from middleware.auth import issue_access_token
from middleware.rate_limit import limiter
from services.signature_service import sign_payment


# ── Database Fixtures ────────────────────────────────────────────────


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """
    In-memory SQLite database shared by every session from this factory.

    Uses StaticPool so all sessions see the same in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    File-backed SQLite with one connection per session.

    Concurrency tests need real separate connections so that the database,
    not a shared connection, arbitrates between writers.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client against the app with get_db bound to the test database.

    Each request gets its own session, as in production.
    """
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    limiter.reset()
    yield
    limiter.reset()


# ── Auth Helpers ─────────────────────────────────────────────────────


@pytest.fixture
def auth_headers() -> Callable[..., dict]:
    """Build an Authorization header for a user id and role."""
    def _headers(user_id: str = "U1", role: str = "student") -> dict:
        token = issue_access_token(user_id=user_id, role=role)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# ── Payment Helpers ──────────────────────────────────────────────────


@pytest.fixture
def sign() -> Callable[[str, str], str]:
    """Produce the signature the gateway would issue for (order_id, payment_id)."""
    def _sign(order_id: str, payment_id: str) -> str:
        return sign_payment(order_id, payment_id, settings.gateway_key_secret)
    return _sign


@pytest.fixture
def fixed_gateway_order():
    """
    Make the gateway issue a chosen order id.

    Usage: fixed_gateway_order("order_ABC123")
    """
    patchers = []

    def _fix(order_id: str) -> AsyncMock:
        mock = AsyncMock(return_value=order_id)
        p = patch("services.gateway_service.create_gateway_order", mock)
        p.start()
        patchers.append(p)
        return mock

    yield _fix
    for p in reversed(patchers):
        p.stop()


# ── Catalog Fixtures ─────────────────────────────────────────────────


async def add_course(session_factory, course_id: str, price_minor: int = 499900,
                     currency: str = "INR", is_published: bool = True):
    from db_models import Course

    async with session_factory() as db:
        course = Course(
            course_id=course_id,
            title=f"Course {course_id}",
            price_minor=price_minor,
            currency=currency,
            is_published=is_published,
        )
        db.add(course)
        await db.commit()
        return course


@pytest_asyncio.fixture
async def course(session_factory):
    """Published course C1 priced at 4999.00 INR."""
    return await add_course(session_factory, "C1")


@pytest_asyncio.fixture
async def file_course(file_session_factory):
    return await add_course(file_session_factory, "C1")


@pytest.fixture
def make_course(session_factory):
    """Add extra catalog rows: await make_course("C2", price_minor=1000)."""
    async def _make(course_id: str, **kwargs):
        return await add_course(session_factory, course_id, **kwargs)
    return _make
