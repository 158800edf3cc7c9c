"""
Shared fixtures: in-memory database, mocked HTTP and an API client
"""

import os

# Settings are read on first import of the app package
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-secret")
os.environ["RETRY_BASE_DELAY"] = "0.001"
for _name in (
    "OPENAI_API_KEY",
    "GEMINI_API_KEY",
    "GOOGLE_GEMINI_API_KEY",
    "GROK_API_KEY",
    "XAI_API_KEY",
    "DEEPSEEK_API_KEY",
):
    os.environ.pop(_name, None)

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.config import get_settings
from app.models import Base, Customer
from app.utils.cache import quota_cache
from app.utils.circuit_breaker import reset_all_breakers


@pytest.fixture(autouse=True)
def clean_process_state(tmp_path, monkeypatch):
    reset_all_breakers()
    quota_cache.invalidate()
    monkeypatch.setattr(get_settings(), "SCREENSHOTS_DIR", str(tmp_path / "screenshots"))
    yield
    reset_all_breakers()
    quota_cache.invalidate()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def customer(db):
    record = Customer(name="Panadería San Martín", city="Rosario", website="https://example.com")
    db.add(record)
    await db.commit()
    return record


@pytest.fixture
def mock_http(monkeypatch):
    """
    Route every httpx.AsyncClient created afterwards through a handler.

    Usage: ``mock_http(handler)`` where handler takes an httpx.Request and
    returns an httpx.Response. Returns the list of requests seen.
    """
    real_client = httpx.AsyncClient

    def install(handler):
        seen = []

        def recording(request):
            seen.append(request)
            return handler(request)

        transport = httpx.MockTransport(recording)

        def factory(*args, **kwargs):
            kwargs.setdefault("transport", transport)
            return real_client(*args, **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", factory)
        return seen

    return install


@pytest.fixture
async def api_client(session_maker):
    from app.main import create_app
    from app.utils import get_db

    app = create_app()

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
