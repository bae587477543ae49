"""pytest configuration and fixtures."""

import os

# Set required environment variables for testing before any imports
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import sys  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import Any, AsyncGenerator, Awaitable, Callable  # noqa: E402

import base58  # noqa: E402
import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from nacl.signing import SigningKey  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.append(str(REPO_ROOT))

from app.db import Base, get_db  # noqa: E402
from app.db.accounts import Account  # noqa: E402
from app.services.cache import InMemoryCache, get_cache  # noqa: E402


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory SQLite database per test."""
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
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def make_account(session_factory) -> Callable[..., Awaitable[Account]]:
    """Factory that commits an account and returns it."""
    counter = {"n": 0}

    async def _make(**fields: Any) -> Account:
        counter["n"] += 1
        fields.setdefault("wallet_address", f"wallet{counter['n']:04d}")
        async with session_factory() as session:
            account = Account(**fields)
            session.add(account)
            await session.commit()
            return account

    return _make


@pytest.fixture
def wallet() -> dict[str, Any]:
    """An Ed25519 keypair with a helper that signs like a browser wallet."""
    signing_key = SigningKey.generate()
    address = base58.b58encode(bytes(signing_key.verify_key)).decode("ascii")

    def sign(message: str) -> str:
        signature = signing_key.sign(message.encode("utf-8")).signature
        return base58.b58encode(signature).decode("ascii")

    return {"address": address, "sign": sign}


@pytest.fixture
def mention_payload() -> Callable[..., dict[str, Any]]:
    """Build a mention in the source's current field layout."""

    def _build(tweet_id: str = "1001", author_id: str | None = "tw-1", **overrides: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": tweet_id,
            "text": "Burninating the countryside, the peasants, with @trogdorcult",
            "createdAt": "Tue Dec 10 07:00:30 +0000 2024",
            "likeCount": 9,
            "retweetCount": 0,
            "replyCount": 0,
            "quoteCount": 0,
            "viewCount": 120,
        }
        if author_id is not None:
            payload["author"] = {"id": author_id, "userName": "strongbad"}
        payload.update(overrides)
        return payload

    return _build


@pytest_asyncio.fixture
async def client(session_factory, cache) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client bound to the app with the test database and cache."""
    from api.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()
