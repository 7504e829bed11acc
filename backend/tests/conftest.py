"""Test configuration and fixtures.

Environment Variables:
    TESTING=true          -> file-based SQLite (aiosqlite) database instead of Postgres
    TEST_SQLITE_URL=...   -> override the SQLite file location
    BCRYPT_ROUNDS=4       -> cheap password hashing for fixture users

Behavior:
    - Tables are dropped and recreated once per session with create_database_tables().
    - After each test every table (users included) is emptied so tests never
      observe rows from a previous test.
    - Two synthetic users (user_a, user_b) are inserted directly; clients carry a
      real JWT minted for them so ownership rules are exercised end to end.
"""

from contextlib import suppress
import os
from typing import AsyncGenerator

# Flag test mode before the application modules read the environment
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("EXCHANGE_RATE_MODE", "fixed")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402

from invoice_desk.config.database import (  # noqa: E402
    AsyncSessionLocal,
    create_database_tables,
    drop_database_tables,
    engine,
)
from invoice_desk.main import app  # noqa: E402
from invoice_desk.models.database import Base, User  # noqa: E402
from invoice_desk.routers.auth import create_access_token, get_password_hash  # noqa: E402
from invoice_desk.services.invoice_workflow import AuthContext  # noqa: E402

TEST_PASSWORD = "correct-horse-battery"


@pytest.fixture(scope="session", autouse=True)
def _bootstrap_db():  # noqa: D401
    """Fresh schema for the whole session."""
    drop_database_tables()
    create_database_tables()
    yield
    with suppress(Exception):
        drop_database_tables()


@pytest_asyncio.fixture
async def db_session():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.rollback()


@pytest.fixture(autouse=True)
def _clean_tables():
    """Empty every table after each test (children first)."""
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


async def _create_user(session, email: str, name: str) -> User:
    user = User(
        email=email,
        name=name,
        password_hash=get_password_hash(TEST_PASSWORD),
        is_active=True,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest_asyncio.fixture
async def user_a(db_session) -> User:
    return await _create_user(db_session, "alice@example.com", "Alice Sender")


@pytest_asyncio.fixture
async def user_b(db_session) -> User:
    return await _create_user(db_session, "bob@example.com", "Bob Other")


@pytest.fixture
def ctx_a(user_a) -> AuthContext:
    return AuthContext(user_id=user_a.id, email=user_a.email, name=user_a.name)


@pytest.fixture
def ctx_b(user_b) -> AuthContext:
    return AuthContext(user_id=user_b.id, email=user_b.email, name=user_b.name)


def _bearer(user: User) -> dict:
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}


@pytest_asyncio.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:  # noqa: D401
    """Unauthenticated client bound to the ASGI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def auth_client(user_a) -> AsyncGenerator[AsyncClient, None]:
    """Async client carrying a valid JWT for user_a."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        client.headers.update(_bearer(user_a))
        yield client


@pytest_asyncio.fixture
async def other_client(user_b) -> AsyncGenerator[AsyncClient, None]:
    """Async client carrying a valid JWT for user_b (ownership checks)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        client.headers.update(_bearer(user_b))
        yield client


@pytest.fixture
def invoice_payload() -> dict:
    """Representative create payload (one 100 USD item, 18% tax)."""
    return {
        "invoice_number": "INV-20240105-001",
        "invoice_date": "2024-01-05",
        "sender_name": "Acme Consulting LLC",
        "sender_address": "100 Market St, San Francisco, CA",
        "recipient_name": "Bharat Traders Pvt Ltd",
        "recipient_address": "12 MG Road, Bengaluru, KA",
        "recipient_gstin": "29ABCDE1234F1Z5",
        "recipient_email": "accounts@bharat.example",
        "tax_rate": 18,
        "currency": "USD",
        "notes": "Net 30",
        "items": [
            {"name": "Consulting", "description": "January retainer", "amount_usd": 100},
        ],
    }


def _register_markers(config):  # noqa: D401
    """Internal helper to register custom markers (invoked from hook)."""
    markers = [
        ("contract", "mark test as a contract test"),
        ("integration", "mark test as an integration test"),
        ("unit", "mark test as a unit test"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


def pytest_configure(config):  # noqa: D401
    """Pytest hook: register custom markers."""
    _register_markers(config)
