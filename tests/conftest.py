"""Test fixtures — an in-memory database per test, plus HTTP clients.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets a fresh in-memory SQLite database (aiosqlite) with the
   schema created from the ORM metadata. StaticPool keeps the single
   connection alive for the whole test, so every session sees the same data.
2. get_db is overridden to yield one shared session, so the test body and
   the route handlers read each other's commits.
3. Auth is either mocked (`client`, `anonymous_client`) or real JWT
   (`unauthenticated_client` + the *_headers fixtures).

Settings are read at import time, so the environment is prepared before
anything from techflow is imported.
"""

import os

os.environ.setdefault("TECHFLOW_ENVIRONMENT", "test")
os.environ.setdefault("TECHFLOW_BCRYPT_ROUNDS", "4")
os.environ.setdefault("TECHFLOW_REALTIME_MODE", "sync")

import uuid  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from techflow.auth.dependencies import CurrentAccount, get_current_account_optional  # noqa: E402
from techflow.auth.jwt import create_access_token  # noqa: E402
from techflow.auth.password import hash_password  # noqa: E402
from techflow.db.engine import get_db  # noqa: E402
from techflow.db.models import Account, Base  # noqa: E402
from techflow.main import app  # noqa: E402

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

OWNER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
OTHER_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")
ADMIN_ID = uuid.UUID("00000000-0000-0000-0000-000000000003")
PASSWORD = "password_123"


class RecordingSession:
    """Stand-in push session that records every frame it is sent."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.frames: list[tuple[str, dict]] = []

    def send(self, event: str, payload: dict) -> None:
        self.frames.append((event, payload))

    def events(self) -> list[str]:
        return [event for event, _ in self.frames]


def bearer(account_id: uuid.UUID, role: str = "user") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(account_id), role=role)}"}


@pytest_asyncio.fixture()
async def db_session():
    """Per-test session over a fresh in-memory database."""
    engine = create_async_engine(
        TEST_DB_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session = AsyncSession(bind=engine, expire_on_commit=False)
    try:
        yield session
    finally:
        await session.close()
        await engine.dispose()


@pytest_asyncio.fixture()
async def accounts(db_session):
    """Seed an owner, a second user, and an admin (all with PASSWORD)."""
    pw = hash_password(PASSWORD)
    seeded = {
        "owner": Account(id=OWNER_ID, email="owner@example.com", name="Owner", password_hash=pw),
        "other": Account(id=OTHER_ID, email="other@example.com", name="Other", password_hash=pw),
        "admin": Account(
            id=ADMIN_ID, email="admin@example.com", name="Admin", password_hash=pw, role="admin"
        ),
    }
    db_session.add_all(seeded.values())
    await db_session.commit()
    return seeded


def _override_db(db_session):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db


@pytest_asyncio.fixture()
async def client(db_session, accounts):
    """HTTP client with get_db and auth overridden for testing.

    Learn: We override get_current_account_optional to return the seeded
    owner, so all protected routes work without real JWT tokens
    (get_current_account and require_admin both build on it).
    """
    _override_db(db_session)
    app.dependency_overrides[get_current_account_optional] = lambda: CurrentAccount(
        account_id=OWNER_ID, role="user", email="owner@example.com", name="Owner"
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def anonymous_client(db_session, accounts):
    """HTTP client for a visitor with no token at all."""
    _override_db(db_session)
    app.dependency_overrides[get_current_account_optional] = lambda: None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def unauthenticated_client(db_session, accounts):
    """HTTP client WITHOUT auth override — for testing real JWT flows.

    Learn: Only get_db is overridden (for DB isolation); tokens are checked
    by the real pipeline. Pair it with owner_headers / other_headers /
    admin_headers to act as different accounts in one test.
    """
    _override_db(db_session)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture()
def owner_headers():
    return bearer(OWNER_ID)


@pytest.fixture()
def other_headers():
    return bearer(OTHER_ID)


@pytest.fixture()
def admin_headers():
    return bearer(ADMIN_ID, role="admin")


@pytest.fixture()
def listeners():
    """Dashboard sessions attached to the app's registry.

    Returns {"owner", "other", "guest"} — owner/other joined their account
    rooms, guest only the broadcast group. Removed after the test.
    """
    registry = app.state.registry
    sessions = {
        "owner": RecordingSession("owner-tab"),
        "other": RecordingSession("other-tab"),
        "guest": RecordingSession("guest-tab"),
    }
    registry.join_account_room(sessions["owner"], OWNER_ID)
    registry.join_account_room(sessions["other"], OTHER_ID)
    registry.register_session(sessions["guest"])
    yield sessions
    for session in sessions.values():
        registry.remove_session(session)
