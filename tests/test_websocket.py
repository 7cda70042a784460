"""WebSocket endpoint tests (starlette TestClient).

Learn: The TestClient runs the app in a background event loop. Deliveries
have to happen on that loop, so the tests push through the registry with
`ws.portal.call(...)` rather than calling it from the test thread.

The handshake looks the account up, so the app gets a session factory
over a seeded in-memory database. The engine is built inside the call,
on whichever loop the TestClient is running.
"""

import asyncio
import json
from contextlib import asynccontextmanager

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect
from structlog.testing import capture_logs

from techflow.auth.jwt import create_access_token, create_refresh_token
from techflow.config import settings
from techflow.db.engine import get_session_factory
from techflow.db.models import Account, Base
from techflow.main import create_app
from techflow.realtime.websocket import WebSocketSession

from conftest import OTHER_ID, OWNER_ID, TEST_DB_URL

OWNER = str(OWNER_ID)


class SeededSessions:
    """Session factory over a fresh database holding OWNER and OTHER."""

    def __init__(self, inactive=()):
        self.inactive = set(inactive)

    def __call__(self):
        return self._session()

    @asynccontextmanager
    async def _session(self):
        engine = create_async_engine(
            TEST_DB_URL,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            async with AsyncSession(bind=engine, expire_on_commit=False) as db:
                db.add_all([
                    Account(
                        id=account_id,
                        email=f"{name}@example.com",
                        name=name.title(),
                        is_active=account_id not in self.inactive,
                    )
                    for name, account_id in (("owner", OWNER_ID), ("other", OTHER_ID))
                ])
                await db.commit()
                yield db
        finally:
            await engine.dispose()


def _app(sessions: SeededSessions):
    app = create_app()
    app.dependency_overrides[get_session_factory] = lambda: sessions
    return app


@pytest.fixture()
def ws_app():
    return _app(SeededSessions())


def _url(token):
    return f"/ws/contacts?token={token}"


# ─── Handshake ──────────────────────────────────────────

def test_missing_token_rejected(ws_app):
    client = TestClient(ws_app)
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/contacts"):
            pass
    assert exc.value.code == 4001


def test_refresh_token_rejected(ws_app):
    client = TestClient(ws_app)
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(_url(create_refresh_token(OWNER))):
            pass
    assert exc.value.code == 4001


def test_deactivated_account_rejected():
    app = _app(SeededSessions(inactive={OWNER_ID}))
    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(_url(create_access_token(OWNER))):
            pass
    assert exc.value.code == 4001
    assert app.state.registry.session_count == 0


def test_unknown_account_rejected(ws_app):
    client = TestClient(ws_app)
    token = create_access_token("00000000-0000-0000-0000-0000000000ff")
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(_url(token)):
            pass
    assert exc.value.code == 4001


def test_anonymous_session_allowed_in_development(ws_app, monkeypatch):
    monkeypatch.setattr(settings, "environment", "development")
    client = TestClient(ws_app)
    with client.websocket_connect("/ws/contacts") as ws:
        ws.send_json({"type": "join:user"})
        assert ws.receive_json()["event"] == "error"
        assert ws_app.state.registry.session_count == 1


# ─── Control messages and delivery ──────────────────────

def test_ping_pong(ws_app):
    client = TestClient(ws_app)
    with client.websocket_connect(_url(create_access_token(OWNER))) as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"event": "pong", "data": {}}


def test_join_and_receive_account_events(ws_app):
    client = TestClient(ws_app)
    registry = ws_app.state.registry

    with client.websocket_connect(_url(create_access_token(OWNER))) as ws:
        ws.send_json({"type": "join:dashboard"})
        assert ws.receive_json() == {"event": "joined", "data": {"room": "dashboard"}}

        ws.send_json({"type": "join:user", "user_id": OWNER})
        assert ws.receive_json() == {"event": "joined", "data": {"room": f"user:{OWNER}"}}
        assert registry.room_size(f"user:{OWNER}") == 1

        payload = {"type": "deleted", "contact_id": "abc123", "timestamp": "t"}
        reached = ws.portal.call(registry.deliver_to_account, OWNER, "contact:deleted", payload)
        assert reached == 1
        assert ws.receive_json() == {"event": "contact:deleted", "data": payload}

        ws.portal.call(registry.deliver_to_broadcast, "contact:created", {"type": "created"})
        assert ws.receive_json()["event"] == "contact:created"

    assert registry.session_count == 0
    assert registry.room_size(f"user:{OWNER}") == 0


def test_cannot_join_another_accounts_room(ws_app):
    client = TestClient(ws_app)
    with client.websocket_connect(_url(create_access_token(OWNER))) as ws:
        ws.send_json({"type": "join:user", "user_id": str(OTHER_ID)})
        frame = ws.receive_json()
        assert frame["event"] == "error"
        assert ws_app.state.registry.room_size(f"user:{OTHER_ID}") == 0


def test_two_tabs_of_one_account_both_receive(ws_app):
    registry = ws_app.state.registry
    token = create_access_token(OWNER)

    # Entering the client shares one event loop between both tabs.
    with TestClient(ws_app) as client:
        with client.websocket_connect(_url(token)) as tab1, client.websocket_connect(_url(token)) as tab2:
            for tab in (tab1, tab2):
                tab.send_json({"type": "join:user"})
                assert tab.receive_json()["event"] == "joined"
            assert registry.room_size(f"user:{OWNER}") == 2

            payload = {"type": "deleted", "contact_id": "abc123", "timestamp": "t"}
            tab1.portal.call(registry.deliver_to_account, OWNER, "contact:deleted", payload)
            assert tab1.receive_json()["data"]["contact_id"] == "abc123"
            assert tab2.receive_json()["data"]["contact_id"] == "abc123"


def test_garbage_messages_ignored(ws_app):
    client = TestClient(ws_app)
    with client.websocket_connect(_url(create_access_token(OWNER))) as ws:
        ws.send_text("not json")
        ws.send_json(["a", "list"])
        ws.send_json({"type": "unknown"})
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["event"] == "pong"


# ─── Session outbox ─────────────────────────────────────

class FlakySocket:
    """send_text fails `failures` times, then records frames."""

    def __init__(self, failures=0):
        self.failures = failures
        self.sent = []

    async def send_text(self, text):
        if self.failures:
            self.failures -= 1
            raise ConnectionResetError("socket gone")
        self.sent.append(json.loads(text))


async def _drain(sock, expected):
    for _ in range(100):
        if len(sock.sent) >= expected:
            return
        await asyncio.sleep(0)


async def test_writer_survives_a_failed_send():
    sock = FlakySocket(failures=1)
    session = WebSocketSession(sock)
    session.start()

    with capture_logs() as logs:
        session.send("contact:created", {"n": 1})
        session.send("contact:updated", {"n": 2})
        await _drain(sock, 1)
    await session.close()

    assert sock.sent == [{"event": "contact:updated", "data": {"n": 2}}]
    failed = [entry for entry in logs if entry["event"] == "realtime.send_failed"]
    assert [entry["event_name"] for entry in failed] == ["contact:created"]


async def test_full_outbox_drops_instead_of_raising():
    sock = FlakySocket()
    session = WebSocketSession(sock, outbox_size=1)

    with capture_logs() as logs:
        session.send("contact:created", {"n": 1})
        session.send("contact:created", {"n": 2})

    session.start()
    await _drain(sock, 1)
    await session.close()

    assert sock.sent == [{"event": "contact:created", "data": {"n": 1}}]
    dropped = [entry for entry in logs if entry["event"] == "realtime.outbox_full"]
    assert len(dropped) == 1
    assert dropped[0]["event_name"] == "contact:created"


async def test_close_without_start_is_noop():
    session = WebSocketSession(FlakySocket())
    await session.close()
    await session.close()
