"""WebSocket endpoint — realtime contact events for open dashboards.

Learn: Each dashboard tab connects to /ws/contacts?token=JWT. The handler:
1. Authenticates via JWT (query param or the jwt cookie; required outside
   development) and rejects missing or deactivated accounts
2. Registers the session in the shared "dashboard" broadcast group
3. Handles client control messages:
     {"type": "join:dashboard"}  → (re)join the broadcast group
     {"type": "join:user"}       → join the token's own account room
     {"type": "ping"}            → {"event": "pong"}
4. Removes the session from every room on disconnect

Outgoing frames are {"event": name, "data": payload}. Each session owns an
outbox drained by a writer task, so a delivery from a request handler is a
non-blocking enqueue and per-session order matches emission order.
"""

import asyncio
import json
import uuid
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.websockets import WebSocketState

from techflow.auth.jwt import TokenError, verify_token
from techflow.config import settings
from techflow.db.engine import get_session_factory
from techflow.db.models import Account
from techflow.events.types import (
    DASHBOARD_ROOM,
    ERROR,
    JOIN_DASHBOARD,
    JOIN_USER,
    JOINED,
    PING,
    PONG,
    account_room,
)
from techflow.realtime.registry import SubscriptionRegistry

logger = structlog.get_logger()
router = APIRouter()

OUTBOX_SIZE = 256


class WebSocketSession:
    """Push-channel handle for one connected dashboard."""

    def __init__(
        self,
        websocket: WebSocket,
        account_id: Optional[str] = None,
        outbox_size: int = OUTBOX_SIZE,
    ):
        self.session_id = uuid.uuid4().hex
        self.websocket = websocket
        self.account_id = account_id
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self._writer: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain())

    def send(self, event: str, payload: dict[str, Any]) -> None:
        try:
            self._outbox.put_nowait({"event": event, "data": payload})
        except asyncio.QueueFull:
            # Slow consumer — drop; its next re-fetch reconciles.
            logger.warning(
                "realtime.outbox_full", session_id=self.session_id, event_name=event
            )

    async def close(self) -> None:
        if self._writer is None:
            return
        self._writer.cancel()
        try:
            await self._writer
        except asyncio.CancelledError:
            pass
        self._writer = None

    async def _drain(self) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await self.websocket.send_text(json.dumps(frame))
            except Exception as e:
                # One failed send is dropped, not retried.
                logger.warning(
                    "realtime.send_failed",
                    session_id=self.session_id,
                    event_name=frame["event"],
                    error=str(e),
                )


def handle_client_message(
    session: WebSocketSession, registry: SubscriptionRegistry, raw: str
) -> None:
    """Apply one control message from the client. Unknown input is ignored."""
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError:
        return
    if not isinstance(msg, dict):
        return

    msg_type = msg.get("type")
    if msg_type == PING:
        session.send(PONG, {})
    elif msg_type == JOIN_DASHBOARD:
        registry.register_session(session)
        session.send(JOINED, {"room": DASHBOARD_ROOM})
    elif msg_type == JOIN_USER:
        if not session.account_id:
            session.send(ERROR, {"message": "Authentication required to join an account room"})
            return
        requested = msg.get("user_id")
        if requested and str(requested) != session.account_id:
            session.send(ERROR, {"message": "Cannot join another account's room"})
            return
        registry.join_account_room(session, session.account_id)
        session.send(JOINED, {"room": account_room(session.account_id)})
        logger.debug(
            "realtime.joined_account_room",
            session_id=session.session_id,
            account_id=session.account_id,
        )


async def _authenticate(
    websocket: WebSocket, sessions: async_sessionmaker[AsyncSession]
) -> tuple[bool, Optional[str]]:
    """Returns (allowed, account_id).

    The token must be an access token for an account that still exists and
    is active, the same rule the HTTP dependencies apply.
    """
    token = websocket.query_params.get("token") or websocket.cookies.get(
        settings.jwt_cookie_name
    )
    if not token:
        return settings.environment == "development", None
    try:
        payload = verify_token(token, expected_type="access")
        account_id = uuid.UUID(payload["sub"])
    except (TokenError, KeyError, ValueError):
        return False, None

    async with sessions() as db:
        account = await db.get(Account, account_id)
    if account is None or not account.is_active:
        logger.info("realtime.auth_rejected", account_id=str(account_id))
        return False, None
    return True, str(account.id)


@router.websocket("/ws/contacts")
async def contacts_websocket(
    websocket: WebSocket,
    sessions: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """WebSocket endpoint for realtime contact events."""
    allowed, account_id = await _authenticate(websocket, sessions)
    if not allowed:
        await websocket.close(code=4001, reason="Invalid or missing token")
        return

    await websocket.accept()

    registry: SubscriptionRegistry = websocket.app.state.registry
    session = WebSocketSession(websocket, account_id=account_id)
    registry.register_session(session)
    session.start()
    logger.info(
        "realtime.session_connected",
        session_id=session.session_id,
        account_id=account_id,
    )

    try:
        while True:
            raw = await websocket.receive_text()
            handle_client_message(session, registry, raw)
    except WebSocketDisconnect:
        pass
    finally:
        registry.remove_session(session)
        await session.close()
        logger.info("realtime.session_disconnected", session_id=session.session_id)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
