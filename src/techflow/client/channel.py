"""Realtime channel — WebSocket client that feeds a ContactReconciler.

Learn: One long-lived loop:
1. connect to /ws/contacts?token=JWT
2. announce join:dashboard and join:user
3. report on_connected() (the reconciler stops polling and re-fetches)
4. feed every contact:* frame into reconciler.apply()
5. on any disconnect, report on_disconnected() (polling resumes), wait
   a fixed delay, and go back to 1 — forever, until stop()
"""

import asyncio
import json
from typing import Any, Callable, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

import structlog
import websockets
from websockets.exceptions import WebSocketException

from techflow.client.reconciler import ContactReconciler
from techflow.events.types import CONTACT_EVENTS, ERROR, JOIN_DASHBOARD, JOIN_USER

logger = structlog.get_logger()

WS_PATH = "/ws/contacts"


def ws_url_for(api_url: str) -> str:
    """http://host:8000 → ws://host:8000/ws/contacts (https → wss)."""
    parts = urlsplit(api_url.rstrip("/"))
    scheme = "wss" if parts.scheme == "https" else "ws"
    return urlunsplit((scheme, parts.netloc, parts.path + WS_PATH, "", ""))


class RealtimeChannel:
    def __init__(
        self,
        ws_url: str,
        token: Optional[str],
        reconciler: ContactReconciler,
        reconnect_delay: float = 5.0,
        connect: Optional[Callable[[str], Any]] = None,
    ):
        self.ws_url = ws_url
        self.token = token
        self.reconciler = reconciler
        self.reconnect_delay = reconnect_delay
        self._connect = connect or websockets.connect
        self._running = False

    @property
    def url(self) -> str:
        if not self.token:
            return self.ws_url
        return f"{self.ws_url}?{urlencode({'token': self.token})}"

    async def run(self) -> None:
        self._running = True
        while self._running:
            connected = False
            try:
                async with self._connect(self.url) as ws:
                    await ws.send(json.dumps({"type": JOIN_DASHBOARD}))
                    join_user: dict[str, Any] = {"type": JOIN_USER}
                    if self.reconciler.account_id:
                        join_user["user_id"] = self.reconciler.account_id
                    await ws.send(json.dumps(join_user))

                    connected = True
                    await self.reconciler.on_connected()
                    async for raw in ws:
                        self.handle_frame(raw)
            except asyncio.CancelledError:
                raise
            except (OSError, WebSocketException) as e:
                logger.warning("channel.connection_failed", error=str(e))

            if connected:
                self.reconciler.on_disconnected()
            if not self._running:
                break
            logger.info("channel.reconnecting", delay=self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    def stop(self) -> None:
        self._running = False

    def handle_frame(self, raw: Any) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("channel.bad_frame")
            return
        if not isinstance(frame, dict):
            return

        event = frame.get("event")
        if event in CONTACT_EVENTS:
            self.reconciler.apply(event, frame.get("data") or {})
        elif event == ERROR:
            logger.warning("channel.server_error", data=frame.get("data"))
