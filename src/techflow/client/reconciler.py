"""Client-side reconciler — keeps a dashboard view consistent with the server.

Learn: The dashboard's local state (a contact list plus aggregate stats)
is fed from two sources:
1. authoritative re-fetches (list + stats) over HTTP
2. realtime envelopes pushed over the WebSocket channel

Push delivery is best-effort, so the reconciler never trusts it alone:

    Disconnected ──on_connected()──▶ Connected
         ▲                              │
         └──────on_disconnected()───────┘

- Disconnected (initial): a RepeatingTimer polls every 15s.
- on_connected(): stop the timer, then re-fetch once to heal whatever was
  missed while disconnected. The "all" scope keeps polling: other
  accounts' changes are only pushed to their owners.
- on_disconnected(): resume polling immediately.

Envelope handling (apply):
- created → prepend unless already present (pushes and re-fetches can
  race), then bump total/new/last_30_days locally
- updated → replace the whole record if present, re-fetch stats
- deleted → drop it if present, re-fetch stats

A stats snapshot requested before a local bump (or a full re-fetch) is
dropped on arrival and requested again.

Once delivery quiesces and a re-fetch completes, the local state equals
the server's, whatever order pushes and fetches arrived in.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from techflow.client.api import ContactApiClient
from techflow.events.types import CONTACT_CREATED, CONTACT_DELETED, CONTACT_UPDATED

logger = structlog.get_logger()

DISCONNECTED = "disconnected"
CONNECTED = "connected"

DEFAULT_POLL_INTERVAL = 15.0
DEFAULT_LIST_LIMIT = 50


class RepeatingTimer:
    """Calls an async callback every `interval` seconds until stopped.

    start() and stop() are idempotent: at most one loop ever runs.
    """

    def __init__(self, interval: float, callback: Callable[[], Awaitable[Any]]):
        self.interval = interval
        self.callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.callback()
            except Exception:
                logger.exception("reconciler.tick_failed")


class ContactReconciler:
    """Dashboard state machine. Not thread-safe; drive it from one event loop."""

    def __init__(
        self,
        api: ContactApiClient,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        account_id: Optional[str] = None,
        scope: str = "own",
        list_limit: int = DEFAULT_LIST_LIMIT,
        on_change: Optional[Callable[["ContactReconciler"], None]] = None,
    ):
        if scope not in ("own", "all"):
            raise ValueError(f"Unknown scope: {scope}")
        self.api = api
        self.account_id = str(account_id) if account_id else None
        self.scope = scope
        self.list_limit = list_limit
        self.on_change = on_change

        self.contacts: list[dict[str, Any]] = []
        self.stats: Optional[dict[str, int]] = None
        self.state = DISCONNECTED
        self.error: Optional[str] = None

        self.timer = RepeatingTimer(poll_interval, self.refetch)
        self._background: set[asyncio.Task] = set()
        # Bumped on every local stats edit; older in-flight snapshots are discarded.
        self._stats_generation = 0

    @property
    def status_label(self) -> str:
        return "Live" if self.state == CONNECTED else "Offline"

    # ─── Lifecycle ──────────────────────────────────────

    async def start(self) -> None:
        """Initial load, then poll until a channel reports it's connected."""
        await self.refetch()
        if self.state == DISCONNECTED:
            self.timer.start()

    async def on_connected(self) -> None:
        # Other accounts' changes only reach their owners' rooms, so the
        # all-contacts view keeps polling while connected.
        if self.scope == "own":
            self.timer.stop()
        self.state = CONNECTED
        logger.info("reconciler.connected")
        await self.refetch()

    def on_disconnected(self) -> None:
        self.state = DISCONNECTED
        self.timer.start()
        logger.info("reconciler.disconnected")
        self._changed()

    async def close(self) -> None:
        self.timer.stop()
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def drain(self) -> None:
        """Wait for in-flight background stats refreshes."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ─── Authoritative fetches ──────────────────────────

    async def refetch(self) -> bool:
        """Replace local state with the server's. Returns False on failure."""
        try:
            page, stats = await asyncio.gather(
                self.api.list_contacts(limit=self.list_limit),
                self.api.get_stats(),
            )
        except httpx.HTTPError as e:
            self.error = str(e) or type(e).__name__
            logger.warning("reconciler.refetch_failed", error=self.error)
            self._changed()
            return False

        self.contacts = list(page.get("data", []))
        self.stats = stats
        self._stats_generation += 1
        self.error = None
        self._changed()
        return True

    async def refresh(self) -> bool:
        """Manual refresh — same as a poll cycle."""
        return await self.refetch()

    # ─── Realtime envelopes ─────────────────────────────

    def apply(self, event: str, payload: dict[str, Any]) -> bool:
        """Fold one pushed envelope into local state. Returns True if it changed."""
        if event == CONTACT_CREATED:
            changed = self._apply_created(payload.get("contact") or {})
        elif event == CONTACT_UPDATED:
            changed = self._apply_updated(payload.get("contact") or {})
        elif event == CONTACT_DELETED:
            changed = self._apply_deleted(payload.get("contact_id"))
        else:
            return False
        if changed:
            self._changed()
        return changed

    def _apply_created(self, contact: dict[str, Any]) -> bool:
        contact_id = contact.get("id")
        if not contact_id:
            return False
        if self.scope == "own":
            owner = contact.get("user_id")
            if owner is None or str(owner) != self.account_id:
                return False
        if self._index_of(contact_id) is not None:
            return False

        self.contacts.insert(0, contact)
        if self.stats is not None:
            for key in ("total", "new", "last_30_days"):
                self.stats[key] = self.stats.get(key, 0) + 1
            self._stats_generation += 1
        return True

    def _apply_updated(self, contact: dict[str, Any]) -> bool:
        index = self._index_of(contact.get("id"))
        self._refresh_stats_later()
        if index is None:
            return False
        self.contacts[index] = contact
        return True

    def _apply_deleted(self, contact_id: Optional[str]) -> bool:
        index = self._index_of(contact_id)
        self._refresh_stats_later()
        if index is None:
            return False
        del self.contacts[index]
        return True

    # ─── Dashboard actions ──────────────────────────────

    async def update_status(self, contact_id: str, status: str) -> dict[str, Any]:
        contact = await self.api.update_status(contact_id, status)
        index = self._index_of(contact_id)
        if index is not None:
            self.contacts[index] = contact
            self._changed()
        return contact

    async def delete_contact(self, contact_id: str) -> None:
        await self.api.delete_contact(contact_id)
        index = self._index_of(contact_id)
        if index is not None:
            del self.contacts[index]
            self._changed()

    async def export_csv(self) -> str:
        return await self.api.export_csv()

    # ─── Internals ──────────────────────────────────────

    def _index_of(self, contact_id: Any) -> Optional[int]:
        if contact_id is None:
            return None
        wanted = str(contact_id)
        for i, contact in enumerate(self.contacts):
            if str(contact.get("id")) == wanted:
                return i
        return None

    def _refresh_stats_later(self) -> None:
        task = asyncio.create_task(self._refresh_stats())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh_stats(self) -> None:
        generation = self._stats_generation
        try:
            stats = await self.api.get_stats()
        except httpx.HTTPError as e:
            logger.warning("reconciler.stats_refresh_failed", error=str(e))
            return
        if generation != self._stats_generation:
            # Snapshot may predate a local bump; ask again.
            self._refresh_stats_later()
            return
        self.stats = stats
        self._changed()

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self)
