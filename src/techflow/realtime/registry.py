"""Subscription registry — room membership and best-effort fan-out.

Learn: The registry is an owned object (created in create_app, closed in
the lifespan shutdown), not a module-level singleton. It maps room names
to sets of push sessions:

    "dashboard"      → every connected session (shared broadcast group)
    "user:<id>"      → the sessions of one account's open dashboards

Delivery is at-most-once. There is no queue for absent rooms and no replay:
a dashboard that misses an event heals itself with its next re-fetch.

All mutations are plain set add/discard on the event loop thread, so
concurrent connects/disconnects never interleave mid-operation and no lock
is needed. No operation reads one session's membership to change another's.
"""

from typing import Any, Protocol

import structlog

from techflow.events.types import DASHBOARD_ROOM, account_room

logger = structlog.get_logger()


class PushSession(Protocol):
    """What the registry needs from a push-channel session."""

    session_id: str

    def send(self, event: str, payload: dict[str, Any]) -> None:
        """Queue one event for this session. Must not block."""
        ...


class SubscriptionRegistry:
    """Process-local map of room name → sessions."""

    def __init__(self) -> None:
        self._rooms: dict[str, set[PushSession]] = {}
        self._memberships: dict[PushSession, set[str]] = {}
        self._closed = False

    # ─── Membership ─────────────────────────────────────

    def register_session(self, session: PushSession) -> None:
        """Add a session to the shared broadcast group."""
        self._join(session, DASHBOARD_ROOM)

    def join_account_room(self, session: PushSession, account_id: Any) -> None:
        """Add a session to its account room. Idempotent; empty id is a no-op."""
        if not account_id:
            return
        # A session always belongs to the broadcast group as well.
        self._join(session, DASHBOARD_ROOM)
        self._join(session, account_room(str(account_id)))

    def remove_session(self, session: PushSession) -> None:
        """Drop a session from every room. Safe to call repeatedly."""
        rooms = self._memberships.pop(session, None)
        if not rooms:
            return
        for name in rooms:
            members = self._rooms.get(name)
            if members is None:
                continue
            members.discard(session)
            if not members:
                del self._rooms[name]
        logger.debug("realtime.session_removed", session_id=session.session_id)

    def _join(self, session: PushSession, room: str) -> None:
        if self._closed:
            return
        self._rooms.setdefault(room, set()).add(session)
        self._memberships.setdefault(session, set()).add(room)

    # ─── Delivery ───────────────────────────────────────

    def deliver_to_account(
        self, account_id: Any, event: str, payload: dict[str, Any]
    ) -> int:
        """Send to every session of one account. Returns sessions reached."""
        if not account_id:
            return 0
        return self._deliver(account_room(str(account_id)), event, payload)

    def deliver_to_broadcast(self, event: str, payload: dict[str, Any]) -> int:
        """Send to every connected session."""
        return self._deliver(DASHBOARD_ROOM, event, payload)

    def _deliver(self, room: str, event: str, payload: dict[str, Any]) -> int:
        members = self._rooms.get(room)
        if not members:
            return 0

        delivered = 0
        # Copy: a failing send may trigger removal while we iterate.
        for session in list(members):
            try:
                session.send(event, payload)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "realtime.delivery_failed",
                    session_id=session.session_id,
                    room=room,
                    event_name=event,
                    error=str(e),
                )
        return delivered

    # ─── Introspection / lifecycle ──────────────────────

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    def rooms_of(self, session: PushSession) -> frozenset[str]:
        return frozenset(self._memberships.get(session, ()))

    @property
    def session_count(self) -> int:
        return len(self._memberships)

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    def close(self) -> list[PushSession]:
        """Forget every session and refuse new joins. Returns the old sessions."""
        sessions = list(self._memberships)
        self._rooms.clear()
        self._memberships.clear()
        self._closed = True
        logger.info("realtime.registry_closed", sessions=len(sessions))
        return sessions
