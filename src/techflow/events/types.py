"""Event type constants.

Learn: Centralizing event names as constants prevents typos and makes it
easy to discover everything that travels over the push channel. The
dashboard client listens for exactly these names.
"""

# ─── Contact changes (server → dashboard) ────────────────

CONTACT_CREATED = "contact:created"
CONTACT_UPDATED = "contact:updated"
CONTACT_DELETED = "contact:deleted"

CONTACT_EVENTS = (CONTACT_CREATED, CONTACT_UPDATED, CONTACT_DELETED)

# ─── Session control (dashboard ↔ server) ────────────────

JOIN_DASHBOARD = "join:dashboard"
JOIN_USER = "join:user"
JOINED = "joined"
PING = "ping"
PONG = "pong"
ERROR = "error"

# ─── Rooms ───────────────────────────────────────────────

DASHBOARD_ROOM = "dashboard"


def account_room(account_id: str) -> str:
    """Room name for one account's open dashboard sessions."""
    return f"user:{account_id}"
