"""Realtime event envelopes for contact changes.

Learn: An envelope describes exactly one confirmed mutation. Building one
is pure — no I/O, no clock unless you omit `now` — so both emission
sources (the synchronous notifier and the change-feed observer) produce
identical payloads for the same change.

Wire shape:
    created / updated → {"type", "contact": {...}, "timestamp"}
    deleted           → {"type", "contact_id", "timestamp"}
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from techflow.events.types import CONTACT_CREATED, CONTACT_DELETED, CONTACT_UPDATED
from techflow.schemas.contact import ContactRead

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"
CHANGE_TYPES = (CREATED, UPDATED, DELETED)

# Change-feed operation → envelope type
_FEED_OPS = {
    "INSERT": CREATED,
    "UPDATE": UPDATED,
    "DELETE": DELETED,
}

_EVENT_NAMES = {
    CREATED: CONTACT_CREATED,
    UPDATED: CONTACT_UPDATED,
    DELETED: CONTACT_DELETED,
}


@dataclass(frozen=True)
class ContactEnvelope:
    type: str
    contact_id: str
    owner_id: Optional[str]
    timestamp: datetime
    contact: Optional[dict[str, Any]] = None

    @property
    def event_name(self) -> str:
        return _EVENT_NAMES[self.type]

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.type == DELETED:
            payload["contact_id"] = self.contact_id
        else:
            payload["contact"] = self.contact
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


def build_envelope(
    change_type: str,
    contact: Any = None,
    contact_id: Optional[str] = None,
    owner_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ContactEnvelope:
    """Build an envelope from a mutation result.

    `contact` is anything ContactRead can validate (ORM row or dict).
    Deletes only need `contact_id` (and `owner_id` for routing), but a
    contact is accepted too and both are derived from it.
    """
    if change_type not in CHANGE_TYPES:
        raise ValueError(f"Unknown change type: {change_type!r}")

    representation = None
    if contact is not None:
        representation = ContactRead.model_validate(contact).model_dump(mode="json")
        contact_id = representation["id"]
        owner_id = representation["user_id"]
    elif change_type != DELETED:
        raise ValueError(f"'{change_type}' envelopes need the contact representation")

    if not contact_id:
        raise ValueError("Envelope needs a contact id")

    return ContactEnvelope(
        type=change_type,
        contact_id=str(contact_id),
        owner_id=str(owner_id) if owner_id else None,
        timestamp=now or datetime.now(timezone.utc),
        contact=None if change_type == DELETED else representation,
    )


def envelope_from_feed(
    op: str, record: dict[str, Any], now: Optional[datetime] = None
) -> Optional[ContactEnvelope]:
    """Translate one change-feed record. Returns None for unknown operations."""
    change_type = _FEED_OPS.get(op.upper())
    if change_type is None:
        return None
    if change_type == DELETED:
        return build_envelope(
            DELETED,
            contact_id=record["id"],
            owner_id=record.get("user_id"),
            now=now,
        )
    return build_envelope(change_type, contact=record, now=now)
