"""Change notifier — turns confirmed contact mutations into pushed events.

Learn: Exactly one emission source is active per deployment:
- sync mode (default): the service layer calls ChangeNotifier right after
  each successful commit.
- feed mode: the service layer gets a NullNotifier and the
  ContactFeedObserver (techflow.realtime.feed) publishes from the database
  change feed instead. Running both would double-deliver every event.

Routing: an owned contact goes to its owner's room. An unowned creation
(anonymous form submission) has no room to target, so it goes to the
shared dashboard broadcast group. Unowned updates/deletes are not pushed;
dashboards pick them up on their next re-fetch.

Delivery never raises into the caller: the HTTP response for a mutation
must not depend on realtime delivery.
"""

from typing import Any, Optional

import structlog

from techflow.realtime.envelope import (
    CREATED,
    DELETED,
    UPDATED,
    ContactEnvelope,
    build_envelope,
)
from techflow.realtime.registry import SubscriptionRegistry

logger = structlog.get_logger()


class ChangeNotifier:
    """Synchronous-mode notifier bound to a subscription registry."""

    def __init__(self, registry: SubscriptionRegistry):
        self.registry = registry

    def contact_created(self, contact: Any) -> Optional[ContactEnvelope]:
        return self._emit(CREATED, contact=contact)

    def contact_updated(self, contact: Any) -> Optional[ContactEnvelope]:
        return self._emit(UPDATED, contact=contact)

    def contact_deleted(
        self, contact_id: Any, owner_id: Any = None
    ) -> Optional[ContactEnvelope]:
        return self._emit(DELETED, contact_id=contact_id, owner_id=owner_id)

    def publish(self, envelope: ContactEnvelope) -> int:
        """Route an already-built envelope. Returns sessions reached."""
        payload = envelope.to_payload()
        if envelope.owner_id:
            return self.registry.deliver_to_account(
                envelope.owner_id, envelope.event_name, payload
            )
        if envelope.type == CREATED:
            return self.registry.deliver_to_broadcast(envelope.event_name, payload)
        logger.debug(
            "realtime.unowned_change_skipped",
            type=envelope.type,
            contact_id=envelope.contact_id,
        )
        return 0

    def _emit(self, change_type: str, **kwargs) -> Optional[ContactEnvelope]:
        try:
            envelope = build_envelope(change_type, **kwargs)
            reached = self.publish(envelope)
        except Exception:
            logger.exception("realtime.emit_failed", type=change_type)
            return None
        logger.debug(
            "realtime.emitted",
            type=change_type,
            contact_id=envelope.contact_id,
            owner_id=envelope.owner_id,
            sessions=reached,
        )
        return envelope


class NullNotifier:
    """Notifier used when the change feed is the emission source."""

    def contact_created(self, contact: Any) -> None:
        return None

    def contact_updated(self, contact: Any) -> None:
        return None

    def contact_deleted(self, contact_id: Any, owner_id: Any = None) -> None:
        return None
