"""Contact service — business logic for submissions and the dashboard.

Learn: Service layer separates business logic from HTTP routing.
API routes call services, services call the repository. Every mutation
follows the same order:
1. validated input (pydantic, already checked by the route)
2. the repository commits the write
3. only after the commit succeeds, the notifier is told about it

If step 2 raises, step 3 never runs — no envelope for a write that
didn't happen. The notifier itself never raises into the caller.
"""

import uuid
from typing import Any, Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from techflow.db.models import Contact
from techflow.db.repository import ContactRepository, GlobalContactRepository
from techflow.schemas.contact import ContactCreate
from techflow.services.csv_export import contacts_to_csv

logger = structlog.get_logger()


# ─── Status transitions ─────────────────────────────────
# Free functions over an explicit repository. Each returns the refreshed
# contact, or None when it is no longer visible through `repo`.

ContactRepo = Union[ContactRepository, GlobalContactRepository]

_STATUS_PATCHES: dict[str, dict[str, Any]] = {
    "read": {"status": "read", "is_read": True},
    "replied": {"status": "replied"},
    "archived": {"status": "archived"},
}


def status_patch(status: str) -> dict[str, Any]:
    """Patch for a status change. Reading a contact also clears its unread flag."""
    return dict(_STATUS_PATCHES.get(status, {"status": status}))


async def mark_as_read(contact: Contact, repo: ContactRepo) -> Optional[Contact]:
    return await repo.update_by_id(contact.id, status_patch("read"))


async def mark_as_replied(contact: Contact, repo: ContactRepo) -> Optional[Contact]:
    return await repo.update_by_id(contact.id, status_patch("replied"))


async def archive(contact: Contact, repo: ContactRepo) -> Optional[Contact]:
    return await repo.update_by_id(contact.id, status_patch("archived"))


_TRANSITIONS = {
    "read": mark_as_read,
    "replied": mark_as_replied,
    "archived": archive,
}


async def set_status(
    contact: Contact, status: str, repo: ContactRepo
) -> Optional[Contact]:
    """Any status may follow any other; `new` only resets the status."""
    transition = _TRANSITIONS.get(status)
    if transition is not None:
        return await transition(contact, repo)
    return await repo.update_by_id(contact.id, status_patch(status))


# ─── Service ────────────────────────────────────────────

class ContactService:
    """Contact operations over one repository (scoped or unscoped)."""

    def __init__(self, repo: ContactRepo, notifier):
        self.repo = repo
        self.notifier = notifier

    @classmethod
    def for_account(
        cls, db: AsyncSession, notifier, account_id: uuid.UUID
    ) -> "ContactService":
        return cls(ContactRepository(db, account_id), notifier)

    @classmethod
    def unscoped(cls, db: AsyncSession, notifier) -> "ContactService":
        return cls(GlobalContactRepository(db), notifier)

    # ─── Writes ─────────────────────────────────────────

    async def submit(
        self,
        data: ContactCreate,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Contact:
        contact = Contact(
            name=data.name,
            email=data.email,
            subject=data.subject,
            message=data.message,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        contact = await self.repo.create(contact)
        logger.info(
            "contact.submitted",
            contact_id=str(contact.id),
            owner_id=str(contact.user_id) if contact.user_id else None,
            subject=contact.subject,
        )
        self.notifier.contact_created(contact)
        return contact

    async def update(
        self, contact_id: uuid.UUID, patch: dict[str, Any]
    ) -> Optional[Contact]:
        """Apply a partial edit. Returns None when the contact isn't visible."""
        if not patch:
            return await self.repo.get(contact_id)
        if "status" in patch:
            # An explicit is_read in the same edit wins over the transition's.
            patch = {**status_patch(patch["status"]), **patch}

        contact = await self.repo.update_by_id(contact_id, patch)
        if contact is None:
            return None
        logger.info(
            "contact.updated", contact_id=str(contact.id), fields=sorted(patch)
        )
        self.notifier.contact_updated(contact)
        return contact

    async def update_status(
        self, contact_id: uuid.UUID, status: str
    ) -> Optional[Contact]:
        contact = await self.repo.get(contact_id)
        if contact is None:
            return None
        contact = await set_status(contact, status, self.repo)
        if contact is None:
            return None
        logger.info(
            "contact.status_changed", contact_id=str(contact.id), status=status
        )
        self.notifier.contact_updated(contact)
        return contact

    async def delete(self, contact_id: uuid.UUID) -> bool:
        contact = await self.repo.delete_by_id(contact_id)
        if contact is None:
            return False
        logger.info("contact.deleted", contact_id=str(contact_id))
        self.notifier.contact_deleted(contact_id, owner_id=contact.user_id)
        return True

    # ─── Reads ──────────────────────────────────────────

    async def get(self, contact_id: uuid.UUID) -> Optional[Contact]:
        return await self.repo.get(contact_id)

    async def list_contacts(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> tuple[list[Contact], int]:
        return await self.repo.find(status=status, search=search, page=page, limit=limit)

    async def stats(self) -> dict[str, int]:
        return await self.repo.aggregate_stats()

    async def export_csv(self) -> str:
        contacts = await self.repo.list_all()
        logger.info("contact.exported", rows=len(contacts))
        return contacts_to_csv(contacts)
