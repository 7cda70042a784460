"""Contact persistence accessors.

Learn: Two explicitly separate interfaces over the same table:
- ContactRepository — every query is scoped to one owning account.
  A contact owned by someone else is indistinguishable from a missing one.
- GlobalContactRepository — unscoped, used only by the admin API and by
  anonymous submissions (which have no owner to scope by).

Each mutating call commits its own unit of work and returns the refreshed
row (or None when the id isn't visible), so callers only react to
confirmed writes.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import Select, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from techflow.db.models import Contact

EDITABLE_FIELDS = frozenset(
    {"name", "email", "subject", "message", "status", "is_read"}
)
STATS_WINDOW_DAYS = 30


class _ContactAccessor:
    """Shared query logic. Subclasses decide the row scope."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _scope(self, query: Select) -> Select:
        raise NotImplementedError

    # ─── Writes ─────────────────────────────────────────

    async def create(self, contact: Contact) -> Contact:
        self.db.add(contact)
        await self.db.commit()
        await self.db.refresh(contact)
        return contact

    async def update_by_id(
        self, contact_id: uuid.UUID, patch: dict[str, Any]
    ) -> Optional[Contact]:
        contact = await self.get(contact_id)
        if contact is None:
            return None

        unknown = set(patch) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not editable: {sorted(unknown)}")

        for field, value in patch.items():
            setattr(contact, field, value)
        await self.db.commit()
        await self.db.refresh(contact)
        return contact

    async def delete_by_id(self, contact_id: uuid.UUID) -> Optional[Contact]:
        contact = await self.get(contact_id)
        if contact is None:
            return None
        await self.db.delete(contact)
        await self.db.commit()
        return contact

    # ─── Reads ──────────────────────────────────────────

    async def get(self, contact_id: uuid.UUID) -> Optional[Contact]:
        result = await self.db.execute(
            self._scope(select(Contact).where(Contact.id == contact_id))
        )
        return result.scalars().first()

    async def find(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Contact], int]:
        """Page through contacts newest-first. Returns (rows, total matching)."""
        query = self._filtered(select(Contact), status, search)
        count_query = self._filtered(select(func.count(Contact.id)), status, search)

        total = (await self.db.execute(count_query)).scalar_one()
        result = await self.db.execute(
            query.order_by(Contact.created_at.desc(), Contact.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def list_all(self) -> list[Contact]:
        result = await self.db.execute(
            self._scope(select(Contact)).order_by(Contact.created_at.desc(), Contact.id)
        )
        return list(result.scalars().all())

    async def aggregate_stats(self, now: Optional[datetime] = None) -> dict[str, int]:
        """Counts per status, unread count, and submissions in the last 30 days."""
        since = (now or datetime.now(timezone.utc)) - timedelta(days=STATS_WINDOW_DAYS)

        def _count_where(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        query = self._scope(
            select(
                func.count(Contact.id).label("total"),
                _count_where(Contact.status == "new").label("new"),
                _count_where(Contact.status == "read").label("read"),
                _count_where(Contact.status == "replied").label("replied"),
                _count_where(Contact.status == "archived").label("archived"),
                _count_where(Contact.is_read.is_(False)).label("unread"),
                _count_where(Contact.created_at >= since).label("last_30_days"),
            )
        )
        row = (await self.db.execute(query)).one()
        return {key: int(value or 0) for key, value in row._mapping.items()}

    def _filtered(
        self, query: Select, status: Optional[str], search: Optional[str]
    ) -> Select:
        query = self._scope(query)
        if status:
            query = query.where(Contact.status == status)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(
                    Contact.name.ilike(pattern),
                    Contact.email.ilike(pattern),
                    Contact.message.ilike(pattern),
                )
            )
        return query


class ContactRepository(_ContactAccessor):
    """Owner-scoped accessor — the default for account-facing routes."""

    def __init__(self, db: AsyncSession, owner_id: uuid.UUID):
        super().__init__(db)
        self.owner_id = owner_id

    def _scope(self, query: Select) -> Select:
        return query.where(Contact.user_id == self.owner_id)

    async def create(self, contact: Contact) -> Contact:
        contact.user_id = self.owner_id
        return await super().create(contact)


class GlobalContactRepository(_ContactAccessor):
    """Unscoped accessor — admin views and anonymous submissions only."""

    def _scope(self, query: Select) -> Select:
        return query
