"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic migrations mirror these definitions.

Key concepts:
- UUID primary keys via the portable `Uuid` type (native on PostgreSQL)
- Enum-like columns are plain strings guarded by CHECK constraints
- Python-side timestamp defaults so values are known right after flush
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


CONTACT_SUBJECTS = ("general", "demo", "support", "partnership")
CONTACT_STATUSES = ("new", "read", "replied", "archived")
ACCOUNT_ROLES = ("user", "admin")


def _in(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class Account(Base):
    """A person who can sign in and own contacts.

    Learn: Either password_hash (email/password registration) or google_id
    (OAuth sign-in) must be present to authenticate. Accounts are never
    hard-deleted; deactivation flips is_active.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint(_in("role", ACCOUNT_ROLES), name="ck_accounts_role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    google_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )  # nullable for OAuth
    avatar: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    contacts: Mapped[list["Contact"]] = relationship(back_populates="owner")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class Contact(Base):
    """A customer inquiry submitted through the contact form.

    Learn: user_id is null for anonymous submissions. Status moves freely
    between new/read/replied/archived — there is no workflow graph.
    """

    __tablename__ = "contacts"
    __table_args__ = (
        CheckConstraint(_in("subject", CONTACT_SUBJECTS), name="ck_contacts_subject"),
        CheckConstraint(_in("status", CONTACT_STATUSES), name="ck_contacts_status"),
        Index("ix_contacts_user_id", "user_id"),
        Index("ix_contacts_status", "status"),
        Index("ix_contacts_created_at", "created_at"),
        Index("ix_contacts_email_created_at", "email", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(20), nullable=False, default="general")
    message: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("accounts.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="new")
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    owner: Mapped[Optional["Account"]] = relationship(back_populates="contacts")
