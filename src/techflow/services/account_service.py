"""Account service — registration, credential checks, Google upsert.

Learn: Plain async functions that take the session explicitly and return
the updated Account. No active-record methods on the model, so nothing
saves itself behind the caller's back.
"""

import uuid
from typing import Any, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from techflow.auth.oauth import GoogleProfile
from techflow.auth.password import hash_password, verify_password
from techflow.db.models import Account

logger = structlog.get_logger()


class DuplicateEmailError(Exception):
    """Raised when registering an email that already has an account."""


class InvalidCredentialsError(Exception):
    """Raised for unknown email, wrong password, or OAuth-only accounts."""


class InactiveAccountError(Exception):
    """Raised when a deactivated account tries to sign in."""


async def find_by_email(db: AsyncSession, email: str) -> Optional[Account]:
    result = await db.execute(select(Account).where(Account.email == email.lower()))
    return result.scalars().first()


async def register_account(
    db: AsyncSession, email: str, name: str, password: str
) -> Account:
    email = email.lower()
    if await find_by_email(db, email):
        raise DuplicateEmailError(email)

    account = Account(email=email, name=name, password_hash=hash_password(password))
    db.add(account)
    await db.commit()
    await db.refresh(account)
    logger.info("account.registered", account_id=str(account.id))
    return account


async def authenticate(db: AsyncSession, email: str, password: str) -> Account:
    account = await find_by_email(db, email)
    # OAuth-only accounts have no password to check.
    if not account or not account.password_hash:
        raise InvalidCredentialsError()
    if not verify_password(password, account.password_hash):
        raise InvalidCredentialsError()
    if not account.is_active:
        raise InactiveAccountError()
    return account


async def upsert_google_account(db: AsyncSession, profile: GoogleProfile) -> Account:
    """Find the account for a Google profile, linking or creating as needed.

    Lookup order: google_id, then email (links an existing password
    account to Google), then a fresh account.
    """
    result = await db.execute(
        select(Account).where(Account.google_id == profile.google_id)
    )
    account = result.scalars().first()

    if account is None:
        account = await find_by_email(db, profile.email)
        if account is not None:
            account.google_id = profile.google_id
            if not account.avatar:
                account.avatar = profile.avatar
            logger.info("account.google_linked", account_id=str(account.id))
        else:
            account = Account(
                google_id=profile.google_id,
                email=profile.email,
                name=profile.name,
                avatar=profile.avatar,
                role="user",
                is_active=True,
            )
            db.add(account)
            logger.info("account.google_created", email=profile.email)

    if not account.is_active:
        raise InactiveAccountError()

    await db.commit()
    await db.refresh(account)
    return account


async def update_account(
    db: AsyncSession, account: Account, patch: dict[str, Any]
) -> Account:
    """Apply admin changes (role, is_active). Deactivation never deletes."""
    for field in ("role", "is_active"):
        if field in patch and patch[field] is not None:
            setattr(account, field, patch[field])
    await db.commit()
    await db.refresh(account)
    logger.info(
        "account.updated",
        account_id=str(account.id),
        role=account.role,
        is_active=account.is_active,
    )
    return account


async def get_account(db: AsyncSession, account_id: uuid.UUID) -> Optional[Account]:
    return await db.get(Account, account_id)


async def list_accounts(
    db: AsyncSession, page: int = 1, limit: int = 20
) -> tuple[list[Account], int]:
    total = (await db.execute(select(func.count(Account.id)))).scalar_one()
    result = await db.execute(
        select(Account)
        .order_by(Account.created_at.desc(), Account.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total
