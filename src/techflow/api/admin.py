"""Admin API — unscoped contact views and account management.

Learn: Mounted under /admin with require_admin at the include_router
level, so every route here is 403 for non-admins. Contacts use the
GlobalContactRepository (no owner filter); everything else about the
routes is shared with the owner-scoped dashboard.

Accounts are never deleted — an admin deactivates them instead, which
makes their tokens stop working on the next request.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from techflow.api.contacts import get_notifier, register_contact_routes
from techflow.auth.dependencies import CurrentAccount, require_admin
from techflow.db.engine import get_db
from techflow.schemas.account import AccountAdminUpdate, AccountRead
from techflow.schemas.contact import Pagination
from techflow.services import account_service
from techflow.services.contact_service import ContactService

router = APIRouter(prefix="/admin")


def _admin_contact_svc(
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
) -> ContactService:
    return ContactService.unscoped(db, notifier)


register_contact_routes(router, _admin_contact_svc)


# ─── Accounts ───────────────────────────────────────────


@router.get("/accounts")
async def list_accounts(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    accounts, total = await account_service.list_accounts(db, page=page, limit=limit)
    return {
        "data": [AccountRead.model_validate(a) for a in accounts],
        "pagination": Pagination.build(page, limit, total),
    }


@router.patch("/accounts/{account_id}", response_model=AccountRead)
async def update_account(
    account_id: uuid.UUID,
    body: AccountAdminUpdate,
    identity: CurrentAccount = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Change an account's role or active flag."""
    account = await account_service.get_account(db, account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")

    patch = body.model_dump(exclude_unset=True)
    if account.id == identity.account_id and (
        patch.get("is_active") is False or patch.get("role") == "user"
    ):
        raise HTTPException(
            status_code=400, detail="Admins cannot demote or deactivate themselves"
        )
    return await account_service.update_account(db, account, patch)
