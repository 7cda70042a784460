"""Contact API routes.

Learn: These routes are the HTTP interface to the contact lifecycle.
Routes just translate HTTP to service calls and handle error responses;
the service decides scoping and tells the notifier about confirmed writes.

Two routers:
- public_router: POST /contacts, the contact form. Auth is optional —
  a signed-in submitter owns the contact, an anonymous one doesn't.
- router: the dashboard (list, stats, export, edit, status, delete).
  Always scoped to the calling account; someone else's contact is a 404.

The admin API (techflow.api.admin) mounts the same dashboard routes over
an unscoped service via register_contact_routes().

Key patterns:
- PATCH for partial updates (only fields present in the body are applied)
- Query params for filtering (status, search) and paging (page, limit)
"""

import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from techflow.auth.dependencies import (
    CurrentAccount,
    get_current_account,
    get_current_account_optional,
)
from techflow.db.engine import get_db
from techflow.schemas.contact import (
    ContactCreate,
    ContactPage,
    ContactRead,
    ContactStats,
    ContactUpdate,
    Pagination,
    Status,
    StatusChange,
)
from techflow.services.contact_service import ContactService
from techflow.services.email_service import (
    send_contact_confirmation,
    send_new_contact_notification,
)

public_router = APIRouter()
router = APIRouter()


def get_notifier(request: Request):
    """The active emission source (ChangeNotifier or NullNotifier)."""
    return request.app.state.notifier


def _contact_svc(
    identity: CurrentAccount = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
) -> ContactService:
    return ContactService.for_account(db, notifier, identity.account_id)


# ═══════════════════════════════════════════════════════════
# Contact form (public)
# ═══════════════════════════════════════════════════════════


@public_router.post("/contacts", response_model=ContactRead, status_code=201)
async def submit_contact(
    body: ContactCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    identity: Optional[CurrentAccount] = Depends(get_current_account_optional),
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
):
    """Submit the contact form. Emails go out after the response."""
    if identity:
        svc = ContactService.for_account(db, notifier, identity.account_id)
    else:
        svc = ContactService.unscoped(db, notifier)

    ip_address = request.client.host if request.client else None
    contact = await svc.submit(
        body,
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
    )

    background_tasks.add_task(
        send_contact_confirmation, contact.name, contact.email, contact.message
    )
    background_tasks.add_task(
        send_new_contact_notification,
        contact.name,
        contact.email,
        contact.message,
        ip_address,
    )
    return contact


# ═══════════════════════════════════════════════════════════
# Dashboard
# ═══════════════════════════════════════════════════════════


def register_contact_routes(target: APIRouter, service_dependency: Callable) -> None:
    """Mount the dashboard contact routes on `target`.

    Learn: /stats and /export are declared before /{contact_id}, otherwise
    FastAPI would try to parse "stats" as a UUID.
    """

    @target.get("/contacts", response_model=ContactPage)
    async def list_contacts(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        status: Optional[Status] = Query(None, description="Filter by status"),
        search: Optional[str] = Query(None, max_length=100),
        svc: ContactService = Depends(service_dependency),
    ):
        """Newest first, with pagination metadata."""
        contacts, total = await svc.list_contacts(
            page=page, limit=limit, status=status, search=search
        )
        return ContactPage(
            data=[ContactRead.model_validate(c) for c in contacts],
            pagination=Pagination.build(page, limit, total),
        )

    @target.get("/contacts/stats", response_model=ContactStats)
    async def contact_stats(svc: ContactService = Depends(service_dependency)):
        return await svc.stats()

    @target.get("/contacts/export")
    async def export_contacts(svc: ContactService = Depends(service_dependency)):
        """Download every visible contact as CSV."""
        body = await svc.export_csv()
        filename = f"contacts-{datetime.now(timezone.utc):%Y-%m-%d}.csv"
        return Response(
            content=body,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @target.get("/contacts/{contact_id}", response_model=ContactRead)
    async def get_contact(
        contact_id: uuid.UUID,
        svc: ContactService = Depends(service_dependency),
    ):
        contact = await svc.get(contact_id)
        if not contact:
            raise HTTPException(status_code=404, detail="Contact not found")
        return contact

    @target.patch("/contacts/{contact_id}", response_model=ContactRead)
    async def update_contact(
        contact_id: uuid.UUID,
        body: ContactUpdate,
        svc: ContactService = Depends(service_dependency),
    ):
        """Partial edit — explicit nulls are ignored."""
        patch = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
        contact = await svc.update(contact_id, patch)
        if not contact:
            raise HTTPException(status_code=404, detail="Contact not found")
        return contact

    @target.patch("/contacts/{contact_id}/status", response_model=ContactRead)
    async def change_status(
        contact_id: uuid.UUID,
        body: StatusChange,
        svc: ContactService = Depends(service_dependency),
    ):
        contact = await svc.update_status(contact_id, body.status)
        if not contact:
            raise HTTPException(status_code=404, detail="Contact not found")
        return contact

    @target.delete("/contacts/{contact_id}", status_code=204)
    async def delete_contact(
        contact_id: uuid.UUID,
        svc: ContactService = Depends(service_dependency),
    ):
        if not await svc.delete(contact_id):
            raise HTTPException(status_code=404, detail="Contact not found")


register_contact_routes(router, _contact_svc)
