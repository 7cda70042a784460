"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter. This protects all routes in each router
without modifying individual handlers. Health, auth, and the public
contact form are open (the form reads an optional token itself).
"""

from fastapi import APIRouter, Depends

from techflow.api.admin import router as admin_router
from techflow.api.auth import router as auth_router
from techflow.api.contacts import public_router as contact_form_router
from techflow.api.contacts import router as contacts_router
from techflow.api.health import router as health_router
from techflow.auth.dependencies import get_current_account, require_admin

api_router = APIRouter(prefix="/api/v1")

# Open routes — no auth required
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(contact_form_router, tags=["contacts"])

# Protected routes — require a valid JWT (bearer or cookie)
api_router.include_router(
    contacts_router, tags=["contacts"], dependencies=[Depends(get_current_account)]
)
api_router.include_router(
    admin_router, tags=["admin"], dependencies=[Depends(require_admin)]
)
