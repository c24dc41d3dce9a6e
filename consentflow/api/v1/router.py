from fastapi import APIRouter

from consentflow.api.v1.health import router as health_router
from consentflow.api.v1.auth import router as auth_router
from consentflow.api.v1.contracts import router as contracts_router
from consentflow.api.v1.invitations import router as invitations_router
from consentflow.api.v1.amendments import router as amendments_router
from consentflow.api.v1.notifications import router as notifications_router
from consentflow.api.v1.audit import router as audit_router


v1_router = APIRouter()

# ------------------------------------------------------------------
# SYSTEM / CORE
# ------------------------------------------------------------------
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(auth_router, tags=["auth"])

# ------------------------------------------------------------------
# CONTRACT LIFECYCLE
# ------------------------------------------------------------------
v1_router.include_router(contracts_router, tags=["contracts"])
v1_router.include_router(invitations_router, tags=["invitations"])
v1_router.include_router(amendments_router, tags=["amendments"])
v1_router.include_router(audit_router, tags=["audit"])

# ------------------------------------------------------------------
# NOTIFICATIONS
# ------------------------------------------------------------------
v1_router.include_router(notifications_router, tags=["notifications"])
