# consentflow/api/v1/invitations.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from consentflow.api.v1.contracts import collaborator_resp
from consentflow.core.auth_deps import get_current_principal
from consentflow.core.deps import get_notifier
from consentflow.db.session import get_db
from consentflow.models.invitation import Invitation
from consentflow.policies.rbac import Principal
from consentflow.schemas.contracts import CollaboratorResponse
from consentflow.schemas.invitations import InvitationListResponse, InvitationPreviewResponse
from consentflow.services.invitation_service import InvitationService
from consentflow.services.notification_service import Notifier

router = APIRouter(prefix="/invitations")


def _iso(dt):
    return dt.isoformat() if dt else None


def _to_resp(inv: Invitation) -> dict:
    return {
        "invitationId": str(inv.id),
        "contractId": str(inv.contract_id),
        "recipientEmail": inv.recipient_email,
        "status": inv.status,
        "expiresAtIso": _iso(inv.expires_at),
        "acceptedAtIso": _iso(inv.accepted_at),
    }


@router.get("", response_model=InvitationListResponse)
def list_my_invitations(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    rows = InvitationService().list_for_email(db, principal.email)
    return {"invitations": [_to_resp(r) for r in rows]}


@router.get("/{code}", response_model=InvitationPreviewResponse)
def get_invitation(code: str, db: Session = Depends(get_db)):
    """Public lookup: the code is the credential."""
    preview = InvitationService().get_by_code(db, code)
    return {
        **_to_resp(preview.invitation),
        "encounterType": preview.contract.encounter_type,
        "contractStatus": preview.contract.status,
        "senderDisplayName": preview.sender.display_name if preview.sender else None,
        "expired": preview.expired,
    }


@router.post("/{code}/accept", response_model=CollaboratorResponse)
def accept_invitation(
    code: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: Notifier = Depends(get_notifier),
):
    row = InvitationService(notifier=notifier).accept_invitation(db, code=code, actor_id=principal.user_id)
    return collaborator_resp(row)
