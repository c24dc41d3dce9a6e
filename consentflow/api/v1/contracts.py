# consentflow/api/v1/contracts.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from consentflow.core.auth_deps import get_current_principal
from consentflow.core.deps import get_notifier, parse_uuid
from consentflow.db.session import get_db
from consentflow.models.collaborator import Collaborator
from consentflow.models.contract import Contract
from consentflow.policies.rbac import Principal
from consentflow.schemas.contracts import (
    CollaboratorResponse,
    ConfirmResponse,
    ContractCreate,
    ContractListResponse,
    ContractResponse,
    ContractUpdate,
    RejectRequest,
    ShareRequest,
    ShareResponse,
)
from consentflow.services.confirmation_service import ConfirmationService
from consentflow.services.contract_service import ContractService
from consentflow.services.notification_service import Notifier

router = APIRouter(prefix="/contracts")


def _iso(dt):
    return dt.isoformat() if dt else None


def _to_resp(c: Contract) -> dict:
    return {
        "contractId": str(c.id),
        "ownerId": str(c.owner_id),
        "universityId": c.university_id,
        "stateCode": c.state_code,
        "encounterType": c.encounter_type,
        "parties": list(c.parties or []),
        "intimateActs": dict(c.intimate_acts or {}),
        "startTimeIso": _iso(c.start_time),
        "durationMinutes": c.duration_minutes,
        "endTimeIso": _iso(c.end_time),
        "method": c.method,
        "artifacts": dict(c.artifacts or {}),
        "contractText": c.contract_text,
        "status": c.status,
        "isCollaborative": c.is_collaborative,
        "reconfirming": c.reconfirming,
        "activatedAtIso": _iso(c.activated_at),
        "approvedAmendmentCount": c.approved_amendment_count,
        "lastEditedBy": str(c.last_edited_by) if c.last_edited_by else None,
        "createdAtIso": _iso(c.created_at),
        "updatedAtIso": _iso(c.updated_at),
    }


def collaborator_resp(row: Collaborator) -> dict:
    return {
        "collaboratorId": str(row.id),
        "contractId": str(row.contract_id),
        "userId": str(row.user_id),
        "role": row.role,
        "status": row.status,
        "lastViewedAtIso": _iso(row.last_viewed_at),
        "approvedAtIso": _iso(row.approved_at),
        "rejectedAtIso": _iso(row.rejected_at),
        "rejectionReason": row.rejection_reason,
        "confirmedAtIso": _iso(row.confirmed_at),
    }


# ---------------------------------------------------------------------
# READS
# ---------------------------------------------------------------------


@router.get("", response_model=ContractListResponse)
def list_contracts(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    rows = ContractService().list_contracts(db, principal.user_id)
    return {"contracts": [_to_resp(c) for c in rows]}


@router.get("/drafts", response_model=ContractListResponse)
def list_drafts(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    rows = ContractService().list_drafts(db, principal.user_id)
    return {"contracts": [_to_resp(c) for c in rows]}


@router.get("/shared", response_model=ContractListResponse)
def list_shared(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    rows = ContractService().list_shared(db, principal.user_id)
    return {"contracts": [_to_resp(c) for c in rows]}


@router.get("/{contractId}", response_model=ContractResponse)
def get_contract(
    contractId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    cid = parse_uuid(contractId, "contractId")
    return _to_resp(ContractService().get_contract(db, cid, principal.user_id))


@router.get("/{contractId}/collaborators", response_model=list[CollaboratorResponse])
def list_collaborators(
    contractId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    cid = parse_uuid(contractId, "contractId")
    rows = ContractService().list_collaborators(db, cid, principal.user_id)
    return [collaborator_resp(r) for r in rows]


# ---------------------------------------------------------------------
# DRAFTS
# ---------------------------------------------------------------------


@router.post("", response_model=ContractResponse, status_code=201)
def create_contract(
    payload: ContractCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: Notifier = Depends(get_notifier),
):
    contract = ContractService(notifier=notifier).create_contract(db, owner_id=principal.user_id, payload=payload)
    return _to_resp(contract)


@router.patch("/{contractId}", response_model=ContractResponse)
def update_draft(
    contractId: str,
    payload: ContractUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: Notifier = Depends(get_notifier),
):
    cid = parse_uuid(contractId, "contractId")
    contract = ContractService(notifier=notifier).update_draft(
        db,
        contract_id=cid,
        actor_id=principal.user_id,
        changes=payload.model_dump(exclude_unset=True),
    )
    return _to_resp(contract)


@router.delete("/{contractId}", status_code=204)
def delete_draft(
    contractId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: Notifier = Depends(get_notifier),
):
    cid = parse_uuid(contractId, "contractId")
    ContractService(notifier=notifier).delete_draft(db, contract_id=cid, actor_id=principal.user_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------
# LIFECYCLE TRANSITIONS
# ---------------------------------------------------------------------


@router.post("/{contractId}/share", response_model=ShareResponse)
def share_contract(
    contractId: str,
    payload: ShareRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: Notifier = Depends(get_notifier),
):
    cid = parse_uuid(contractId, "contractId")
    result = ContractService(notifier=notifier).share_contract(
        db, contract_id=cid, actor_id=principal.user_id, targets=payload.targets
    )
    # invitation codes are delivered out of band, never echoed to the sender
    return {
        "contract": _to_resp(result.contract),
        "collaborators": [collaborator_resp(r) for r in result.collaborators],
        "invitationCount": len(result.invitations),
    }


@router.post("/{contractId}/review", response_model=CollaboratorResponse)
def review_contract(
    contractId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: Notifier = Depends(get_notifier),
):
    cid = parse_uuid(contractId, "contractId")
    row = ContractService(notifier=notifier).review_contract(db, contract_id=cid, actor_id=principal.user_id)
    return collaborator_resp(row)


@router.post("/{contractId}/approve", response_model=CollaboratorResponse)
def approve_contract(
    contractId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: Notifier = Depends(get_notifier),
):
    cid = parse_uuid(contractId, "contractId")
    row = ContractService(notifier=notifier).approve_contract(db, contract_id=cid, actor_id=principal.user_id)
    return collaborator_resp(row)


@router.post("/{contractId}/reject", response_model=ContractResponse)
def reject_contract(
    contractId: str,
    payload: RejectRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: Notifier = Depends(get_notifier),
):
    cid = parse_uuid(contractId, "contractId")
    contract = ContractService(notifier=notifier).reject_contract(
        db, contract_id=cid, actor_id=principal.user_id, reason=payload.reason
    )
    return _to_resp(contract)


@router.post("/{contractId}/confirm", response_model=ConfirmResponse)
def confirm_consent(
    contractId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: Notifier = Depends(get_notifier),
):
    cid = parse_uuid(contractId, "contractId")
    result = ConfirmationService(notifier=notifier).confirm_consent(db, contract_id=cid, actor_id=principal.user_id)
    return {
        "allPartiesConfirmed": result.all_parties_confirmed,
        "contractStatus": result.contract_status,
    }
