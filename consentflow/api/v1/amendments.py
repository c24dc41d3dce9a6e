# consentflow/api/v1/amendments.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from consentflow.core.auth_deps import get_current_principal
from consentflow.core.deps import get_notifier, parse_uuid
from consentflow.core.deps_idempotency import idempotency_guard
from consentflow.db.session import get_db
from consentflow.models.amendment import Amendment
from consentflow.policies.rbac import Principal
from consentflow.schemas.amendments import (
    AmendmentCreate,
    AmendmentListResponse,
    AmendmentRejectRequest,
    AmendmentResponse,
)
from consentflow.services.amendment_service import AmendmentService
from consentflow.services.idempotency_service import IdempotencyService
from consentflow.services.notification_service import Notifier

router = APIRouter()


def _iso(dt):
    return dt.isoformat() if dt else None


def _to_resp(a: Amendment) -> dict:
    return {
        "amendmentId": str(a.id),
        "contractId": str(a.contract_id),
        "requestedBy": str(a.requested_by),
        "amendmentType": a.amendment_type,
        "changes": dict(a.changes or {}),
        "reason": a.reason,
        "status": a.status,
        "approvals": list(a.approvals or []),
        "rejectedBy": str(a.rejected_by) if a.rejected_by else None,
        "rejectionReason": a.rejection_reason,
        "resolvedAtIso": _iso(a.resolved_at),
        "createdAtIso": _iso(a.created_at),
    }


@router.get("/contracts/{contractId}/amendments", response_model=AmendmentListResponse)
def list_amendments(
    contractId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    cid = parse_uuid(contractId, "contractId")
    rows = AmendmentService().list_amendments(db, cid, principal.user_id)
    return {"amendments": [_to_resp(a) for a in rows]}


@router.post("/contracts/{contractId}/amendments", response_model=AmendmentResponse, status_code=201)
def propose_amendment(
    request: Request,
    contractId: str,
    payload: AmendmentCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: Notifier = Depends(get_notifier),
    idem_key=Depends(idempotency_guard),
):
    """
    Never retried implicitly. A client that wants a safe manual retry sends
    an Idempotency-Key; the stored response is replayed for the same body.
    """
    if request.state.idempotency_replay_json is not None:
        return JSONResponse(
            content=request.state.idempotency_replay_json,
            status_code=request.state.idempotency_replay_status or 201,
        )

    cid = parse_uuid(contractId, "contractId")
    amendment = AmendmentService(notifier=notifier).propose_amendment(
        db,
        contract_id=cid,
        actor_id=principal.user_id,
        amendment_type=payload.amendment_type,
        changes=payload.changes,
        reason=payload.reason,
    )
    resp = _to_resp(amendment)

    if idem_key is not None:
        IdempotencyService().store_response(
            db,
            actor_id=str(principal.user_id),
            endpoint_key=request.state.idempotency_endpoint_key,
            idem_key=idem_key,
            request_hash=request.state.idempotency_request_hash,
            response_json=resp,
            response_status=201,
        )
    return resp


@router.post("/amendments/{amendmentId}/approve", response_model=AmendmentResponse)
def approve_amendment(
    amendmentId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: Notifier = Depends(get_notifier),
):
    aid = parse_uuid(amendmentId, "amendmentId")
    amendment = AmendmentService(notifier=notifier).approve_amendment(db, amendment_id=aid, actor_id=principal.user_id)
    return _to_resp(amendment)


@router.post("/amendments/{amendmentId}/reject", response_model=AmendmentResponse)
def reject_amendment(
    amendmentId: str,
    payload: AmendmentRejectRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: Notifier = Depends(get_notifier),
):
    aid = parse_uuid(amendmentId, "amendmentId")
    amendment = AmendmentService(notifier=notifier).reject_amendment(
        db, amendment_id=aid, actor_id=principal.user_id, reason=payload.reason
    )
    return _to_resp(amendment)
