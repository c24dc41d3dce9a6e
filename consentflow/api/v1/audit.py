from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from consentflow.core.auth_deps import get_current_principal
from consentflow.core.deps import parse_uuid
from consentflow.db.session import get_db
from consentflow.policies.rbac import Principal
from consentflow.services.audit_service import AuditService
from consentflow.services.contract_service import ContractService

router = APIRouter(prefix="/contracts")


@router.get("/{contractId}/audit")
def get_contract_audit(
    contractId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Transition history of one contract, oldest first. Parties only."""
    cid = parse_uuid(contractId, "contractId")
    ContractService().get_contract(db, cid, principal.user_id)
    rows = AuditService().list_for_contract(db, cid)
    return {
        "records": [
            {
                "action": r.action,
                "actorId": r.actor_id,
                "status": r.status,
                "requestId": r.request_id,
                "payloadHash": r.payload_hash,
                "summary": dict(r.payload_summary_json or {}),
                "createdAtIso": r.created_at.isoformat() if r.created_at else None,
            }
            for r in rows
        ]
    }
