from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from consentflow.core.hashing import payload_hash
from consentflow.core.middleware import request_id_ctx
from consentflow.models.audit_log import AuditLogRecord


class AuditAction:
    # Contract lifecycle
    CONTRACT_CREATED = "CONTRACT_CREATED"
    DRAFT_UPDATED = "DRAFT_UPDATED"
    DRAFT_DELETED = "DRAFT_DELETED"
    CONTRACT_SHARED = "CONTRACT_SHARED"
    CONTRACT_REVIEWED = "CONTRACT_REVIEWED"
    CONTRACT_APPROVED = "CONTRACT_APPROVED"
    CONTRACT_REJECTED = "CONTRACT_REJECTED"

    # Invitations
    INVITATION_ACCEPTED = "INVITATION_ACCEPTED"
    INVITATION_EXPIRED = "INVITATION_EXPIRED"

    # Amendments
    AMENDMENT_PROPOSED = "AMENDMENT_PROPOSED"
    AMENDMENT_APPROVAL = "AMENDMENT_APPROVAL"
    AMENDMENT_APPLIED = "AMENDMENT_APPLIED"
    AMENDMENT_REJECTED = "AMENDMENT_REJECTED"
    AMENDMENT_DISCARDED = "AMENDMENT_DISCARDED"
    CONFIRMATIONS_CLEARED = "CONFIRMATIONS_CLEARED"

    # Confirmation gate
    CONSENT_CONFIRMED = "CONSENT_CONFIRMED"
    CONTRACT_ACTIVATED = "CONTRACT_ACTIVATED"
    RECONFIRMATION_COMPLETED = "RECONFIRMATION_COMPLETED"


class AuditService:
    def record(
        self,
        db: Session,
        *,
        actor_id: uuid.UUID | str,
        contract_id: Optional[uuid.UUID],
        action: str,
        payload_summary: Dict[str, Any],
        status: str = "ok",
    ) -> AuditLogRecord:
        """
        Append-only audit record insert, flushed inside the caller's transaction.

        payload_summary MUST be safe: no artifact references (signature blobs,
        audio/photo URLs, credential keys).
        """
        row = AuditLogRecord(
            request_id=request_id_ctx.get(),
            actor_id=str(actor_id),
            contract_id=contract_id,
            action=action,
            status=status,
            payload_hash=payload_hash(payload_summary),
            payload_summary_json=payload_summary,
        )
        db.add(row)
        return row

    def list_for_contract(self, db: Session, contract_id: uuid.UUID) -> list[AuditLogRecord]:
        return db.execute(
            select(AuditLogRecord)
            .where(AuditLogRecord.contract_id == contract_id)
            .order_by(AuditLogRecord.created_at)
        ).scalars().all()
