"""
Server side of the confirmation gate.

The client only calls confirm after a completed hold gesture. Here each
call stamps the actor's own confirmed_at under the contract row lock, then
re-counts who is still outstanding. Activation itself is a
compare-and-swap on the contracts row, so at most one transaction ever
observes the transition and emits "all parties confirmed".
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from consentflow.core.errors import ConflictError, ValidationError
from consentflow.core.timeutil import now_utc
from consentflow.db.unit_of_work import unit_of_work
from consentflow.models.collaborator import Collaborator
from consentflow.models.contract import Contract
from consentflow.models.enums import ContractStatus, NotificationKind
from consentflow.policies.rbac import require_collaborator
from consentflow.services.audit_service import AuditAction, AuditService
from consentflow.services.contract_service import (
    has_method_commitment,
    load_collaborators,
    lock_contract,
)
from consentflow.services.invitation_service import InvitationService
from consentflow.services.notification_service import LoggingNotifier, NotificationEvent, Notifier, dispatch
from consentflow.services.validation import can_activate_or_share

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfirmationResult:
    all_parties_confirmed: bool
    contract_status: str


def activate_if_pending(db: Session, contract_id: uuid.UUID) -> bool:
    """
    Flip the contract to active unless it already is. Returns True only for
    the caller whose UPDATE actually hit the row.
    """
    now = now_utc()
    result = db.execute(
        update(Contract)
        .where(
            Contract.id == contract_id,
            Contract.status != ContractStatus.active.value,
            Contract.status != ContractStatus.rejected.value,
        )
        .values(
            status=ContractStatus.active.value,
            activated_at=now,
            reconfirming=False,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1


def unconfirmed(collaborators: List[Collaborator]) -> List[Collaborator]:
    return [c for c in collaborators if c.confirmed_at is None]


class ConfirmationService:
    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or LoggingNotifier()
        self.audit = AuditService()
        self.invitations = InvitationService(notifier=self.notifier)

    def confirm_consent(self, db: Session, *, contract_id: uuid.UUID, actor_id: uuid.UUID) -> ConfirmationResult:
        """
        Rules:
        - rejected contracts cannot be confirmed
        - a collaborative contract must have been shared first
        - the contract needs encounter type, method (with an artifact) and two parties
        - a repeated confirm is a successful no-op that re-evaluates activation
        """
        events: List[NotificationEvent] = []

        with unit_of_work(db):
            contract = lock_contract(db, contract_id)
            if contract.status == ContractStatus.rejected.value:
                raise ConflictError("Contract was rejected and can no longer be confirmed.")
            collaborators = load_collaborators(db, contract.id, for_update=True)
            row = require_collaborator(collaborators, actor_id)
            if contract.is_collaborative and contract.status == ContractStatus.draft.value:
                raise ConflictError("Share the contract before confirming.")
            if not can_activate_or_share(contract):
                raise ValidationError("Contract is incomplete and cannot be confirmed.")
            if not has_method_commitment(contract):
                raise ValidationError("A documentation method artifact is required before confirming.")

            if row.confirmed_at is None:
                row.confirmed_at = now_utc()
                self.audit.record(
                    db,
                    actor_id=actor_id,
                    contract_id=contract.id,
                    action=AuditAction.CONSENT_CONFIRMED,
                    payload_summary={"collaborator_id": str(row.id)},
                )
                db.flush()

            outstanding = len(unconfirmed(collaborators)) + self.invitations.pending_count(db, contract.id)
            all_confirmed = outstanding == 0
            recipients = tuple(c.user_id for c in collaborators)

            if all_confirmed and contract.status == ContractStatus.active.value:
                if contract.reconfirming:
                    contract.reconfirming = False
                    contract.updated_at = now_utc()
                    self.audit.record(
                        db,
                        actor_id=actor_id,
                        contract_id=contract.id,
                        action=AuditAction.RECONFIRMATION_COMPLETED,
                        payload_summary={"collaborators": len(collaborators)},
                    )
                    events.append(self._all_confirmed_event(contract.id, recipients, actor_id))
            elif all_confirmed:
                if activate_if_pending(db, contract.id):
                    self.audit.record(
                        db,
                        actor_id=actor_id,
                        contract_id=contract.id,
                        action=AuditAction.CONTRACT_ACTIVATED,
                        payload_summary={"collaborators": len(collaborators)},
                    )
                    events.append(self._all_confirmed_event(contract.id, recipients, actor_id))
                    logger.info("contract activated", extra={"contract_id": str(contract.id)})
            else:
                events.append(
                    NotificationEvent(
                        kind=NotificationKind.awaiting_others,
                        contract_id=contract.id,
                        recipients=(actor_id,),
                        message=f"Waiting for {outstanding} more party confirmation(s).",
                        actor_id=actor_id,
                    )
                )

        db.refresh(contract)
        dispatch(self.notifier, events)
        return ConfirmationResult(all_parties_confirmed=all_confirmed, contract_status=contract.status)

    @staticmethod
    def _all_confirmed_event(contract_id: uuid.UUID, recipients, actor_id: uuid.UUID) -> NotificationEvent:
        return NotificationEvent(
            kind=NotificationKind.all_parties_confirmed,
            contract_id=contract_id,
            recipients=tuple(recipients),
            message="All parties have confirmed. The contract is active.",
            actor_id=actor_id,
        )
