# consentflow/services/invitation_service.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from consentflow.core.errors import ConflictError, NotFoundError, ValidationError
from consentflow.core.timeutil import as_utc, now_utc
from consentflow.db.unit_of_work import unit_of_work
from consentflow.models.collaborator import Collaborator
from consentflow.models.contract import Contract
from consentflow.models.enums import CollaboratorRole, CollaboratorStatus, InvitationStatus, NotificationKind
from consentflow.models.invitation import Invitation
from consentflow.models.user import User
from consentflow.policies.rbac import find_collaborator
from consentflow.services.audit_service import AuditAction, AuditService
from consentflow.services.contract_service import (
    assert_not_terminal,
    bind_invitation,
    load_collaborators,
    lock_contract,
)
from consentflow.services.notification_service import LoggingNotifier, NotificationEvent, Notifier, dispatch

logger = logging.getLogger(__name__)


def is_expired(invitation: Invitation, now=None) -> bool:
    now = now or now_utc()
    return as_utc(invitation.expires_at) <= now


@dataclass
class InvitationPreview:
    invitation: Invitation
    contract: Contract
    sender: Optional[User]
    expired: bool


class InvitationService:
    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or LoggingNotifier()
        self.audit = AuditService()

    # ---------------------------
    # READS
    # ---------------------------

    def get_by_code(self, db: Session, code: str) -> InvitationPreview:
        """
        Lookup by the single-use code. The code itself is the credential, so
        no membership check happens here.
        """
        invitation = db.execute(select(Invitation).where(Invitation.code == code)).scalar_one_or_none()
        if not invitation:
            raise NotFoundError("Invitation not found.")
        contract = db.get(Contract, invitation.contract_id)
        if not contract:
            raise NotFoundError("Invitation not found.")
        return InvitationPreview(
            invitation=invitation,
            contract=contract,
            sender=db.get(User, invitation.sender_id),
            expired=(
                invitation.status == InvitationStatus.expired.value
                or (invitation.status == InvitationStatus.pending.value and is_expired(invitation))
            ),
        )

    def list_for_email(self, db: Session, email: str) -> List[Invitation]:
        """Pending, unexpired invitations addressed to this email."""
        rows = db.execute(
            select(Invitation)
            .where(
                Invitation.recipient_email == (email or "").strip().lower(),
                Invitation.status == InvitationStatus.pending.value,
            )
            .order_by(Invitation.created_at.desc())
        ).scalars().all()
        now = now_utc()
        return [inv for inv in rows if not is_expired(inv, now)]

    def pending_count(self, db: Session, contract_id: uuid.UUID) -> int:
        """Pending, unexpired invitations still blocking activation."""
        rows = db.execute(
            select(Invitation).where(
                Invitation.contract_id == contract_id,
                Invitation.status == InvitationStatus.pending.value,
            )
        ).scalars().all()
        now = now_utc()
        return sum(1 for inv in rows if not is_expired(inv, now))

    # ---------------------------
    # MUTATIONS
    # ---------------------------

    def accept_invitation(self, db: Session, *, code: str, actor_id: uuid.UUID) -> Collaborator:
        """
        pending -> accepted exactly once, producing one recipient collaborator or
        binding to the one the actor already has.

        A pending invitation past its expiry is marked expired in its own
        transaction and the accept fails with ConflictError.
        """
        if self._expire_if_stale(db, code=code, actor_id=actor_id):
            raise ConflictError("This invitation has expired.")

        with unit_of_work(db):
            invitation = db.execute(
                select(Invitation)
                .where(Invitation.code == code)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if not invitation:
                raise NotFoundError("Invitation not found.")
            if invitation.status == InvitationStatus.accepted.value:
                raise ConflictError("This invitation has already been accepted.")
            if invitation.status == InvitationStatus.expired.value:
                raise ConflictError("This invitation has expired.")

            contract = lock_contract(db, invitation.contract_id)
            assert_not_terminal(contract)
            if contract.owner_id == actor_id:
                raise ValidationError("Cannot accept an invitation to your own contract.")

            collaborators = load_collaborators(db, contract.id, for_update=True)
            existing = find_collaborator(collaborators, actor_id)
            if existing is not None:
                # already joined through a direct share; the invitation binds to that row
                bind_invitation(invitation, actor_id)
                self.audit.record(
                    db,
                    actor_id=actor_id,
                    contract_id=contract.id,
                    action=AuditAction.INVITATION_ACCEPTED,
                    payload_summary={
                        "invitation_id": str(invitation.id),
                        "collaborator_id": str(existing.id),
                        "bound_existing": True,
                    },
                )
                return existing

            now = now_utc()
            row = Collaborator(
                contract_id=contract.id,
                user_id=actor_id,
                role=CollaboratorRole.recipient.value,
                status=CollaboratorStatus.pending.value,
            )
            db.add(row)
            invitation.status = InvitationStatus.accepted.value
            invitation.accepted_at = now
            invitation.recipient_user_id = actor_id
            contract.updated_at = now
            db.flush()

            self.audit.record(
                db,
                actor_id=actor_id,
                contract_id=contract.id,
                action=AuditAction.INVITATION_ACCEPTED,
                payload_summary={"invitation_id": str(invitation.id), "collaborator_id": str(row.id)},
            )
            event = NotificationEvent(
                kind=NotificationKind.invitation_accepted,
                contract_id=contract.id,
                recipients=(invitation.sender_id,),
                message="Your invitation was accepted.",
                actor_id=actor_id,
            )

        logger.info(
            "invitation accepted",
            extra={"contract_id": str(contract.id), "invitation_id": str(invitation.id), "actor_id": str(actor_id)},
        )
        dispatch(self.notifier, [event])
        return row

    def _expire_if_stale(self, db: Session, *, code: str, actor_id: uuid.UUID) -> bool:
        with unit_of_work(db):
            invitation = db.execute(
                select(Invitation)
                .where(Invitation.code == code)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if (
                invitation is None
                or invitation.status != InvitationStatus.pending.value
                or not is_expired(invitation)
            ):
                return False

            invitation.status = InvitationStatus.expired.value
            self.audit.record(
                db,
                actor_id=actor_id,
                contract_id=invitation.contract_id,
                action=AuditAction.INVITATION_EXPIRED,
                payload_summary={"invitation_id": str(invitation.id)},
            )
        logger.info("invitation expired", extra={"invitation_id": str(invitation.id)})
        return True
