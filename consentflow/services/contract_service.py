# consentflow/services/contract_service.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from consentflow.core.config import get_settings
from consentflow.core.errors import ConflictError, NotFoundError, ValidationError
from consentflow.core.security import new_invitation_code
from consentflow.core.timeutil import as_utc, now_utc
from consentflow.db.unit_of_work import unit_of_work
from consentflow.models.collaborator import Collaborator
from consentflow.models.contract import Contract
from consentflow.models.enums import (
    CollaboratorRole,
    CollaboratorStatus,
    ContractStatus,
    InvitationStatus,
    NotificationKind,
)
from consentflow.models.invitation import Invitation
from consentflow.models.user import User
from consentflow.policies.rbac import can_view, find_collaborator, require_collaborator, require_owner
from consentflow.services.audit_service import AuditAction, AuditService
from consentflow.services.notification_service import (
    LoggingNotifier,
    NotificationEvent,
    Notifier,
    dispatch,
)
from consentflow.services.validation import (
    can_activate_or_share,
    can_persist_draft,
    normalize_parties,
    parse_acts,
    require_reason,
    validate_duration,
    validate_method,
)

logger = logging.getLogger(__name__)

SHAREABLE_STATES = (ContractStatus.draft.value, ContractStatus.pending_approval.value)
REVIEWABLE_ROW_STATES = (CollaboratorStatus.pending.value, CollaboratorStatus.reviewing.value)

# fields a draft update may touch
DRAFT_FIELDS = (
    "university_id",
    "state_code",
    "encounter_type",
    "parties",
    "intimate_acts",
    "start_time",
    "duration_minutes",
    "end_time",
    "method",
    "artifacts",
    "contract_text",
    "is_collaborative",
)


# ─────────────────────────────────────────────
# ROW LOCKS (shared with amendment / confirmation services)
# ─────────────────────────────────────────────

def lock_contract(db: Session, contract_id: uuid.UUID) -> Contract:
    """
    Lock the contract row (FOR UPDATE). Every mutation touching a contract
    takes this lock first, which serializes all transitions per contract.
    """
    contract = db.execute(
        select(Contract)
        .where(Contract.id == contract_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not contract:
        raise NotFoundError("Contract not found.")
    return contract


def load_collaborators(db: Session, contract_id: uuid.UUID, *, for_update: bool = False) -> List[Collaborator]:
    stmt = (
        select(Collaborator)
        .where(Collaborator.contract_id == contract_id)
        .order_by(Collaborator.created_at)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return list(db.execute(stmt).scalars().all())


def assert_not_terminal(contract: Contract) -> None:
    if contract.is_terminal:
        raise ConflictError(f"Contract is already {contract.status}.")


def touch(contract: Contract, actor_id: uuid.UUID) -> None:
    contract.last_edited_by = actor_id
    contract.updated_at = now_utc()


def has_method_commitment(contract: Contract) -> bool:
    return bool(contract.method) and bool(contract.artifacts)


def other_parties(collaborators: Iterable[Collaborator], actor_id: uuid.UUID) -> tuple:
    return tuple(c.user_id for c in collaborators if c.user_id != actor_id)


def bind_invitation(invitation: Invitation, user_id: uuid.UUID) -> None:
    """Marks a pending invitation fulfilled by a collaborator row that already exists."""
    invitation.status = InvitationStatus.accepted.value
    invitation.recipient_user_id = user_id
    invitation.accepted_at = now_utc()


@dataclass
class ShareResult:
    contract: Contract
    collaborators: List[Collaborator] = field(default_factory=list)
    invitations: List[Invitation] = field(default_factory=list)
    bound_invitations: List[Invitation] = field(default_factory=list)


class ContractService:
    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or LoggingNotifier()
        self.audit = AuditService()

    # ---------------------------
    # READS
    # ---------------------------

    def get_contract(self, db: Session, contract_id: uuid.UUID, actor_id: uuid.UUID) -> Contract:
        """
        Owner or collaborator only. Anyone else gets the same 404 as a missing
        contract so existence is not leaked.
        """
        contract = db.get(Contract, contract_id)
        if not contract:
            raise NotFoundError("Contract not found.")
        if not can_view(contract, load_collaborators(db, contract_id), actor_id):
            raise NotFoundError("Contract not found.")
        return contract

    def list_contracts(self, db: Session, user_id: uuid.UUID) -> List[Contract]:
        shared_ids = select(Collaborator.contract_id).where(Collaborator.user_id == user_id)
        return list(
            db.execute(
                select(Contract)
                .where(or_(Contract.owner_id == user_id, Contract.id.in_(shared_ids)))
                .order_by(Contract.created_at.desc())
            ).scalars().all()
        )

    def list_drafts(self, db: Session, user_id: uuid.UUID) -> List[Contract]:
        return list(
            db.execute(
                select(Contract)
                .where(Contract.owner_id == user_id, Contract.status == ContractStatus.draft.value)
                .order_by(Contract.updated_at.desc())
            ).scalars().all()
        )

    def list_shared(self, db: Session, user_id: uuid.UUID) -> List[Contract]:
        shared_ids = select(Collaborator.contract_id).where(
            Collaborator.user_id == user_id,
            Collaborator.role == CollaboratorRole.recipient.value,
        )
        return list(
            db.execute(
                select(Contract)
                .where(Contract.id.in_(shared_ids), Contract.owner_id != user_id)
                .order_by(Contract.created_at.desc())
            ).scalars().all()
        )

    def list_collaborators(self, db: Session, contract_id: uuid.UUID, actor_id: uuid.UUID) -> List[Collaborator]:
        self.get_contract(db, contract_id, actor_id)
        return load_collaborators(db, contract_id)

    # ---------------------------
    # CREATE / DRAFT EDITS
    # ---------------------------

    def create_contract(self, db: Session, *, owner_id: uuid.UUID, payload) -> Contract:
        """
        Rules:
        - encounter type must be set (can_persist_draft)
        - every non-empty party must be a valid identifier
        - duration > 0 when present, end = start + duration
        Produces Contract(draft) + the initiator collaborator row.
        """
        if not can_persist_draft(payload):
            raise ValidationError("Encounter type is required.")

        parties = normalize_parties(payload.parties)
        acts = parse_acts(payload.intimate_acts)
        start, duration, end = validate_duration(payload.start_time, payload.duration_minutes, payload.end_time)
        method = validate_method(payload.method)
        collaborative = bool(payload.is_collaborative)

        with unit_of_work(db):
            contract = Contract(
                owner_id=owner_id,
                university_id=payload.university_id,
                state_code=payload.state_code,
                encounter_type=payload.encounter_type.strip(),
                parties=parties,
                intimate_acts=acts,
                start_time=start,
                duration_minutes=duration,
                end_time=end,
                method=method,
                artifacts=dict(payload.artifacts or {}),
                contract_text=payload.contract_text,
                status=ContractStatus.draft.value,
                is_collaborative=collaborative,
                last_edited_by=owner_id,
            )
            db.add(contract)
            db.flush()  # get id

            # non-collaborative contracts skip peer review entirely
            db.add(
                Collaborator(
                    contract_id=contract.id,
                    user_id=owner_id,
                    role=CollaboratorRole.initiator.value,
                    status=(
                        CollaboratorStatus.pending.value
                        if collaborative
                        else CollaboratorStatus.approved.value
                    ),
                    approved_at=None if collaborative else now_utc(),
                )
            )
            self.audit.record(
                db,
                actor_id=owner_id,
                contract_id=contract.id,
                action=AuditAction.CONTRACT_CREATED,
                payload_summary={
                    "encounter_type": contract.encounter_type,
                    "method": method,
                    "party_count": len(parties),
                    "is_collaborative": collaborative,
                },
            )

        logger.info("contract created", extra={"contract_id": str(contract.id), "actor_id": str(owner_id)})
        return contract

    def update_draft(self, db: Session, *, contract_id: uuid.UUID, actor_id: uuid.UUID, changes: Dict[str, Any]) -> Contract:
        unknown = set(changes) - set(DRAFT_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {sorted(unknown)}")

        with unit_of_work(db):
            contract = lock_contract(db, contract_id)
            require_owner(contract, actor_id)
            if contract.status != ContractStatus.draft.value:
                raise ConflictError("Only drafts can be edited; use an amendment instead.")

            if "encounter_type" in changes:
                if not (changes["encounter_type"] or "").strip():
                    raise ValidationError("Encounter type is required.")
                contract.encounter_type = changes["encounter_type"].strip()
            if "parties" in changes:
                contract.parties = normalize_parties(changes["parties"])
            if "intimate_acts" in changes:
                contract.intimate_acts = parse_acts(changes["intimate_acts"])
            if "method" in changes:
                contract.method = validate_method(changes["method"])
            if "artifacts" in changes:
                contract.artifacts = dict(changes["artifacts"] or {})
            for name in ("university_id", "state_code", "contract_text"):
                if name in changes:
                    setattr(contract, name, changes[name])
            if "is_collaborative" in changes:
                self._set_collaboration_mode(db, contract, bool(changes["is_collaborative"]))

            if {"start_time", "duration_minutes", "end_time"} & set(changes):
                start = changes.get("start_time", contract.start_time)
                duration = changes.get("duration_minutes", contract.duration_minutes)
                # a new start/duration recomputes the end unless one is supplied
                end = changes.get("end_time")
                contract.start_time, contract.duration_minutes, contract.end_time = validate_duration(
                    start, duration, end
                )

            touch(contract, actor_id)
            self.audit.record(
                db,
                actor_id=actor_id,
                contract_id=contract.id,
                action=AuditAction.DRAFT_UPDATED,
                payload_summary={"fields": sorted(changes)},
            )
        return contract

    def _set_collaboration_mode(self, db: Session, contract: Contract, collaborative: bool) -> None:
        if contract.is_collaborative == collaborative:
            return
        initiator = require_collaborator(load_collaborators(db, contract.id, for_update=True), contract.owner_id)
        contract.is_collaborative = collaborative
        if collaborative:
            initiator.status = CollaboratorStatus.pending.value
            initiator.approved_at = None
        else:
            initiator.status = CollaboratorStatus.approved.value
            initiator.approved_at = now_utc()

    def delete_draft(self, db: Session, *, contract_id: uuid.UUID, actor_id: uuid.UUID) -> None:
        with unit_of_work(db):
            contract = lock_contract(db, contract_id)
            require_owner(contract, actor_id)
            if contract.status != ContractStatus.draft.value:
                raise ConflictError("Only drafts can be deleted.")
            self.audit.record(
                db,
                actor_id=actor_id,
                contract_id=contract.id,
                action=AuditAction.DRAFT_DELETED,
                payload_summary={},
            )
            db.delete(contract)

    # ---------------------------
    # SHARE / INVITE
    # ---------------------------

    def share_contract(self, db: Session, *, contract_id: uuid.UUID, actor_id: uuid.UUID, targets) -> ShareResult:
        """
        Rules:
        - owner only, contract in draft or pending_approval
        - contract data must satisfy can_activate_or_share
        - known users become recipient collaborators directly
        - unknown emails get a single-use invitation
        All targets are applied together or not at all.
        """
        targets = list(targets or [])
        if not targets:
            raise ValidationError("At least one recipient is required.")

        settings = get_settings()
        events: List[NotificationEvent] = []

        with unit_of_work(db):
            contract = lock_contract(db, contract_id)
            require_owner(contract, actor_id)
            if contract.status not in SHAREABLE_STATES:
                raise ConflictError(f"Cannot share a contract that is {contract.status}.")
            if not can_activate_or_share(contract):
                raise ValidationError(
                    "Contract needs an encounter type, a documentation method and at least two valid parties before it can be shared."
                )

            collaborators = load_collaborators(db, contract.id, for_update=True)
            pending_by_email: Dict[str, List[Invitation]] = {}
            for inv in self._pending_invitations(db, contract.id):
                pending_by_email.setdefault(inv.recipient_email, []).append(inv)
            pending_emails = set(pending_by_email)

            result = ShareResult(contract=contract)
            seen_users = set()
            seen_emails = set()

            for target in targets:
                user = self._resolve_target_user(db, target)
                if user is not None:
                    if user.id == actor_id:
                        raise ValidationError("Cannot invite yourself.")
                    if user.id in seen_users or find_collaborator(collaborators, user.id):
                        raise ConflictError("User is already a collaborator on this contract.")
                    seen_users.add(user.id)
                    row = Collaborator(
                        contract_id=contract.id,
                        user_id=user.id,
                        role=CollaboratorRole.recipient.value,
                        status=CollaboratorStatus.pending.value,
                    )
                    db.add(row)
                    result.collaborators.append(row)
                    # an earlier invitation to this person is fulfilled by the direct add
                    for inv in pending_by_email.pop((user.email or "").strip().lower(), []):
                        bind_invitation(inv, user.id)
                        result.bound_invitations.append(inv)
                    continue

                email = self._normalize_email(target.email)
                if email in seen_emails or email in pending_emails:
                    raise ConflictError("This email has already been invited.")
                seen_emails.add(email)
                invitation = Invitation(
                    contract_id=contract.id,
                    sender_id=actor_id,
                    recipient_email=email,
                    code=new_invitation_code(),
                    status=InvitationStatus.pending.value,
                    expires_at=now_utc() + timedelta(days=settings.invitation_ttl_days),
                )
                db.add(invitation)
                result.invitations.append(invitation)

            contract.is_collaborative = True
            contract.status = ContractStatus.pending_approval.value
            touch(contract, actor_id)
            db.flush()

            self.audit.record(
                db,
                actor_id=actor_id,
                contract_id=contract.id,
                action=AuditAction.CONTRACT_SHARED,
                payload_summary={
                    "collaborators_added": len(result.collaborators),
                    "invitations_created": len(result.invitations),
                    "invitations_bound": len(result.bound_invitations),
                },
            )
            events.append(
                NotificationEvent(
                    kind=NotificationKind.contract_shared,
                    contract_id=contract.id,
                    recipients=tuple(c.user_id for c in result.collaborators),
                    message="A consent contract was shared with you for review.",
                    actor_id=actor_id,
                )
            )

        for invitation in result.invitations:
            logger.info(
                "invitation created",
                extra={"contract_id": str(contract.id), "invitation_id": str(invitation.id)},
            )
        dispatch(self.notifier, events)
        return result

    def _pending_invitations(self, db: Session, contract_id: uuid.UUID) -> List[Invitation]:
        now = now_utc()
        rows = db.execute(
            select(Invitation).where(
                Invitation.contract_id == contract_id,
                Invitation.status == InvitationStatus.pending.value,
            )
        ).scalars().all()
        return [inv for inv in rows if as_utc(inv.expires_at) > now]

    @staticmethod
    def _normalize_email(email: Optional[str]) -> str:
        value = (email or "").strip().lower()
        if not value or "@" not in value or value.startswith("@"):
            raise ValidationError("A valid recipient email is required.")
        return value

    def _resolve_target_user(self, db: Session, target) -> Optional[User]:
        user_id = getattr(target, "user_id", None)
        email = getattr(target, "email", None)
        if user_id is None and not email:
            raise ValidationError("Either a user id or an email must be provided.")
        if user_id is not None:
            user = db.get(User, user_id)
            if not user or not user.is_active:
                raise NotFoundError("Recipient user not found.")
            return user
        return db.execute(
            select(User).where(User.email == self._normalize_email(email), User.is_active.is_(True))
        ).scalar_one_or_none()

    # ---------------------------
    # REVIEW / APPROVE / REJECT
    # ---------------------------

    def review_contract(self, db: Session, *, contract_id: uuid.UUID, actor_id: uuid.UUID) -> Collaborator:
        """Idempotent: repeated calls only refresh last_viewed_at."""
        events: List[NotificationEvent] = []
        with unit_of_work(db):
            contract = lock_contract(db, contract_id)
            assert_not_terminal(contract)
            collaborators = load_collaborators(db, contract.id, for_update=True)
            row = require_collaborator(collaborators, actor_id)

            row.last_viewed_at = now_utc()
            if row.status == CollaboratorStatus.pending.value:
                row.status = CollaboratorStatus.reviewing.value
                self.audit.record(
                    db,
                    actor_id=actor_id,
                    contract_id=contract.id,
                    action=AuditAction.CONTRACT_REVIEWED,
                    payload_summary={"collaborator_id": str(row.id)},
                )
                events.append(
                    NotificationEvent(
                        kind=NotificationKind.contract_reviewed,
                        contract_id=contract.id,
                        recipients=tuple(u for u in (contract.owner_id,) if u != actor_id),
                        message="A party opened your contract for review.",
                        actor_id=actor_id,
                    )
                )
        dispatch(self.notifier, events)
        return row

    def approve_contract(self, db: Session, *, contract_id: uuid.UUID, actor_id: uuid.UUID) -> Collaborator:
        """
        Approval is per-row and never activates the contract; activation is
        the confirmation gate's job.
        """
        with unit_of_work(db):
            contract = lock_contract(db, contract_id)
            assert_not_terminal(contract)
            if contract.status != ContractStatus.pending_approval.value:
                raise ConflictError("Contract has not been shared for approval.")
            collaborators = load_collaborators(db, contract.id, for_update=True)
            row = require_collaborator(collaborators, actor_id)
            if row.status not in REVIEWABLE_ROW_STATES:
                raise ConflictError(f"You have already {row.status} this contract.")

            now = now_utc()
            row.status = CollaboratorStatus.approved.value
            row.approved_at = now
            row.last_viewed_at = row.last_viewed_at or now
            touch(contract, actor_id)
            self.audit.record(
                db,
                actor_id=actor_id,
                contract_id=contract.id,
                action=AuditAction.CONTRACT_APPROVED,
                payload_summary={"collaborator_id": str(row.id)},
            )
            event = NotificationEvent(
                kind=NotificationKind.contract_approved,
                contract_id=contract.id,
                recipients=other_parties(collaborators, actor_id),
                message="A party approved the contract.",
                actor_id=actor_id,
            )

        logger.info("contract approved", extra={"contract_id": str(contract_id), "actor_id": str(actor_id)})
        dispatch(self.notifier, [event])
        return row

    def reject_contract(
        self,
        db: Session,
        *,
        contract_id: uuid.UUID,
        actor_id: uuid.UUID,
        reason: Optional[str],
    ) -> Contract:
        """
        The first rejection is terminal for the whole contract.
        """
        reason = require_reason(reason)
        with unit_of_work(db):
            contract = lock_contract(db, contract_id)
            assert_not_terminal(contract)
            collaborators = load_collaborators(db, contract.id, for_update=True)
            row = require_collaborator(collaborators, actor_id)
            if row.status == CollaboratorStatus.rejected.value:
                raise ConflictError("You have already rejected this contract.")

            now = now_utc()
            row.status = CollaboratorStatus.rejected.value
            row.rejected_at = now
            row.rejection_reason = reason
            contract.status = ContractStatus.rejected.value
            touch(contract, actor_id)
            self.audit.record(
                db,
                actor_id=actor_id,
                contract_id=contract.id,
                action=AuditAction.CONTRACT_REJECTED,
                payload_summary={"collaborator_id": str(row.id)},
            )
            event = NotificationEvent(
                kind=NotificationKind.contract_rejected,
                contract_id=contract.id,
                recipients=other_parties(collaborators, actor_id),
                message="A party rejected the contract.",
                actor_id=actor_id,
            )

        logger.info("contract rejected", extra={"contract_id": str(contract_id), "actor_id": str(actor_id)})
        dispatch(self.notifier, [event])
        return contract
