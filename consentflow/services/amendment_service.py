# consentflow/services/amendment_service.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from consentflow.core.config import get_settings
from consentflow.core.errors import (
    AuthorizationError,
    ConflictError,
    ConsentError,
    NotFoundError,
    ValidationError,
)
from consentflow.core.timeutil import as_utc, now_utc
from consentflow.db.unit_of_work import unit_of_work
from consentflow.models.amendment import Amendment
from consentflow.models.collaborator import Collaborator
from consentflow.models.contract import Contract
from consentflow.models.enums import (
    ACT_AMENDMENTS,
    AmendmentStatus,
    AmendmentType,
    ContractStatus,
    NotificationKind,
)
from consentflow.policies.rbac import require_collaborator
from consentflow.services.audit_service import AuditAction, AuditService
from consentflow.services.contract_service import (
    ContractService,
    load_collaborators,
    lock_contract,
    other_parties,
    touch,
)
from consentflow.services.notification_service import LoggingNotifier, NotificationEvent, Notifier, dispatch
from consentflow.services.validation import MIN_PARTIES, ActDecision, require_reason, valid_parties

logger = logging.getLogger(__name__)

AMENDABLE_STATES = (ContractStatus.pending_approval.value, ContractStatus.active.value)


# ─────────────────────────────────────────────
# CHANGE VALIDATION (pure, re-run on apply)
# ─────────────────────────────────────────────

def parse_amendment_type(value: Any) -> AmendmentType:
    try:
        return AmendmentType(value)
    except ValueError:
        raise ValidationError(f"Unknown amendment type: {value}.")


def _parse_end_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            pass
    raise ValidationError("new_end_time must be an ISO-8601 timestamp.")


def _act_names(changes: Dict[str, Any]) -> List[str]:
    names = []
    for raw in changes.get("acts") or []:
        name = (raw or "").strip() if isinstance(raw, str) else ""
        if name and name not in names:
            names.append(name)
    if not names:
        raise ValidationError("An acts amendment must name at least one act.")
    allowed = get_settings().amendable_acts
    unknown = [n for n in names if allowed and n not in allowed]
    if unknown:
        raise ValidationError("Invalid act specified.", details={"invalidActs": unknown})
    return names


def check_act_change(contract: Contract, kind: AmendmentType, names: List[str]) -> None:
    acts = contract.intimate_acts or {}
    if kind == AmendmentType.remove_acts:
        not_yes = [n for n in names if acts.get(n) != ActDecision.yes.value]
        if not_yes:
            raise ValidationError(
                "Only acts currently consented to can be removed.",
                details={"acts": not_yes},
            )
    else:
        already = [n for n in names if acts.get(n) == ActDecision.yes.value]
        if already:
            raise ValidationError(
                "Acts are already consented to.",
                details={"acts": already},
            )


def check_duration_change(contract: Contract, kind: AmendmentType, new_end: datetime) -> Tuple[datetime, int]:
    """
    Returns (end, duration) with the end snapped to whole minutes from start,
    so end == start + duration keeps holding after the change.
    """
    start = as_utc(contract.start_time)
    current_end = as_utc(contract.end_time)
    if start is None or current_end is None:
        raise ValidationError("Contract has no duration to amend.")

    minutes = int((new_end - start).total_seconds() // 60)
    if minutes <= 0:
        raise ValidationError("Amended duration must be positive.")
    end = start + timedelta(minutes=minutes)

    if end <= now_utc():
        raise ValidationError("New end time must be in the future.")
    if kind == AmendmentType.extend_duration and end <= current_end:
        raise ValidationError("An extension must end later than the current end time.")
    if kind == AmendmentType.shorten_duration and end >= current_end:
        raise ValidationError("A shortened contract must end earlier than the current end time.")
    return end, minutes


def validate_changes(contract: Contract, kind: AmendmentType, changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Returns the canonical changes payload stored on the amendment.
    """
    if len(valid_parties(contract.parties or [])) < MIN_PARTIES:
        raise ValidationError("Contract must retain at least two parties.")

    if kind in ACT_AMENDMENTS:
        names = _act_names(changes or {})
        check_act_change(contract, kind, names)
        return {"acts": names}

    if "new_end_time" not in (changes or {}):
        raise ValidationError("A duration amendment requires new_end_time.")
    end, minutes = check_duration_change(contract, kind, _parse_end_time(changes["new_end_time"]))
    return {"new_end_time": end.isoformat(), "new_duration_minutes": minutes}


class AmendmentService:
    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or LoggingNotifier()
        self.audit = AuditService()

    # ---------------------------
    # READS
    # ---------------------------

    def list_amendments(self, db: Session, contract_id: uuid.UUID, actor_id: uuid.UUID) -> List[Amendment]:
        ContractService(notifier=self.notifier).get_contract(db, contract_id, actor_id)
        return list(
            db.execute(
                select(Amendment)
                .where(Amendment.contract_id == contract_id)
                .order_by(Amendment.created_at)
            ).scalars().all()
        )

    # ---------------------------
    # MUTATIONS
    # ---------------------------

    def propose_amendment(
        self,
        db: Session,
        *,
        contract_id: uuid.UUID,
        actor_id: uuid.UUID,
        amendment_type: Any,
        changes: Dict[str, Any],
        reason: Optional[str],
    ) -> Amendment:
        """
        Rules:
        - reason is mandatory
        - contract is pending_approval or active, actor is a collaborator
        - one pending amendment per contract, capped approved amendments
        - the change must be concrete and keep a positive duration
        Nothing is persisted when a rule fails.
        """
        reason = require_reason(reason)
        kind = parse_amendment_type(amendment_type)
        settings = get_settings()
        events: List[NotificationEvent] = []

        with unit_of_work(db):
            contract = lock_contract(db, contract_id)
            if contract.status not in AMENDABLE_STATES:
                raise ConflictError(f"Cannot amend a contract that is {contract.status}.")
            collaborators = load_collaborators(db, contract.id, for_update=True)
            require_collaborator(collaborators, actor_id)

            if contract.approved_amendment_count >= settings.max_approved_amendments:
                raise ConflictError("This contract has reached its amendment limit.")
            if self._pending_for_contract(db, contract.id) is not None:
                raise ConflictError("Another amendment is already awaiting approval.")

            canonical = validate_changes(contract, kind, changes)

            amendment = Amendment(
                contract_id=contract.id,
                requested_by=actor_id,
                amendment_type=kind.value,
                changes=canonical,
                reason=reason,
                status=AmendmentStatus.pending.value,
                approvals=[str(actor_id)],
            )
            db.add(amendment)
            db.flush()

            self.audit.record(
                db,
                actor_id=actor_id,
                contract_id=contract.id,
                action=AuditAction.AMENDMENT_PROPOSED,
                payload_summary={"amendment_id": str(amendment.id), "type": kind.value},
            )

            if self._covers_everyone(amendment, collaborators):
                change = self._recheck(contract, amendment)
                events.extend(self._apply(db, contract, amendment, collaborators, actor_id, change))
            else:
                events.append(
                    NotificationEvent(
                        kind=NotificationKind.amendment_requested,
                        contract_id=contract.id,
                        recipients=other_parties(collaborators, actor_id),
                        message="A change to the contract was proposed and needs your approval.",
                        actor_id=actor_id,
                    )
                )

        logger.info(
            "amendment proposed",
            extra={"contract_id": str(contract_id), "amendment_id": str(amendment.id), "type": kind.value},
        )
        dispatch(self.notifier, events)
        return amendment

    def approve_amendment(self, db: Session, *, amendment_id: uuid.UUID, actor_id: uuid.UUID) -> Amendment:
        """
        Records the approval and applies the amendment once every collaborator
        has approved. An amendment that no longer fits the contract at that
        point is discarded (committed) and the re-check error is raised.
        """
        events: List[NotificationEvent] = []
        stale: Optional[ConsentError] = None

        with unit_of_work(db):
            contract, amendment = self._lock_pending(db, amendment_id)
            collaborators = load_collaborators(db, contract.id, for_update=True)
            require_collaborator(collaborators, actor_id)

            if amendment.requested_by == actor_id:
                raise AuthorizationError("You cannot approve your own amendment.")
            if str(actor_id) in (amendment.approvals or []):
                raise ConflictError("You have already approved this amendment.")

            # reassign: JSON columns do not track in-place mutation
            amendment.approvals = list(amendment.approvals or []) + [str(actor_id)]
            self.audit.record(
                db,
                actor_id=actor_id,
                contract_id=contract.id,
                action=AuditAction.AMENDMENT_APPROVAL,
                payload_summary={"amendment_id": str(amendment.id), "approvals": len(amendment.approvals)},
            )

            if self._covers_everyone(amendment, collaborators):
                try:
                    change = self._recheck(contract, amendment)
                except (ValidationError, ConflictError) as exc:
                    stale = exc
                    events.append(self._discard(db, contract, amendment, collaborators, actor_id, exc.message))
                else:
                    events.extend(self._apply(db, contract, amendment, collaborators, actor_id, change))

        logger.info(
            "amendment approval",
            extra={"amendment_id": str(amendment_id), "actor_id": str(actor_id), "status": amendment.status},
        )
        dispatch(self.notifier, events)
        if stale is not None:
            raise stale
        return amendment

    def reject_amendment(
        self,
        db: Session,
        *,
        amendment_id: uuid.UUID,
        actor_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> Amendment:
        """Discards the proposal. The contract is left untouched."""
        with unit_of_work(db):
            contract, amendment = self._lock_pending(db, amendment_id)
            collaborators = load_collaborators(db, contract.id, for_update=True)
            require_collaborator(collaborators, actor_id)

            amendment.status = AmendmentStatus.rejected.value
            amendment.rejected_by = actor_id
            amendment.rejection_reason = (reason or "").strip() or None
            amendment.resolved_at = now_utc()
            self.audit.record(
                db,
                actor_id=actor_id,
                contract_id=contract.id,
                action=AuditAction.AMENDMENT_REJECTED,
                payload_summary={"amendment_id": str(amendment.id)},
            )
            event = NotificationEvent(
                kind=NotificationKind.amendment_rejected,
                contract_id=contract.id,
                recipients=other_parties(collaborators, actor_id),
                message="A proposed change to the contract was rejected.",
                actor_id=actor_id,
            )

        dispatch(self.notifier, [event])
        return amendment

    # ---------------------------
    # INTERNALS
    # ---------------------------

    def _pending_for_contract(self, db: Session, contract_id: uuid.UUID) -> Optional[Amendment]:
        return db.execute(
            select(Amendment).where(
                Amendment.contract_id == contract_id,
                Amendment.status == AmendmentStatus.pending.value,
            )
        ).scalars().first()

    def _lock_pending(self, db: Session, amendment_id: uuid.UUID) -> Tuple[Contract, Amendment]:
        # contract lock first, same order as every other transition
        found = db.get(Amendment, amendment_id)
        if not found:
            raise NotFoundError("Amendment not found.")
        contract = lock_contract(db, found.contract_id)
        amendment = db.execute(
            select(Amendment)
            .where(Amendment.id == amendment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        if amendment.status != AmendmentStatus.pending.value:
            raise ConflictError(f"Amendment is already {amendment.status}.")
        if contract.status == ContractStatus.rejected.value:
            raise ConflictError("Contract was rejected.")
        return contract, amendment

    @staticmethod
    def _covers_everyone(amendment: Amendment, collaborators: List[Collaborator]) -> bool:
        approvals = set(amendment.approvals or [])
        return all(str(c.user_id) in approvals for c in collaborators)

    def _recheck(self, contract: Contract, amendment: Amendment) -> Tuple[AmendmentType, Any]:
        """Re-validates a fully approved amendment against the current contract."""
        settings = get_settings()
        if contract.approved_amendment_count >= settings.max_approved_amendments:
            raise ConflictError("This contract has reached its amendment limit.")

        kind = AmendmentType(amendment.amendment_type)
        if kind in ACT_AMENDMENTS:
            names = list(amendment.changes.get("acts") or [])
            check_act_change(contract, kind, names)
            return kind, names
        return kind, check_duration_change(contract, kind, _parse_end_time(amendment.changes["new_end_time"]))

    def _discard(
        self,
        db: Session,
        contract: Contract,
        amendment: Amendment,
        collaborators: List[Collaborator],
        actor_id: uuid.UUID,
        reason: str,
    ) -> NotificationEvent:
        amendment.status = AmendmentStatus.rejected.value
        amendment.rejection_reason = f"No longer applicable: {reason}"[:1000]
        amendment.resolved_at = now_utc()
        self.audit.record(
            db,
            actor_id=actor_id,
            contract_id=contract.id,
            action=AuditAction.AMENDMENT_DISCARDED,
            payload_summary={"amendment_id": str(amendment.id), "reason": reason},
        )
        logger.info(
            "amendment discarded",
            extra={"contract_id": str(contract.id), "amendment_id": str(amendment.id)},
        )
        return NotificationEvent(
            kind=NotificationKind.amendment_rejected,
            contract_id=contract.id,
            recipients=tuple(c.user_id for c in collaborators),
            message="A proposed change could no longer be applied and was discarded.",
            actor_id=actor_id,
        )

    def _apply(
        self,
        db: Session,
        contract: Contract,
        amendment: Amendment,
        collaborators: List[Collaborator],
        actor_id: uuid.UUID,
        change: Tuple[AmendmentType, Any],
    ) -> List[NotificationEvent]:
        """Applies a re-checked amendment and reopens confirmations."""
        kind, value = change
        if kind in ACT_AMENDMENTS:
            names = value
            decision = ActDecision.yes.value if kind == AmendmentType.add_acts else ActDecision.no.value
            acts = dict(contract.intimate_acts or {})
            for name in names:
                acts[name] = decision
            contract.intimate_acts = acts
        else:
            end, minutes = value
            contract.end_time = end
            contract.duration_minutes = minutes

        cleared = 0
        for row in collaborators:
            if row.confirmed_at is not None:
                row.confirmed_at = None
                cleared += 1
        if contract.status == ContractStatus.active.value:
            contract.reconfirming = True

        contract.approved_amendment_count = contract.approved_amendment_count + 1
        touch(contract, actor_id)
        amendment.status = AmendmentStatus.approved.value
        amendment.resolved_at = now_utc()

        self.audit.record(
            db,
            actor_id=actor_id,
            contract_id=contract.id,
            action=AuditAction.AMENDMENT_APPLIED,
            payload_summary={"amendment_id": str(amendment.id), "type": kind.value},
        )
        self.audit.record(
            db,
            actor_id=actor_id,
            contract_id=contract.id,
            action=AuditAction.CONFIRMATIONS_CLEARED,
            payload_summary={"cleared": cleared, "reconfirming": contract.reconfirming},
        )
        logger.info(
            "amendment applied",
            extra={"contract_id": str(contract.id), "amendment_id": str(amendment.id), "cleared": cleared},
        )
        return [
            NotificationEvent(
                kind=NotificationKind.amendment_approved,
                contract_id=contract.id,
                recipients=tuple(c.user_id for c in collaborators),
                message="An amendment was approved. Please confirm the updated contract.",
                actor_id=actor_id,
            )
        ]
