import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from consentflow.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from consentflow.core.timeutil import as_utc, now_utc
from consentflow.models.amendment import Amendment
from consentflow.models.collaborator import Collaborator
from consentflow.models.contract import Contract
from consentflow.models.enums import AmendmentStatus, ContractStatus, NotificationKind
from consentflow.schemas.contracts import ShareTarget
from consentflow.services.amendment_service import AmendmentService
from consentflow.services.confirmation_service import ConfirmationService
from consentflow.services.contract_service import ContractService


def activate(db, contract, *users):
    svc = ConfirmationService()
    result = None
    for u in users:
        result = svc.confirm_consent(db, contract_id=contract.id, actor_id=u.id)
    assert result.contract_status == ContractStatus.active.value
    return db.get(Contract, contract.id)


def confirmations(db, contract_id):
    rows = db.execute(select(Collaborator).where(Collaborator.contract_id == contract_id)).scalars().all()
    return [r.confirmed_at for r in rows]


def amendments(db):
    return db.execute(select(Amendment)).scalars().all()


@pytest.fixture
def active_contract(db, shared_contract):
    contract, alice, bob = shared_contract
    return activate(db, contract, alice, bob), alice, bob


@pytest.fixture
def solo_active(db, make_user, payload):
    alice = make_user("alice")
    c = ContractService().create_contract(db, owner_id=alice.id, payload=payload())
    return activate(db, c, alice), alice


# ---------------------------
# propose
# ---------------------------

def test_approved_amendment_reopens_confirmations(db, active_contract, notifier):
    contract, alice, bob = active_contract
    svc = AmendmentService(notifier=notifier)

    a = svc.propose_amendment(
        db, contract_id=contract.id, actor_id=bob.id,
        amendment_type="add_acts", changes={"acts": ["oral"]}, reason="we talked about it",
    )
    assert a.status == AmendmentStatus.pending.value
    assert a.approvals == [str(bob.id)]
    assert notifier.events[-1].kind == NotificationKind.amendment_requested
    assert notifier.events[-1].recipients == (alice.id,)
    # nothing changes until everyone approves
    assert all(confirmations(db, contract.id))

    a = svc.approve_amendment(db, amendment_id=a.id, actor_id=alice.id)
    assert a.status == AmendmentStatus.approved.value

    db.refresh(contract)
    assert contract.intimate_acts["oral"] == "yes"
    assert contract.status == ContractStatus.active.value
    assert contract.reconfirming is True
    assert contract.approved_amendment_count == 1
    assert confirmations(db, contract.id) == [None, None]
    assert notifier.events[-1].kind == NotificationKind.amendment_approved


def test_reconfirmation_clears_flag_once_everyone_confirms(db, active_contract, notifier):
    contract, alice, bob = active_contract
    a = AmendmentService().propose_amendment(
        db, contract_id=contract.id, actor_id=alice.id,
        amendment_type="remove_acts", changes={"acts": ["kissing"]}, reason="changed my mind",
    )
    AmendmentService().approve_amendment(db, amendment_id=a.id, actor_id=bob.id)

    svc = ConfirmationService(notifier=notifier)
    partial = svc.confirm_consent(db, contract_id=contract.id, actor_id=alice.id)
    assert partial.all_parties_confirmed is False
    assert db.get(Contract, contract.id).reconfirming is True

    done = svc.confirm_consent(db, contract_id=contract.id, actor_id=bob.id)
    assert done.all_parties_confirmed is True
    assert done.contract_status == ContractStatus.active.value
    contract = db.get(Contract, contract.id)
    assert contract.reconfirming is False
    assert contract.intimate_acts["kissing"] == "no"
    assert notifier.events[-1].kind == NotificationKind.all_parties_confirmed


def test_remove_act_that_is_not_yes_is_rejected(db, active_contract):
    contract, alice, _ = active_contract
    with pytest.raises(ValidationError):
        AmendmentService().propose_amendment(
            db, contract_id=contract.id, actor_id=alice.id,
            amendment_type="remove_acts", changes={"acts": ["touching"]}, reason="no",
        )
    assert amendments(db) == []


def test_add_act_already_consented_is_rejected(db, active_contract):
    contract, alice, _ = active_contract
    with pytest.raises(ValidationError):
        AmendmentService().propose_amendment(
            db, contract_id=contract.id, actor_id=alice.id,
            amendment_type="add_acts", changes={"acts": ["kissing"]}, reason="again",
        )


@pytest.mark.parametrize(
    "kind,changes,reason",
    [
        ("add_acts", {"acts": []}, "empty"),
        ("add_acts", {"acts": ["oral"]}, "   "),
        ("teleport", {}, "unknown type"),
        ("extend_duration", {}, "missing end"),
    ],
)
def test_malformed_proposals_persist_nothing(db, active_contract, kind, changes, reason):
    contract, alice, _ = active_contract
    with pytest.raises(ValidationError):
        AmendmentService().propose_amendment(
            db, contract_id=contract.id, actor_id=alice.id,
            amendment_type=kind, changes=changes, reason=reason,
        )
    assert amendments(db) == []


def test_extend_and_shorten_duration(db, solo_active):
    contract, alice = solo_active
    svc = AmendmentService()
    start = as_utc(contract.start_time)
    current_end = as_utc(contract.end_time)

    svc.propose_amendment(
        db, contract_id=contract.id, actor_id=alice.id,
        amendment_type="extend_duration",
        changes={"new_end_time": (current_end + timedelta(hours=1)).isoformat()},
        reason="longer",
    )
    contract = db.get(Contract, contract.id)
    assert contract.duration_minutes == 180
    assert as_utc(contract.end_time) == start + timedelta(minutes=180)

    svc.propose_amendment(
        db, contract_id=contract.id, actor_id=alice.id,
        amendment_type="shorten_duration",
        changes={"new_end_time": start + timedelta(minutes=90)},
        reason="shorter",
    )
    contract = db.get(Contract, contract.id)
    assert contract.duration_minutes == 90


@pytest.mark.parametrize(
    "kind,offset",
    [
        ("extend_duration", timedelta(minutes=-30)),
        ("shorten_duration", timedelta(minutes=30)),
        ("shorten_duration", timedelta(minutes=-500)),
    ],
)
def test_duration_amendment_direction_and_future(db, solo_active, kind, offset):
    contract, alice = solo_active
    new_end = as_utc(contract.end_time) + offset
    with pytest.raises(ValidationError):
        AmendmentService().propose_amendment(
            db, contract_id=contract.id, actor_id=alice.id,
            amendment_type=kind, changes={"new_end_time": new_end.isoformat()}, reason="x",
        )


def test_sole_party_amendment_applies_immediately(db, solo_active):
    contract, alice = solo_active
    a = AmendmentService().propose_amendment(
        db, contract_id=contract.id, actor_id=alice.id,
        amendment_type="add_acts", changes={"acts": ["oral"]}, reason="yes",
    )
    assert a.status == AmendmentStatus.approved.value
    contract = db.get(Contract, contract.id)
    assert contract.reconfirming is True
    assert confirmations(db, contract.id) == [None]


def test_at_most_two_approved_amendments(db, solo_active):
    contract, alice = solo_active
    svc = AmendmentService()
    for act in ("oral", "anal"):
        svc.propose_amendment(
            db, contract_id=contract.id, actor_id=alice.id,
            amendment_type="add_acts", changes={"acts": [act]}, reason="more",
        )
    with pytest.raises(ConflictError):
        svc.propose_amendment(
            db, contract_id=contract.id, actor_id=alice.id,
            amendment_type="add_acts", changes={"acts": ["vaginal"]}, reason="more",
        )


def test_only_one_pending_amendment(db, active_contract):
    contract, alice, bob = active_contract
    svc = AmendmentService()
    svc.propose_amendment(
        db, contract_id=contract.id, actor_id=alice.id,
        amendment_type="add_acts", changes={"acts": ["oral"]}, reason="one",
    )
    with pytest.raises(ConflictError):
        svc.propose_amendment(
            db, contract_id=contract.id, actor_id=bob.id,
            amendment_type="remove_acts", changes={"acts": ["kissing"]}, reason="two",
        )


def test_amend_draft_or_rejected_contract_is_conflict(db, make_user, payload, shared_contract):
    contract, alice, bob = shared_contract
    draft = ContractService().create_contract(db, owner_id=alice.id, payload=payload())
    with pytest.raises(ConflictError):
        AmendmentService().propose_amendment(
            db, contract_id=draft.id, actor_id=alice.id,
            amendment_type="add_acts", changes={"acts": ["oral"]}, reason="x",
        )

    ContractService().reject_contract(db, contract_id=contract.id, actor_id=bob.id, reason="no")
    with pytest.raises(ConflictError):
        AmendmentService().propose_amendment(
            db, contract_id=contract.id, actor_id=alice.id,
            amendment_type="add_acts", changes={"acts": ["oral"]}, reason="x",
        )


def test_stranger_cannot_propose(db, active_contract, make_user):
    contract, _, _ = active_contract
    eve = make_user("eve")
    with pytest.raises(AuthorizationError):
        AmendmentService().propose_amendment(
            db, contract_id=contract.id, actor_id=eve.id,
            amendment_type="add_acts", changes={"acts": ["oral"]}, reason="x",
        )


# ---------------------------
# approve / reject
# ---------------------------

def test_approval_rules_with_three_parties(db, make_user, payload):
    alice, bob, carol = make_user("alice"), make_user("bob"), make_user("carol")
    csvc = ContractService()
    c = csvc.create_contract(
        db, owner_id=alice.id,
        payload=payload(parties=["@alice", "@bob", "@carol"], is_collaborative=True),
    )
    csvc.share_contract(
        db, contract_id=c.id, actor_id=alice.id,
        targets=[ShareTarget(user_id=bob.id), ShareTarget(user_id=carol.id)],
    )
    svc = AmendmentService()
    a = svc.propose_amendment(
        db, contract_id=c.id, actor_id=bob.id,
        amendment_type="add_acts", changes={"acts": ["oral"]}, reason="x",
    )

    with pytest.raises(AuthorizationError):
        svc.approve_amendment(db, amendment_id=a.id, actor_id=bob.id)

    a = svc.approve_amendment(db, amendment_id=a.id, actor_id=alice.id)
    assert a.status == AmendmentStatus.pending.value
    with pytest.raises(ConflictError):
        svc.approve_amendment(db, amendment_id=a.id, actor_id=alice.id)

    a = svc.approve_amendment(db, amendment_id=a.id, actor_id=carol.id)
    assert a.status == AmendmentStatus.approved.value
    c = db.get(Contract, c.id)
    # not active yet, so nothing to re-confirm
    assert c.status == ContractStatus.pending_approval.value
    assert c.reconfirming is False


def test_reject_amendment_leaves_contract_untouched(db, active_contract, notifier):
    contract, alice, bob = active_contract
    svc = AmendmentService(notifier=notifier)
    a = svc.propose_amendment(
        db, contract_id=contract.id, actor_id=alice.id,
        amendment_type="add_acts", changes={"acts": ["oral"]}, reason="x",
    )
    a = svc.reject_amendment(db, amendment_id=a.id, actor_id=bob.id, reason="not now")

    assert a.status == AmendmentStatus.rejected.value
    assert a.rejected_by == bob.id
    contract = db.get(Contract, contract.id)
    assert "oral" not in contract.intimate_acts
    assert contract.reconfirming is False
    assert all(confirmations(db, contract.id))
    assert notifier.events[-1].kind == NotificationKind.amendment_rejected

    with pytest.raises(ConflictError):
        svc.approve_amendment(db, amendment_id=a.id, actor_id=bob.id)
    # the slot is free again
    svc.propose_amendment(
        db, contract_id=contract.id, actor_id=bob.id,
        amendment_type="add_acts", changes={"acts": ["oral"]}, reason="second try",
    )


def test_unknown_amendment_is_not_found(db, active_contract):
    _, alice, _ = active_contract
    with pytest.raises(NotFoundError):
        AmendmentService().approve_amendment(db, amendment_id=uuid.uuid4(), actor_id=alice.id)


def test_list_amendments_is_party_scoped(db, active_contract, make_user):
    contract, alice, _ = active_contract
    AmendmentService().propose_amendment(
        db, contract_id=contract.id, actor_id=alice.id,
        amendment_type="add_acts", changes={"acts": ["oral"]}, reason="x",
    )
    assert len(AmendmentService().list_amendments(db, contract.id, alice.id)) == 1
    eve = make_user("eve")
    with pytest.raises(NotFoundError):
        AmendmentService().list_amendments(db, contract.id, eve.id)


def test_unknown_act_name_is_rejected(db, active_contract):
    contract, alice, _ = active_contract
    with pytest.raises(ValidationError) as exc:
        AmendmentService().propose_amendment(
            db, contract_id=contract.id, actor_id=alice.id,
            amendment_type="add_acts", changes={"acts": ["oral", "juggling"]}, reason="x",
        )
    assert exc.value.details == {"invalidActs": ["juggling"]}
    assert amendments(db) == []


def test_amendment_that_no_longer_applies_is_discarded(db, active_contract, notifier, monkeypatch):
    contract, alice, bob = active_contract
    svc = AmendmentService(notifier=notifier)
    original_end = as_utc(contract.end_time)
    a = svc.propose_amendment(
        db, contract_id=contract.id, actor_id=alice.id,
        amendment_type="shorten_duration",
        changes={"new_end_time": (now_utc() + timedelta(minutes=5)).isoformat()},
        reason="need to leave early",
    )
    assert a.status == AmendmentStatus.pending.value

    # bob only gets to it after the proposed end time has passed
    later = now_utc() + timedelta(minutes=10)
    monkeypatch.setattr("consentflow.services.amendment_service.now_utc", lambda: later)
    with pytest.raises(ValidationError):
        svc.approve_amendment(db, amendment_id=a.id, actor_id=bob.id)

    stale = db.get(Amendment, a.id)
    db.refresh(stale)
    assert stale.status == AmendmentStatus.rejected.value
    assert stale.rejection_reason.startswith("No longer applicable")
    assert stale.resolved_at is not None
    assert notifier.events[-1].kind == NotificationKind.amendment_rejected

    contract = db.get(Contract, contract.id)
    db.refresh(contract)
    assert as_utc(contract.end_time) == original_end
    assert contract.approved_amendment_count == 0
    assert all(confirmations(db, contract.id))

    # the pending slot is free again
    nxt = svc.propose_amendment(
        db, contract_id=contract.id, actor_id=bob.id,
        amendment_type="add_acts", changes={"acts": ["oral"]}, reason="instead",
    )
    assert nxt.status == AmendmentStatus.pending.value
