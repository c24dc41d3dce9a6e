import uuid
from datetime import timedelta

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from consentflow.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from consentflow.core.timeutil import as_utc, now_utc
from consentflow.db.base import Base
from consentflow.models.collaborator import Collaborator
from consentflow.models.contract import Contract
from consentflow.models.enums import ContractStatus, NotificationKind
from consentflow.models.user import User
from consentflow.schemas.contracts import ShareTarget
from consentflow.services.audit_service import AuditAction, AuditService
from consentflow.services.confirmation_service import ConfirmationService, activate_if_pending
from consentflow.services.contract_service import ContractService
from consentflow.services.notification_service import RecordingNotifier


def test_sole_party_confirmation_activates_draft(db, make_user, payload, notifier):
    alice = make_user("alice")
    c = ContractService().create_contract(db, owner_id=alice.id, payload=payload())

    result = ConfirmationService(notifier=notifier).confirm_consent(db, contract_id=c.id, actor_id=alice.id)

    assert result.all_parties_confirmed is True
    assert result.contract_status == ContractStatus.active.value
    assert db.get(Contract, c.id).activated_at is not None
    assert notifier.kinds() == [NotificationKind.all_parties_confirmed]


def test_confirm_is_idempotent(db, make_user, payload, notifier):
    alice = make_user("alice")
    c = ContractService().create_contract(db, owner_id=alice.id, payload=payload())
    svc = ConfirmationService(notifier=notifier)
    svc.confirm_consent(db, contract_id=c.id, actor_id=alice.id)
    row = db.execute(select(Collaborator).where(Collaborator.contract_id == c.id)).scalar_one()
    first_confirmed = row.confirmed_at
    activated_at = as_utc(db.get(Contract, c.id).activated_at)

    again = svc.confirm_consent(db, contract_id=c.id, actor_id=alice.id)

    assert again.all_parties_confirmed is True
    assert again.contract_status == ContractStatus.active.value
    db.refresh(row)
    assert as_utc(row.confirmed_at) == as_utc(first_confirmed)
    assert as_utc(db.get(Contract, c.id).activated_at) == activated_at
    # "all parties confirmed" is emitted once, by the activating call only
    assert notifier.kinds().count(NotificationKind.all_parties_confirmed) == 1
    actions = [r.action for r in AuditService().list_for_contract(db, c.id)]
    assert actions.count(AuditAction.CONSENT_CONFIRMED) == 1
    assert actions.count(AuditAction.CONTRACT_ACTIVATED) == 1


@pytest.mark.parametrize("owner_first", [True, False])
def test_both_confirmation_orders_activate(db, shared_contract, notifier, owner_first):
    contract, alice, bob = shared_contract
    svc = ConfirmationService(notifier=notifier)
    first, second = (alice, bob) if owner_first else (bob, alice)

    r1 = svc.confirm_consent(db, contract_id=contract.id, actor_id=first.id)
    assert r1.all_parties_confirmed is False
    assert r1.contract_status == ContractStatus.pending_approval.value
    assert notifier.events[-1].kind == NotificationKind.awaiting_others
    assert notifier.events[-1].recipients == (first.id,)

    r2 = svc.confirm_consent(db, contract_id=contract.id, actor_id=second.id)
    assert r2.all_parties_confirmed is True
    assert r2.contract_status == ContractStatus.active.value
    assert set(notifier.events[-1].recipients) == {alice.id, bob.id}


def test_pending_invitation_blocks_activation_until_expired(db, shared_contract):
    contract, alice, bob = shared_contract
    result = ContractService().share_contract(
        db, contract_id=contract.id, actor_id=alice.id, targets=[ShareTarget(email="carol@example.com")]
    )
    svc = ConfirmationService()
    svc.confirm_consent(db, contract_id=contract.id, actor_id=alice.id)
    blocked = svc.confirm_consent(db, contract_id=contract.id, actor_id=bob.id)
    assert blocked.all_parties_confirmed is False
    assert blocked.contract_status == ContractStatus.pending_approval.value

    result.invitations[0].expires_at = now_utc() - timedelta(seconds=1)
    db.commit()

    # re-confirming re-evaluates activation
    done = svc.confirm_consent(db, contract_id=contract.id, actor_id=bob.id)
    assert done.contract_status == ContractStatus.active.value


def test_collaborative_draft_cannot_be_confirmed(db, make_user, payload):
    alice = make_user("alice")
    c = ContractService().create_contract(db, owner_id=alice.id, payload=payload(is_collaborative=True))
    with pytest.raises(ConflictError):
        ConfirmationService().confirm_consent(db, contract_id=c.id, actor_id=alice.id)


def test_rejected_contract_cannot_be_confirmed(db, shared_contract):
    contract, alice, bob = shared_contract
    ContractService().reject_contract(db, contract_id=contract.id, actor_id=bob.id, reason="no")
    with pytest.raises(ConflictError):
        ConfirmationService().confirm_consent(db, contract_id=contract.id, actor_id=alice.id)


def test_confirm_requires_party_and_contract(db, shared_contract, make_user):
    contract, _, _ = shared_contract
    eve = make_user("eve")
    with pytest.raises(AuthorizationError):
        ConfirmationService().confirm_consent(db, contract_id=contract.id, actor_id=eve.id)
    with pytest.raises(NotFoundError):
        ConfirmationService().confirm_consent(db, contract_id=uuid.uuid4(), actor_id=eve.id)


def test_confirm_requires_method_artifact(db, make_user, payload):
    alice = make_user("alice")
    c = ContractService().create_contract(db, owner_id=alice.id, payload=payload(artifacts={}))
    with pytest.raises(ValidationError):
        ConfirmationService().confirm_consent(db, contract_id=c.id, actor_id=alice.id)
    row = db.execute(select(Collaborator).where(Collaborator.contract_id == c.id)).scalar_one()
    assert row.confirmed_at is None


def test_activation_compare_and_swap_hits_once(db, shared_contract):
    contract, _, _ = shared_contract
    assert activate_if_pending(db, contract.id) is True
    assert activate_if_pending(db, contract.id) is False
    db.commit()
    db.refresh(contract)
    assert contract.status == ContractStatus.active.value


@pytest.fixture
def file_sessions(tmp_path):
    """Two independent sessions on one file-backed database."""
    engine = create_engine(f"sqlite:///{tmp_path / 'consent.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    first, second = factory(), factory()
    try:
        yield first, second
    finally:
        first.close()
        second.close()
        engine.dispose()


def _shared_on(session, payload):
    alice = User(username="@alice", email="alice@example.com", display_name="Alice", password_hash="x")
    bob = User(username="@bob", email="bob@example.com", display_name="Bob", password_hash="x")
    session.add_all([alice, bob])
    session.commit()
    svc = ContractService()
    contract = svc.create_contract(session, owner_id=alice.id, payload=payload(is_collaborative=True))
    svc.share_contract(session, contract_id=contract.id, actor_id=alice.id, targets=[ShareTarget(user_id=bob.id)])
    return contract, alice, bob


def test_last_confirmations_from_two_sessions_activate_once(file_sessions, payload):
    s1, s2 = file_sessions
    contract, alice, bob = _shared_on(s1, payload)
    n1, n2 = RecordingNotifier(), RecordingNotifier()

    ConfirmationService(notifier=n1).confirm_consent(s1, contract_id=contract.id, actor_id=alice.id)
    # second session holds a view from before the activation
    assert s2.get(Contract, contract.id).status == ContractStatus.pending_approval.value

    r2 = ConfirmationService(notifier=n2).confirm_consent(s2, contract_id=contract.id, actor_id=bob.id)
    assert r2.contract_status == ContractStatus.active.value

    r1 = ConfirmationService(notifier=n1).confirm_consent(s1, contract_id=contract.id, actor_id=alice.id)
    assert r1.contract_status == ContractStatus.active.value

    all_confirmed = [e for e in n1.events + n2.events if e.kind == NotificationKind.all_parties_confirmed]
    assert len(all_confirmed) == 1
    activations = [
        r for r in AuditService().list_for_contract(s1, contract.id) if r.action == AuditAction.CONTRACT_ACTIVATED
    ]
    assert len(activations) == 1


def test_compare_and_swap_across_sessions(file_sessions, payload):
    s1, s2 = file_sessions
    contract, _, _ = _shared_on(s1, payload)

    assert activate_if_pending(s1, contract.id) is True
    s1.commit()
    assert activate_if_pending(s2, contract.id) is False
    s2.commit()
