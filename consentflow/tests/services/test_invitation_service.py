from datetime import timedelta

import pytest
from sqlalchemy import select

from consentflow.core.errors import ConflictError, NotFoundError, ValidationError
from consentflow.core.timeutil import now_utc
from consentflow.models.collaborator import Collaborator
from consentflow.models.enums import CollaboratorRole, ContractStatus, InvitationStatus, NotificationKind
from consentflow.models.invitation import Invitation
from consentflow.schemas.contracts import ShareTarget
from consentflow.services.audit_service import AuditAction, AuditService
from consentflow.services.contract_service import ContractService
from consentflow.services.confirmation_service import ConfirmationService
from consentflow.services.invitation_service import InvitationService


def invite(db, contract, owner, email="carol@example.com"):
    result = ContractService().share_contract(
        db, contract_id=contract.id, actor_id=owner.id, targets=[ShareTarget(email=email)]
    )
    return result.invitations[0]


def expire(db, invitation):
    invitation.expires_at = now_utc() - timedelta(minutes=1)
    db.commit()


def test_invitation_defaults(db, shared_contract):
    contract, alice, _ = shared_contract
    inv = invite(db, contract, alice)

    assert inv.status == InvitationStatus.pending.value
    assert inv.recipient_user_id is None
    assert timedelta(days=6) < inv.expires_at - now_utc() <= timedelta(days=7)


def test_get_by_code_preview(db, shared_contract):
    contract, alice, _ = shared_contract
    inv = invite(db, contract, alice)

    preview = InvitationService().get_by_code(db, inv.code)
    assert preview.contract.id == contract.id
    assert preview.sender.id == alice.id
    assert preview.expired is False

    with pytest.raises(NotFoundError):
        InvitationService().get_by_code(db, "no-such-code")


def test_accept_creates_one_recipient_collaborator(db, shared_contract, make_user, notifier):
    contract, alice, _ = shared_contract
    inv = invite(db, contract, alice)
    carol = make_user("carol")

    row = InvitationService(notifier=notifier).accept_invitation(db, code=inv.code, actor_id=carol.id)

    assert row.role == CollaboratorRole.recipient.value
    assert row.user_id == carol.id
    db.refresh(inv)
    assert inv.status == InvitationStatus.accepted.value
    assert inv.recipient_user_id == carol.id
    assert inv.accepted_at is not None
    assert notifier.events[-1].kind == NotificationKind.invitation_accepted
    assert notifier.events[-1].recipients == (alice.id,)


def test_accept_twice_is_conflict(db, shared_contract, make_user):
    contract, alice, _ = shared_contract
    inv = invite(db, contract, alice)
    carol, dan = make_user("carol"), make_user("dan")
    svc = InvitationService()
    svc.accept_invitation(db, code=inv.code, actor_id=carol.id)

    with pytest.raises(ConflictError):
        svc.accept_invitation(db, code=inv.code, actor_id=dan.id)
    rows = db.execute(select(Collaborator).where(Collaborator.contract_id == contract.id)).scalars().all()
    assert len(rows) == 3


def test_expired_invitation_cannot_be_accepted(db, shared_contract, make_user):
    contract, alice, _ = shared_contract
    inv = invite(db, contract, alice)
    expire(db, inv)
    carol = make_user("carol")

    with pytest.raises(ConflictError):
        InvitationService().accept_invitation(db, code=inv.code, actor_id=carol.id)

    assert db.execute(select(Collaborator).where(Collaborator.user_id == carol.id)).first() is None
    db.refresh(inv)
    assert inv.status == InvitationStatus.expired.value
    actions = [r.action for r in AuditService().list_for_contract(db, contract.id)]
    assert AuditAction.INVITATION_EXPIRED in actions

    # still refused once marked expired
    with pytest.raises(ConflictError):
        InvitationService().accept_invitation(db, code=inv.code, actor_id=carol.id)


def test_existing_collaborator_accept_binds_invitation(db, shared_contract):
    contract, alice, bob = shared_contract
    inv = invite(db, contract, alice)
    before = db.execute(select(Collaborator).where(Collaborator.contract_id == contract.id)).scalars().all()

    row = InvitationService().accept_invitation(db, code=inv.code, actor_id=bob.id)

    db.refresh(inv)
    assert inv.status == InvitationStatus.accepted.value
    assert inv.recipient_user_id == bob.id
    assert inv.accepted_at is not None
    assert row.user_id == bob.id
    after = db.execute(select(Collaborator).where(Collaborator.contract_id == contract.id)).scalars().all()
    assert len(after) == len(before)
    assert InvitationService().pending_count(db, contract.id) == 0


def test_direct_share_fulfils_earlier_invitation(db, shared_contract, make_user):
    contract, alice, bob = shared_contract
    inv = invite(db, contract, alice, email="carol@example.com")

    # carol signs up after being invited and is then shared with directly
    carol = make_user("carol")
    result = ContractService().share_contract(
        db, contract_id=contract.id, actor_id=alice.id, targets=[ShareTarget(email="Carol@example.com")]
    )
    assert [c.user_id for c in result.collaborators] == [carol.id]
    assert result.invitations == []

    db.refresh(inv)
    assert inv.status == InvitationStatus.accepted.value
    assert inv.recipient_user_id == carol.id
    assert InvitationService().pending_count(db, contract.id) == 0

    confirm = ConfirmationService()
    for user in (alice, bob):
        assert confirm.confirm_consent(db, contract_id=contract.id, actor_id=user.id).all_parties_confirmed is False
    done = confirm.confirm_consent(db, contract_id=contract.id, actor_id=carol.id)
    assert done.all_parties_confirmed is True
    assert done.contract_status == ContractStatus.active.value

    # the fulfilled code cannot add a second row
    with pytest.raises(ConflictError):
        InvitationService().accept_invitation(db, code=inv.code, actor_id=carol.id)
    rows = db.execute(
        select(Collaborator).where(Collaborator.contract_id == contract.id, Collaborator.user_id == carol.id)
    ).scalars().all()
    assert len(rows) == 1


def test_direct_share_by_user_id_fulfils_invitation(db, shared_contract, make_user):
    contract, alice, _ = shared_contract
    inv = invite(db, contract, alice, email="carol@example.com")
    carol = make_user("carol")
    ContractService().share_contract(
        db, contract_id=contract.id, actor_id=alice.id, targets=[ShareTarget(user_id=carol.id)]
    )
    db.refresh(inv)
    assert inv.status == InvitationStatus.accepted.value
    assert inv.recipient_user_id == carol.id


def test_owner_cannot_accept_own_invitation(db, shared_contract):
    contract, alice, _ = shared_contract
    inv = invite(db, contract, alice)
    with pytest.raises(ValidationError):
        InvitationService().accept_invitation(db, code=inv.code, actor_id=alice.id)


def test_accept_on_rejected_contract_is_conflict(db, shared_contract, make_user):
    contract, alice, bob = shared_contract
    inv = invite(db, contract, alice)
    ContractService().reject_contract(db, contract_id=contract.id, actor_id=bob.id, reason="no")
    carol = make_user("carol")
    with pytest.raises(ConflictError):
        InvitationService().accept_invitation(db, code=inv.code, actor_id=carol.id)


def test_list_for_email_skips_expired_and_accepted(db, shared_contract):
    contract, alice, _ = shared_contract
    live = invite(db, contract, alice, email="carol@example.com")
    stale = invite(db, contract, alice, email="dan@example.com")
    expire(db, stale)

    svc = InvitationService()
    assert [i.id for i in svc.list_for_email(db, "Carol@example.com")] == [live.id]
    assert svc.list_for_email(db, "dan@example.com") == []
    assert svc.pending_count(db, contract.id) == 1


def test_unknown_code_is_not_found(db, make_user):
    carol = make_user("carol")
    with pytest.raises(NotFoundError):
        InvitationService().accept_invitation(db, code="missing", actor_id=carol.id)
    assert db.execute(select(Invitation)).first() is None
