#consentflow/models/enums.py
from __future__ import annotations
from enum import Enum


class ContractStatus(str, Enum):
    draft = "draft"
    pending_approval = "pending_approval"
    active = "active"
    rejected = "rejected"


TERMINAL_CONTRACT_STATES = frozenset({ContractStatus.active.value, ContractStatus.rejected.value})


class ConsentMethod(str, Enum):
    signature = "signature"
    voice = "voice"
    photo = "photo"
    biometric = "biometric"


class CollaboratorRole(str, Enum):
    initiator = "initiator"
    recipient = "recipient"


class CollaboratorStatus(str, Enum):
    pending = "pending"
    reviewing = "reviewing"
    approved = "approved"
    rejected = "rejected"


class InvitationStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    expired = "expired"


class AmendmentType(str, Enum):
    add_acts = "add_acts"
    remove_acts = "remove_acts"
    extend_duration = "extend_duration"
    shorten_duration = "shorten_duration"


ACT_AMENDMENTS = frozenset({AmendmentType.add_acts, AmendmentType.remove_acts})
DURATION_AMENDMENTS = frozenset({AmendmentType.extend_duration, AmendmentType.shorten_duration})


class AmendmentStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class NotificationKind(str, Enum):
    contract_shared = "contract_shared"
    invitation_accepted = "invitation_accepted"
    contract_reviewed = "contract_reviewed"
    contract_approved = "contract_approved"
    contract_rejected = "contract_rejected"
    amendment_requested = "amendment_requested"
    amendment_approved = "amendment_approved"
    amendment_rejected = "amendment_rejected"
    awaiting_others = "awaiting_others"
    all_parties_confirmed = "all_parties_confirmed"
