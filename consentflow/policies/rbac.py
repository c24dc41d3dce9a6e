#consentflow/policies/rbac.py
from __future__ import annotations
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional

from consentflow.core.errors import AuthorizationError
from consentflow.models.collaborator import Collaborator
from consentflow.models.contract import Contract


@dataclass(frozen=True)
class Principal:
    user_id: uuid.UUID
    username: str
    email: str
    display_name: str


def find_collaborator(collaborators: Iterable[Collaborator], user_id: uuid.UUID) -> Optional[Collaborator]:
    for c in collaborators:
        if c.user_id == user_id:
            return c
    return None


def require_collaborator(collaborators: Iterable[Collaborator], user_id: uuid.UUID) -> Collaborator:
    """
    The acting user's own row. Every collaborator-scoped action goes through this,
    so no action can reach another party's row.
    """
    row = find_collaborator(collaborators, user_id)
    if row is None:
        raise AuthorizationError("You are not a party to this contract.")
    return row


def require_owner(contract: Contract, user_id: uuid.UUID) -> None:
    if contract.owner_id != user_id:
        raise AuthorizationError("Only the contract owner can do this.")


def can_view(contract: Contract, collaborators: Iterable[Collaborator], user_id: uuid.UUID) -> bool:
    return contract.owner_id == user_id or find_collaborator(collaborators, user_id) is not None
