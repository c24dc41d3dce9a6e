# consentflow/services/auth_service.py
from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from consentflow.core.errors import ConflictError, ValidationError
from consentflow.core.security import hash_password, verify_password
from consentflow.db.unit_of_work import unit_of_work
from consentflow.models.user import User
from consentflow.policies.rbac import Principal
from consentflow.services.validation import (
    IDENTIFIER_MARKER,
    normalize_identifier,
    validate_identifier,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def to_principal(user: User) -> Principal:
    return Principal(
        user_id=user.id,
        username=user.username,
        email=user.email,
        display_name=user.display_name,
    )


def register(db: Session, *, username: str, email: str, password: str, display_name: Optional[str] = None) -> User:
    handle = normalize_identifier(username if (username or "").startswith(IDENTIFIER_MARKER) else f"@{username or ''}")
    if handle == IDENTIFIER_MARKER or validate_identifier(handle):
        raise ValidationError("Username must be @lowercase_letters_numbers_underscores.")
    email = (email or "").strip().lower()
    if "@" not in email or email.startswith("@"):
        raise ValidationError("A valid email is required.")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")

    existing = db.execute(
        select(User).where(or_(User.username == handle, User.email == email))
    ).scalars().first()
    if existing:
        raise ConflictError("Username or email is already registered.")

    with unit_of_work(db):
        user = User(
            username=handle,
            email=email,
            display_name=(display_name or "").strip() or handle,
            password_hash=hash_password(password),
        )
        db.add(user)

    logger.info("user registered", extra={"user_id": str(user.id)})
    return user


def authenticate(db: Session, login: str, password: str) -> Optional[Principal]:
    """login is either the @handle (with or without the marker) or the email."""
    value = (login or "").strip().lower()
    if "@" in value and not value.startswith(IDENTIFIER_MARKER):
        clause = User.email == value
    else:
        handle = value if value.startswith(IDENTIFIER_MARKER) else f"@{value}"
        clause = User.username == normalize_identifier(handle)

    user = db.execute(select(User).where(clause, User.is_active.is_(True))).scalar_one_or_none()
    if not user:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return to_principal(user)


def get_active_user(db: Session, user_id: uuid.UUID) -> Optional[User]:
    user = db.get(User, user_id)
    if not user or not user.is_active:
        return None
    return user
