#consentflow/core/auth_deps.py
from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from consentflow.core.security import decode_token
from consentflow.db.session import get_db
from consentflow.policies.rbac import Principal
from consentflow.services.auth_service import get_active_user, to_principal

bearer = HTTPBearer(auto_error=True)


def get_current_principal(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(bearer),
    db: Session = Depends(get_db),
) -> Principal:
    """
    Canonical authentication dependency.

    Guarantees:
    - JWT is valid
    - sub is a user id
    - the user still exists and is active
    """
    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")

    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Token missing required claims.")

    user = get_active_user(db, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Account is disabled or no longer exists.")

    principal = to_principal(user)

    # Make principal available to downstream middleware / handlers
    request.state.principal = principal

    return principal
