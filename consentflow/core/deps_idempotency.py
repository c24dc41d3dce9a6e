from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from consentflow.core.auth_deps import get_current_principal
from consentflow.db.session import get_db
from consentflow.policies.rbac import Principal
from consentflow.services.idempotency_service import IdempotencyService

IDEMPOTENCY_HEADER = "Idempotency-Key"


async def optional_idempotency_key(request: Request) -> Optional[str]:
    key = request.headers.get(IDEMPOTENCY_HEADER)
    if key is None:
        return None
    key = key.strip()
    if not key:
        raise HTTPException(status_code=400, detail="Empty Idempotency-Key header.")
    if len(key) > 128:
        raise HTTPException(status_code=400, detail="Idempotency-Key too long.")
    return key


async def idempotency_guard(
    request: Request,
    idem_key: Optional[str] = Depends(optional_idempotency_key),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> Optional[str]:
    """
    Use on POST endpoints that must never be applied twice by a retry.

    Without the header the request runs normally. With it, stores in request.state:
      - idempotency_endpoint_key
      - idempotency_request_hash
      - idempotency_replay_json / idempotency_replay_status (when replaying)
    A reused key with a different body raises ConflictError.
    """
    request.state.idempotency_key = idem_key
    request.state.idempotency_replay_json = None
    request.state.idempotency_replay_status = None
    if idem_key is None:
        return None

    endpoint_key = f"{request.method}:{request.url.path}"

    # Read JSON body once; FastAPI caches it for the body parameter
    try:
        payload = await request.json()
    except ValueError:
        payload = {}

    replay_json, replay_status, req_hash = IdempotencyService().reserve_or_replay(
        db,
        actor_id=str(principal.user_id),
        endpoint_key=endpoint_key,
        idem_key=idem_key,
        request_payload=payload if isinstance(payload, dict) else {"_": payload},
    )

    request.state.idempotency_endpoint_key = endpoint_key
    request.state.idempotency_request_hash = req_hash
    request.state.idempotency_replay_json = replay_json
    request.state.idempotency_replay_status = replay_status

    return idem_key
