from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from consentflow.core.auth_deps import get_current_principal
from consentflow.core.deps import parse_uuid
from consentflow.db.session import get_db
from consentflow.models.notification import Notification
from consentflow.policies.rbac import Principal
from consentflow.schemas.notifications import (
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from consentflow.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications")


def _iso(dt):
    return dt.isoformat() if dt else None


def _to_resp(n: Notification) -> dict:
    return {
        "notificationId": str(n.id),
        "contractId": str(n.contract_id) if n.contract_id else None,
        "kind": n.kind,
        "message": n.message,
        "readAtIso": _iso(n.read_at),
        "createdAtIso": _iso(n.created_at),
    }


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    rows = NotificationService().list_for_user(db, principal.user_id, limit=limit)
    return {"notifications": [_to_resp(n) for n in rows]}


@router.get("/unread/count", response_model=UnreadCountResponse)
def unread_count(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return {"unread": NotificationService().unread_count(db, principal.user_id)}


@router.patch("/read-all")
def mark_all_read(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    updated = NotificationService().mark_all_read(db, user_id=principal.user_id)
    return {"updated": updated}


@router.patch("/{notificationId}/read", response_model=NotificationResponse)
def mark_read(
    notificationId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    nid = parse_uuid(notificationId, "notificationId")
    row = NotificationService().mark_read(db, user_id=principal.user_id, notification_id=nid)
    return _to_resp(row)
