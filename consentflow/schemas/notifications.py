from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    notificationId: str
    contractId: Optional[str] = None
    kind: str
    message: str
    readAtIso: Optional[str] = None
    createdAtIso: str


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]


class UnreadCountResponse(BaseModel):
    unread: int
