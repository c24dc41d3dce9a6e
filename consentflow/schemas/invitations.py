from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel


class InvitationResponse(BaseModel):
    invitationId: str
    contractId: str
    recipientEmail: str
    status: str
    expiresAtIso: str
    acceptedAtIso: Optional[str] = None


class InvitationPreviewResponse(InvitationResponse):
    encounterType: str
    contractStatus: str
    senderDisplayName: Optional[str] = None
    expired: bool


class InvitationListResponse(BaseModel):
    invitations: List[InvitationResponse]
