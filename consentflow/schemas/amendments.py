from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from consentflow.models.enums import AmendmentType


class AmendmentCreate(BaseModel):
    amendment_type: AmendmentType
    changes: Dict[str, Any] = Field(default_factory=dict, description="{'acts': [...]} or {'new_end_time': iso}")
    reason: str = Field(..., min_length=1, max_length=1000)


class AmendmentRejectRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class AmendmentResponse(BaseModel):
    amendmentId: str
    contractId: str
    requestedBy: str
    amendmentType: str
    changes: Dict[str, Any]
    reason: str
    status: str
    approvals: List[str]
    rejectedBy: Optional[str] = None
    rejectionReason: Optional[str] = None
    resolvedAtIso: Optional[str] = None
    createdAtIso: str


class AmendmentListResponse(BaseModel):
    amendments: List[AmendmentResponse]
