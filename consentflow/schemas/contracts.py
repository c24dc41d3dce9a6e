from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from consentflow.models.enums import ConsentMethod


class ContractCreate(BaseModel):
    """
    Submitted flow state. Structural checks only; lifecycle rules (party
    identifiers, duration, readiness) live in services.validation.
    """
    university_id: Optional[str] = Field(default=None, max_length=64)
    state_code: Optional[str] = Field(default=None, max_length=8)
    encounter_type: str = ""
    parties: List[str] = Field(default_factory=list)
    intimate_acts: Dict[str, Optional[str]] = Field(default_factory=dict)
    start_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    end_time: Optional[datetime] = None
    method: Optional[ConsentMethod] = None
    artifacts: Dict[str, Any] = Field(default_factory=dict, description="references only: blob ids, URLs, credential descriptors")
    contract_text: Optional[str] = None
    is_collaborative: bool = False


class ContractUpdate(BaseModel):
    """PATCH body: only the fields actually sent are applied."""
    university_id: Optional[str] = Field(default=None, max_length=64)
    state_code: Optional[str] = Field(default=None, max_length=8)
    encounter_type: Optional[str] = None
    parties: Optional[List[str]] = None
    intimate_acts: Optional[Dict[str, Optional[str]]] = None
    start_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    end_time: Optional[datetime] = None
    method: Optional[ConsentMethod] = None
    artifacts: Optional[Dict[str, Any]] = None
    contract_text: Optional[str] = None
    is_collaborative: Optional[bool] = None


class ShareTarget(BaseModel):
    user_id: Optional[uuid.UUID] = None
    email: Optional[str] = None


class ShareRequest(BaseModel):
    targets: List[ShareTarget] = Field(..., min_length=1)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class CollaboratorResponse(BaseModel):
    collaboratorId: str
    contractId: str
    userId: str
    role: str
    status: str
    lastViewedAtIso: Optional[str] = None
    approvedAtIso: Optional[str] = None
    rejectedAtIso: Optional[str] = None
    rejectionReason: Optional[str] = None
    confirmedAtIso: Optional[str] = None


class ContractResponse(BaseModel):
    contractId: str
    ownerId: str
    universityId: Optional[str] = None
    stateCode: Optional[str] = None
    encounterType: str
    parties: List[str]
    intimateActs: Dict[str, str]
    startTimeIso: Optional[str] = None
    durationMinutes: Optional[int] = None
    endTimeIso: Optional[str] = None
    method: Optional[str] = None
    artifacts: Dict[str, Any]
    contractText: Optional[str] = None
    status: str
    isCollaborative: bool
    reconfirming: bool
    activatedAtIso: Optional[str] = None
    approvedAmendmentCount: int
    lastEditedBy: Optional[str] = None
    createdAtIso: str
    updatedAtIso: str


class ContractListResponse(BaseModel):
    contracts: List[ContractResponse]


class ShareResponse(BaseModel):
    contract: ContractResponse
    collaborators: List[CollaboratorResponse]
    invitationCount: int


class ConfirmResponse(BaseModel):
    allPartiesConfirmed: bool
    contractStatus: str
