#consentflow/models/amendment.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import String, DateTime, ForeignKey, Index, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from consentflow.core.timeutil import now_utc
from consentflow.db.base import Base, JSONType
from consentflow.models.enums import AmendmentStatus


class Amendment(Base):
    """
    Proposed post-draft change to acts or duration.

    approvals holds user ids (as strings) and always contains the requester.
    The contract is only touched when approvals cover every collaborator.
    """

    __tablename__ = "contract_amendments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False
    )
    requested_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    amendment_type: Mapped[str] = mapped_column(String(32), nullable=False)
    changes: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=AmendmentStatus.pending.value,
        server_default=text(f"'{AmendmentStatus.pending.value}'"),
    )
    approvals: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )

    contract = relationship("Contract", back_populates="amendments")

    __table_args__ = (
        Index("ix_amendments_contract_status", "contract_id", "status"),
    )
