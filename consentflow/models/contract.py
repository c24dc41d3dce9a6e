#consentflow/models/contract.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    String,
    Text,
    DateTime,
    Integer,
    Boolean,
    ForeignKey,
    CheckConstraint,
    Index,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from consentflow.core.timeutil import now_utc
from consentflow.db.base import Base, JSONType
from consentflow.models.enums import ContractStatus


class Contract(Base):
    """
    One consent instance: terms, parties, method commitment and lifecycle status.

    Status is server-owned. Clients only submit collaborator-scoped actions;
    the services derive the aggregate status under the contract row lock.
    """

    __tablename__ = "contracts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    # Jurisdiction
    university_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    state_code: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)

    encounter_type: Mapped[str] = mapped_column(String(64), nullable=False)
    parties: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    # Duration window (duration in minutes)
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Method commitment: only references are stored, never the artifact itself
    method: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    artifacts: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    contract_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # act name -> "yes" | "no"; absent = undecided
    intimate_acts: Mapped[Dict[str, str]] = mapped_column(JSONType, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(
        String(24), nullable=False, default=ContractStatus.draft.value,
        server_default=text(f"'{ContractStatus.draft.value}'"),
    )
    is_collaborative: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Set when an approved amendment cleared confirmations of an active contract
    reconfirming: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_amendment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_edited_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )

    collaborators = relationship(
        "Collaborator",
        back_populates="contract",
        cascade="all, delete-orphan",
        order_by="Collaborator.created_at",
    )
    invitations = relationship(
        "Invitation", back_populates="contract", cascade="all, delete-orphan"
    )
    amendments = relationship(
        "Amendment", back_populates="contract", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "duration_minutes IS NULL OR duration_minutes > 0",
            name="ck_contracts_duration_positive",
        ),
        Index("ix_contracts_owner_status", "owner_id", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (ContractStatus.active.value, ContractStatus.rejected.value)
