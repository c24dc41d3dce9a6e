#consentflow/models/collaborator.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint, Index, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from consentflow.core.timeutil import now_utc
from consentflow.db.base import Base
from consentflow.models.enums import CollaboratorStatus


class Collaborator(Base):
    """
    A party to a contract. Each row is owned by its user: approve/reject/confirm
    only ever touch the acting user's own row.
    """

    __tablename__ = "contract_collaborators"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    role: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=CollaboratorStatus.pending.value,
        server_default=text(f"'{CollaboratorStatus.pending.value}'"),
    )

    last_viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # set only by the confirmation gate; cleared only by amendment approval
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )

    contract = relationship("Contract", back_populates="collaborators")

    __table_args__ = (
        UniqueConstraint("contract_id", "user_id", name="uq_collaborator_contract_user"),
        Index("ix_collaborators_user", "user_id"),
    )
