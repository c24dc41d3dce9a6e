#consentflow/models/invitation.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint, Index, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from consentflow.core.timeutil import now_utc
from consentflow.db.base import Base
from consentflow.models.enums import InvitationStatus


class Invitation(Base):
    """
    Time-bounded, single-use token binding an external party (by email)
    into the collaborator registry.

    pending -> accepted happens exactly once; pending -> expired is final.
    """

    __tablename__ = "contract_invitations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    recipient_email: Mapped[str] = mapped_column(String(320), nullable=False)
    recipient_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    code: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=InvitationStatus.pending.value,
        server_default=text(f"'{InvitationStatus.pending.value}'"),
    )

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )

    contract = relationship("Contract", back_populates="invitations")

    __table_args__ = (
        UniqueConstraint("code", name="uq_invitation_code"),
        Index("ix_invitation_recipient_email", "recipient_email"),
        Index("ix_invitation_contract_status", "contract_id", "status"),
    )
