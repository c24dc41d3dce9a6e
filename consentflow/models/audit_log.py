from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, Index, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from consentflow.core.timeutil import now_utc
from consentflow.db.base import Base, JSONType


class AuditLogRecord(Base):
    """
    Lifecycle audit trail record.
    - Append-only (never UPDATE)
    - Stores request-id, actor, contract, action, payload hash, and safe payload summary.
    - Artifact references (signatures, audio, photos) never enter the summary.
    """
    __tablename__ = "audit_log_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )

    # Correlation
    request_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    contract_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    # What happened
    action: Mapped[str] = mapped_column(String(96), nullable=False)  # e.g., CONTRACT_ACTIVATED
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="ok", server_default=text("'ok'"))

    # Payload traceability (hash + safe summary)
    payload_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    payload_summary_json: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_audit_contract", "contract_id"),
        Index("ix_audit_action", "action"),
        Index("ix_audit_created", "created_at"),
    )
