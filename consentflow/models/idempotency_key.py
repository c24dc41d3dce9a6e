from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import String, DateTime, UniqueConstraint, Index, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from consentflow.core.timeutil import now_utc
from consentflow.db.base import Base, JSONType


class IdempotencyKeyRecord(Base):
    """
    Stores response for a POST request with Idempotency-Key header to prevent duplicates.

    Scope is strict:
      (actor_id, endpoint_key, idem_key) must be unique.
    """
    __tablename__ = "idempotency_key_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)

    endpoint_key: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "POST:/contracts/{id}/amendments"
    idem_key: Mapped[str] = mapped_column(String(128), nullable=False)

    request_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    response_status: Mapped[str] = mapped_column(String(16), nullable=False, default="200", server_default=text("'200'"))
    response_json: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("actor_id", "endpoint_key", "idem_key", name="uq_idem_scope"),
        Index("ix_idem_lookup", "actor_id", "endpoint_key"),
    )
