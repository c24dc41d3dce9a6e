# consentflow/models/user.py
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, Uuid, UniqueConstraint, func, text
from sqlalchemy.orm import Mapped, mapped_column

from consentflow.core.timeutil import now_utc
from consentflow.db.base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # canonical "@handle" form, see services.validation.normalize_identifier
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    display_name: Mapped[str] = mapped_column(String(256), nullable=False)

    # 🔐 AUTH
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    is_active: Mapped[bool] = mapped_column(nullable=False, server_default=text("true"), default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("username", name="uq_users_username"),
        UniqueConstraint("email", name="uq_users_email"),
    )
