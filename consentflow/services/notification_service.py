"""
Notification emitter.

Transitions produce NotificationEvent values inside their transaction and
hand them to a Notifier only after commit. Delivery is fire-and-forget:
a failing notifier is logged and never retried, and never undoes the
transition that triggered it.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Protocol, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from consentflow.core.errors import NotFoundError
from consentflow.core.timeutil import now_utc
from consentflow.models.enums import NotificationKind
from consentflow.models.notification import Notification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    kind: NotificationKind
    contract_id: uuid.UUID
    recipients: Tuple[uuid.UUID, ...]
    message: str
    actor_id: Optional[uuid.UUID] = None


class Notifier(Protocol):
    def send(self, event: NotificationEvent) -> None:
        ...


class LoggingNotifier:
    def send(self, event: NotificationEvent) -> None:
        logger.info(
            "notification",
            extra={
                "kind": event.kind.value,
                "contract_id": str(event.contract_id),
                "recipients": [str(r) for r in event.recipients],
            },
        )


class DatabaseNotifier:
    """In-app channel: one Notification row per recipient, in its own session."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def send(self, event: NotificationEvent) -> None:
        db = self.session_factory()
        try:
            for user_id in event.recipients:
                db.add(
                    Notification(
                        user_id=user_id,
                        contract_id=event.contract_id,
                        kind=event.kind.value,
                        message=event.message,
                    )
                )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


@dataclass
class RecordingNotifier:
    """Keeps events in memory; used by tests and local tooling."""
    events: List[NotificationEvent] = field(default_factory=list)

    def send(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def kinds(self) -> List[NotificationKind]:
        return [e.kind for e in self.events]


def dispatch(notifier: Notifier, events: Iterable[NotificationEvent]) -> None:
    for event in events:
        if not event.recipients:
            continue
        try:
            notifier.send(event)
        except Exception:
            logger.exception(
                "notification dispatch failed",
                extra={"kind": event.kind.value, "contract_id": str(event.contract_id)},
            )


class NotificationService:
    # ---------------------------
    # READS
    # ---------------------------

    def list_for_user(self, db: Session, user_id: uuid.UUID, limit: int = 50) -> List[Notification]:
        return db.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        ).scalars().all()

    def unread_count(self, db: Session, user_id: uuid.UUID) -> int:
        return int(
            db.execute(
                select(func.count(Notification.id)).where(
                    Notification.user_id == user_id,
                    Notification.read_at.is_(None),
                )
            ).scalar_one()
        )

    # ---------------------------
    # MUTATIONS
    # ---------------------------

    def mark_read(self, db: Session, *, user_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
        row = db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        ).scalar_one_or_none()
        if not row:
            raise NotFoundError("Notification not found.")
        if row.read_at is None:
            row.read_at = now_utc()
            db.commit()
        return row

    def mark_all_read(self, db: Session, *, user_id: uuid.UUID) -> int:
        result = db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read_at.is_(None))
            .values(read_at=now_utc())
        )
        db.commit()
        return result.rowcount or 0
