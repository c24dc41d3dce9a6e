from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from consentflow.core.errors import ConflictError, TransientError

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    One lifecycle transition = one transaction.
    Commits on success; on any failure rolls back before re-raising, so a
    transition either applies with all its side rows or not at all.
    """
    try:
        yield db
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("The record was changed concurrently; refresh and retry.") from exc
    except DBAPIError as exc:
        db.rollback()
        logger.warning("storage failure", extra={"error": str(exc.orig)})
        raise TransientError("Storage is temporarily unavailable.") from exc
    except Exception:
        db.rollback()
        raise
