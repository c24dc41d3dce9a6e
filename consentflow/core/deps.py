from __future__ import annotations

import uuid

from fastapi import HTTPException, Request

from consentflow.services.notification_service import LoggingNotifier, Notifier


def get_notifier(request: Request) -> Notifier:
    # create_app installs the in-app notifier; bare apps fall back to logs
    return getattr(request.app.state, "notifier", None) or LoggingNotifier()


def parse_uuid(raw: str, name: str) -> uuid.UUID:
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be UUID.")
