from consentflow.core.config import get_settings
from consentflow.core.errors import ConsentError
from consentflow.core.logging import configure_logging
from consentflow.core.middleware import RequestIdMiddleware
from consentflow.api.v1.router import v1_router
from consentflow.db.session import SessionLocal
from consentflow.services.notification_service import DatabaseNotifier, LoggingNotifier

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


def build_notifier(settings):
    if settings.notification_channel == "log":
        return LoggingNotifier()
    return DatabaseNotifier(SessionLocal)


async def consent_error_handler(request: Request, exc: ConsentError) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": exc.code, "detail": exc.message, "request_id": rid}
    if exc.details:
        body["details"] = exc.details
    if exc.status_code >= 500:
        logger.warning("request failed", extra={"request_id": rid, "error": exc.code})
    return JSONResponse(status_code=exc.status_code, content=body)


def create_app(notifier=None) -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
    )

    # Middleware: Request ID
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    app.add_exception_handler(ConsentError, consent_error_handler)

    # post-commit notification channel
    app.state.notifier = notifier or build_notifier(settings)

    # API v1
    app.include_router(v1_router, prefix=settings.api_prefix)

    return app


app = create_app()
