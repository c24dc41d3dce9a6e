"""
Error taxonomy for lifecycle operations.

Services raise these; the API layer renders them (see consentflow.main).
None of them is raised after a partial write: every mutating service call
rolls back before the exception leaves the service.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ConsentError(Exception):
    status_code: int = 400
    code: str = "consent_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ConsentError):
    """Malformed or incomplete input. Recoverable locally."""
    status_code = 400
    code = "validation_error"


class NotFoundError(ConsentError):
    status_code = 404
    code = "not_found"


class ConflictError(ConsentError):
    """Operation does not fit the current state; client should refresh."""
    status_code = 409
    code = "conflict"


class AuthorizationError(ConsentError):
    """Actor is not a party to the row it tries to mutate."""
    status_code = 403
    code = "forbidden"


class TransientError(ConsentError):
    """Storage/network failure. Only idempotent operations may be retried."""
    status_code = 503
    code = "transient"
