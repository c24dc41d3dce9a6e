# Importing the package registers every table on Base.metadata
from consentflow.models.user import User
from consentflow.models.contract import Contract
from consentflow.models.collaborator import Collaborator
from consentflow.models.invitation import Invitation
from consentflow.models.amendment import Amendment
from consentflow.models.audit_log import AuditLogRecord
from consentflow.models.notification import Notification
from consentflow.models.idempotency_key import IdempotencyKeyRecord

__all__ = [
    "User",
    "Contract",
    "Collaborator",
    "Invitation",
    "Amendment",
    "AuditLogRecord",
    "Notification",
    "IdempotencyKeyRecord",
]
