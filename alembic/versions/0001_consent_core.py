"""consent contract core tables

Revision ID: 0001_consent_core
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001_consent_core'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("display_name", sa.String(length=256), nullable=False),
        sa.Column("password_hash", sa.String(length=256), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _created_at(),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "contracts",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("owner_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("university_id", sa.String(length=64), nullable=True),
        sa.Column("state_code", sa.String(length=8), nullable=True),
        sa.Column("encounter_type", sa.String(length=64), nullable=False),
        sa.Column("parties", JSON, nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("method", sa.String(length=16), nullable=True),
        sa.Column("artifacts", JSON, nullable=False),
        sa.Column("contract_text", sa.Text(), nullable=True),
        sa.Column("intimate_acts", JSON, nullable=False),
        sa.Column("status", sa.String(length=24), server_default=sa.text("'draft'"), nullable=False),
        sa.Column("is_collaborative", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("reconfirming", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_amendment_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("last_edited_by", sa.Uuid(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "duration_minutes IS NULL OR duration_minutes > 0",
            name="ck_contracts_duration_positive",
        ),
    )
    op.create_index("ix_contracts_owner_status", "contracts", ["owner_id", "status"])

    op.create_table(
        "contract_collaborators",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("contract_id", sa.Uuid(), sa.ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("last_viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(length=1000), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("contract_id", "user_id", name="uq_collaborator_contract_user"),
    )
    op.create_index("ix_collaborators_user", "contract_collaborators", ["user_id"])

    op.create_table(
        "contract_invitations",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("contract_id", sa.Uuid(), sa.ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sender_id", sa.Uuid(), nullable=False),
        sa.Column("recipient_email", sa.String(length=320), nullable=False),
        sa.Column("recipient_user_id", sa.Uuid(), nullable=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("code", name="uq_invitation_code"),
    )
    op.create_index("ix_invitation_recipient_email", "contract_invitations", ["recipient_email"])
    op.create_index("ix_invitation_contract_status", "contract_invitations", ["contract_id", "status"])

    op.create_table(
        "contract_amendments",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("contract_id", sa.Uuid(), sa.ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("requested_by", sa.Uuid(), nullable=False),
        sa.Column("amendment_type", sa.String(length=32), nullable=False),
        sa.Column("changes", JSON, nullable=False),
        sa.Column("reason", sa.String(length=1000), nullable=False),
        sa.Column("status", sa.String(length=16), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("approvals", JSON, nullable=False),
        sa.Column("rejected_by", sa.Uuid(), nullable=True),
        sa.Column("rejection_reason", sa.String(length=1000), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_amendments_contract_status", "contract_amendments", ["contract_id", "status"])

    op.create_table(
        "audit_log_records",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        _created_at(),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("actor_id", sa.String(length=64), nullable=False),
        sa.Column("contract_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.String(length=96), nullable=False),
        sa.Column("status", sa.String(length=32), server_default=sa.text("'ok'"), nullable=False),
        sa.Column("payload_hash", sa.String(length=128), nullable=False),
        sa.Column("payload_summary_json", JSON, nullable=False),
    )
    op.create_index("ix_audit_log_records_request_id", "audit_log_records", ["request_id"])
    op.create_index("ix_audit_contract", "audit_log_records", ["contract_id"])
    op.create_index("ix_audit_action", "audit_log_records", ["action"])
    op.create_index("ix_audit_created", "audit_log_records", ["created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("contract_id", sa.Uuid(), nullable=True),
        sa.Column("kind", sa.String(length=48), nullable=False),
        sa.Column("message", sa.String(length=500), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_notifications_user_read", "notifications", ["user_id", "read_at"])

    op.create_table(
        "idempotency_key_records",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=False),
        sa.Column("endpoint_key", sa.String(length=128), nullable=False),
        sa.Column("idem_key", sa.String(length=128), nullable=False),
        sa.Column("request_hash", sa.String(length=128), nullable=False),
        sa.Column("response_status", sa.String(length=16), server_default=sa.text("'200'"), nullable=False),
        sa.Column("response_json", JSON, nullable=False),
        _created_at(),
        sa.UniqueConstraint("actor_id", "endpoint_key", "idem_key", name="uq_idem_scope"),
    )
    op.create_index("ix_idem_lookup", "idempotency_key_records", ["actor_id", "endpoint_key"])


def downgrade():
    op.drop_index("ix_idem_lookup", table_name="idempotency_key_records")
    op.drop_table("idempotency_key_records")
    op.drop_index("ix_notifications_user_read", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_audit_created", table_name="audit_log_records")
    op.drop_index("ix_audit_action", table_name="audit_log_records")
    op.drop_index("ix_audit_contract", table_name="audit_log_records")
    op.drop_index("ix_audit_log_records_request_id", table_name="audit_log_records")
    op.drop_table("audit_log_records")
    op.drop_index("ix_amendments_contract_status", table_name="contract_amendments")
    op.drop_table("contract_amendments")
    op.drop_index("ix_invitation_contract_status", table_name="contract_invitations")
    op.drop_index("ix_invitation_recipient_email", table_name="contract_invitations")
    op.drop_table("contract_invitations")
    op.drop_index("ix_collaborators_user", table_name="contract_collaborators")
    op.drop_table("contract_collaborators")
    op.drop_index("ix_contracts_owner_status", table_name="contracts")
    op.drop_table("contracts")
    op.drop_table("users")
