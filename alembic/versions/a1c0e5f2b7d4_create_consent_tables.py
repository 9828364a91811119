"""Create lead, application form and consent tables

Revision ID: a1c0e5f2b7d4
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a1c0e5f2b7d4"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# Enum types are created once up front; consent_type is shared by two tables
user_role = postgresql.ENUM("ADMIN", "SUPERVISOR", "OPERATOR", "PARTNER", name="user_role", create_type=False)
user_status = postgresql.ENUM("ACTIVE", "INACTIVE", name="user_status", create_type=False)
application_form_status = postgresql.ENUM(
    "DRAFT", "IN_PROGRESS", "READY", "SUBMITTED", "LOCKED", name="application_form_status", create_type=False
)
unlock_attempt_type = postgresql.ENUM("CLIENT_ATTEMPT", "STAFF_UNLOCK", name="unlock_attempt_type", create_type=False)
consent_type = postgresql.ENUM(
    "MARKETING", "FINANCIAL_PARTNERS", "VEHICLE_PARTNERS", "PARTNER_DECLARATION", name="consent_type", create_type=False
)
consent_method = postgresql.ENUM(
    "ONLINE_FORM", "PHONE_CALL", "PARTNER_SUBMISSION", name="consent_method", create_type=False
)
notification_event_type = postgresql.ENUM(
    "LINK_SENT", "UNLOCKED", "READY_FOR_REVIEW", name="notification_event_type", create_type=False
)
notification_status = postgresql.ENUM("SENT", "DELIVERED", "FAILED", name="notification_status", create_type=False)

ENUMS = (
    user_role,
    user_status,
    application_form_status,
    unlock_attempt_type,
    consent_type,
    consent_method,
    notification_event_type,
    notification_status,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("role", user_role, nullable=False),
        sa.Column("status", user_status, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_role", "users", ["role"], unique=False)

    op.create_table(
        "leads",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=True),
        sa.Column("last_name", sa.String(length=120), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_leads_email", "leads", ["email"], unique=False)

    op.create_table(
        "lead_notes",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("lead_id", sa.String(length=64), nullable=False),
        sa.Column("author_id", sa.String(length=64), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lead_notes_lead_created", "lead_notes", ["lead_id", "created_at"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("lead_id", sa.String(length=64), nullable=True),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_audit_lead_action_created", "audit_logs", ["lead_id", "action", "created_at"], unique=False)
    op.create_index("idx_audit_user_created", "audit_logs", ["user_id", "created_at"], unique=False)

    op.create_table(
        "application_forms",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("lead_id", sa.String(length=64), nullable=False),
        sa.Column("status", application_form_status, nullable=False),
        sa.Column("unique_link", sa.String(length=128), nullable=False),
        sa.Column("access_code_hash", sa.String(length=64), nullable=False),
        sa.Column("link_generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("link_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("is_client_active", sa.Boolean(), nullable=False),
        sa.Column("last_client_activity", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submitted_by_client", sa.Boolean(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_user_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("lead_id"),
        sa.UniqueConstraint("unique_link"),
    )
    op.create_index("ix_application_forms_status", "application_forms", ["status"], unique=False)

    op.create_table(
        "unlock_attempts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("application_form_id", sa.String(length=64), nullable=False),
        sa.Column("type", unlock_attempt_type, nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("actor_user_id", sa.String(length=64), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["application_form_id"], ["application_forms.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_unlock_attempts_form_timestamp", "unlock_attempts", ["application_form_id", "timestamp"], unique=False
    )

    op.create_table(
        "consent_templates",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("consent_type", consent_type, nullable=False),
        sa.Column("form_type", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("help_text", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("created_by_user_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_consent_templates_type_form_version",
        "consent_templates",
        ["consent_type", "form_type", "version"],
        unique=True,
    )
    op.create_index(
        "uq_consent_templates_active",
        "consent_templates",
        ["consent_type", "form_type"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )
    op.create_index("ix_consent_templates_form_active", "consent_templates", ["form_type", "is_active"], unique=False)

    op.create_table(
        "consent_records",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("application_form_id", sa.String(length=64), nullable=False),
        sa.Column("consent_template_id", sa.String(length=64), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("lead_id", sa.String(length=64), nullable=False),
        sa.Column("consent_type", consent_type, nullable=False),
        sa.Column("consent_given", sa.Boolean(), nullable=False),
        sa.Column("consent_method", consent_method, nullable=False),
        sa.Column("consent_text", sa.Text(), nullable=False),
        sa.Column("help_text_snapshot", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("access_code_hash", sa.String(length=64), nullable=True),
        sa.Column("recorded_by_user_id", sa.String(length=64), nullable=True),
        sa.Column("withdrawn_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["application_form_id"], ["application_forms.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["consent_template_id"], ["consent_templates.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recorded_by_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "application_form_id",
            "consent_template_id",
            "version",
            name="uq_consent_records_form_template_version",
        ),
    )
    op.create_index("ix_consent_records_lead_id", "consent_records", ["lead_id"], unique=False)
    op.create_index("idx_consent_lead_type", "consent_records", ["lead_id", "consent_type"], unique=False)
    op.create_index("idx_consent_recorded_at", "consent_records", ["recorded_at"], unique=False)

    op.create_table(
        "notification_logs",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("application_form_id", sa.String(length=64), nullable=False),
        sa.Column("lead_id", sa.String(length=64), nullable=False),
        sa.Column("event_type", notification_event_type, nullable=False),
        sa.Column("status", notification_status, nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("sent_to", sa.String(length=2048), nullable=True),
        sa.Column("note_created", sa.Boolean(), nullable=False),
        sa.Column("note_id", sa.String(length=64), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["application_form_id"], ["application_forms.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["note_id"], ["lead_notes.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_notification_logs_ready_for_review",
        "notification_logs",
        ["application_form_id"],
        unique=True,
        postgresql_where=sa.text("event_type = 'READY_FOR_REVIEW'"),
        sqlite_where=sa.text("event_type = 'READY_FOR_REVIEW'"),
    )
    op.create_index(
        "ix_notification_logs_form_event", "notification_logs", ["application_form_id", "event_type"], unique=False
    )
    op.create_index("ix_notification_logs_status", "notification_logs", ["status"], unique=False)


def downgrade() -> None:
    op.drop_table("notification_logs")
    op.drop_table("consent_records")
    op.drop_table("consent_templates")
    op.drop_table("unlock_attempts")
    op.drop_table("application_forms")
    op.drop_table("audit_logs")
    op.drop_table("lead_notes")
    op.drop_table("leads")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
