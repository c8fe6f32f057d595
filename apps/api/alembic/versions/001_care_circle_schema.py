"""care_circle_schema

Revision ID: 001_care_circle
Revises:
Create Date: 2026-10-18

Creates the tables the Care Circle API reads and writes:
- users, checkin_responses, mood_entries (read-only here, owned elsewhere)
- care_circle_connections
- care_circle_audit_logs (append-only; removed only by cascade)
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


revision = "001_care_circle"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "checkin_responses",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("check_in_text", sa.Text(), nullable=False),
        sa.Column("mood_rating", sa.Text(), nullable=True),
        sa.Column("stress_level", sa.Integer(), nullable=True),
        sa.Column("selected_emotions", JSONB(), nullable=True),
        sa.Column("ai_analysis", JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_checkin_responses_user_id", "checkin_responses", ["user_id"])
    op.create_index("ix_checkin_responses_created_at", "checkin_responses", ["created_at"])
    op.create_index("ix_checkin_responses_user_created", "checkin_responses", ["user_id", "created_at"])

    op.create_table(
        "mood_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("sentiment_score", sa.Numeric(3, 2), nullable=True),
        sa.Column("sentiment_label", sa.String(length=50), nullable=True),
        sa.Column("check_in_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_mood_entries_user_id", "mood_entries", ["user_id"])
    op.create_index("ix_mood_entries_check_in_date", "mood_entries", ["check_in_date"])

    op.create_table(
        "care_circle_connections",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("patient_user_id", sa.Integer(), nullable=False),
        sa.Column("trusted_user_id", sa.Integer(), nullable=True),
        sa.Column("trusted_email", sa.String(length=255), nullable=False),
        sa.Column("trusted_name", sa.String(length=255), nullable=True),
        sa.Column("sharing_tier", sa.Text(), nullable=False, server_default=sa.text("'data_only'")),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("invite_token", sa.String(length=128), nullable=False),
        sa.Column("invite_token_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("invited_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("sharing_tier IN ('full', 'data_only')", name="ck_care_circle_sharing_tier"),
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'declined', 'revoked')",
            name="ck_care_circle_status",
        ),
        sa.CheckConstraint(
            "revoked_by IS NULL OR revoked_by IN ('patient', 'trusted_person')",
            name="ck_care_circle_revoked_by",
        ),
        sa.ForeignKeyConstraint(["patient_user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["trusted_user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invite_token", name="uq_care_circle_invite_token"),
    )
    op.create_index("ix_care_circle_connections_patient_user_id", "care_circle_connections", ["patient_user_id"])
    op.create_index("ix_care_circle_connections_trusted_user_id", "care_circle_connections", ["trusted_user_id"])
    op.create_index("ix_care_circle_connections_trusted_email", "care_circle_connections", ["trusted_email"])
    op.create_index("ix_care_circle_connections_status", "care_circle_connections", ["status"])
    op.create_index("ix_care_circle_patient_status", "care_circle_connections", ["patient_user_id", "status"])
    op.create_index("ix_care_circle_trusted_status", "care_circle_connections", ["trusted_user_id", "status"])
    # Enforces at most one open invite/connection per (patient, email) under concurrent invites.
    op.create_index(
        "uq_care_circle_open_patient_email",
        "care_circle_connections",
        ["patient_user_id", "trusted_email"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'active')"),
    )
    op.create_index(
        "uq_care_circle_active_patient_trusted",
        "care_circle_connections",
        ["patient_user_id", "trusted_user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "care_circle_audit_logs",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("connection_id", UUID(as_uuid=True), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=False),
        sa.Column("action_type", sa.Text(), nullable=False),
        sa.Column("details", JSONB(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint(
            "action_type IN ('invited', 'accepted', 'declined', 'revoked', 'tier_changed', "
            "'viewed_summary', 'viewed_checkins', 'viewed_moods', 'exported_data')",
            name="ck_care_circle_audit_action_type",
        ),
        sa.ForeignKeyConstraint(["connection_id"], ["care_circle_connections.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_care_circle_audit_logs_connection_id", "care_circle_audit_logs", ["connection_id"])
    op.create_index("ix_care_circle_audit_logs_actor_user_id", "care_circle_audit_logs", ["actor_user_id"])
    op.create_index("ix_care_circle_audit_logs_action_type", "care_circle_audit_logs", ["action_type"])
    op.create_index("ix_care_circle_audit_logs_created_at", "care_circle_audit_logs", ["created_at"])
    op.create_index(
        "ix_care_circle_audit_connection_created", "care_circle_audit_logs", ["connection_id", "created_at"]
    )
    op.create_index(
        "ix_care_circle_audit_actor_action_created",
        "care_circle_audit_logs",
        ["actor_user_id", "action_type", "created_at"],
    )


def downgrade() -> None:
    op.drop_table("care_circle_audit_logs")
    op.drop_table("care_circle_connections")
    op.drop_table("mood_entries")
    op.drop_table("checkin_responses")
    op.drop_table("users")
