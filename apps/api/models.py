from sqlalchemy import (
    CheckConstraint, Column, Date, DateTime, ForeignKey, Index,
    Integer, JSON, Numeric, String, Text, Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func, text
from core.database import Base
import uuid
from typing import Optional
from datetime import datetime, timezone

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from drivers that drop tzinfo."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class User(Base):
    """
    Account row (owned by the auth service; read-only here).

    Deleting a user cascades to the connections where they are the patient
    and to the audit entries they authored.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    @property
    def public_name(self) -> str:
        if self.display_name:
            return self.display_name
        if self.email:
            return self.email.split("@")[0]
        return "User"


class CheckinResponse(Base):
    """
    Free-text wellness check-in with its AI analysis.

    ai_analysis shape: {"sentiment", "keywords", "suggestions", "risk_level"}.
    """

    __tablename__ = "checkin_responses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    check_in_text = Column(Text, nullable=False)
    mood_rating = Column(Text, nullable=True)  # great|good|okay|not_good|terrible
    stress_level = Column(Integer, nullable=True)  # 1-10
    selected_emotions = Column(JSONType, nullable=True)
    ai_analysis = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True)

    __table_args__ = (
        Index("ix_checkin_responses_user_created", "user_id", "created_at"),
    )


class MoodEntry(Base):
    """Quick mood log (sentiment score only, no text)."""

    __tablename__ = "mood_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    sentiment_score = Column(Numeric(3, 2), nullable=True)  # -1.00 .. 1.00
    sentiment_label = Column(String(50), nullable=True)
    check_in_date = Column(Date, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)


class CareCircleConnection(Base):
    """
    One patient <-> trusted person sharing relationship.

    Lifecycle: pending -> active | declined | revoked; active -> revoked.
    Transitions are driven by services.care_circle.state_machine; rows are
    only ever mutated through compare-and-set on ``status``.

    Invariants:
    - status == active implies trusted_user_id and accepted_at are set
      (enforced by the state machine, not a CHECK: trusted_user_id is SET NULL
      when the trusted account is deleted)
    - invite_token is always present and unique; it is rotated (never nulled)
      once the invite has been accepted or declined
    - trusted_email is stored lowercased and never changes
    """

    __tablename__ = "care_circle_connections"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    patient_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    trusted_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    trusted_email = Column(String(255), nullable=False, index=True)
    trusted_name = Column(String(255), nullable=True)

    sharing_tier = Column(Text, nullable=False, default="data_only")  # full|data_only
    status = Column(Text, nullable=False, default="pending", index=True)  # pending|active|declined|revoked

    invite_token = Column(String(128), nullable=False, unique=True)
    invite_token_expires_at = Column(DateTime(timezone=True), nullable=False)
    invited_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by = Column(Text, nullable=True)  # patient|trusted_person

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False)

    patient = relationship("User", foreign_keys=[patient_user_id], lazy="joined")
    trusted_user = relationship("User", foreign_keys=[trusted_user_id], lazy="joined")
    audit_logs = relationship(
        "CareCircleAuditLog",
        back_populates="connection",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("sharing_tier IN ('full', 'data_only')", name="ck_care_circle_sharing_tier"),
        CheckConstraint(
            "status IN ('pending', 'active', 'declined', 'revoked')",
            name="ck_care_circle_status",
        ),
        CheckConstraint(
            "revoked_by IS NULL OR revoked_by IN ('patient', 'trusted_person')",
            name="ck_care_circle_revoked_by",
        ),
        Index("ix_care_circle_patient_status", "patient_user_id", "status"),
        Index("ix_care_circle_trusted_status", "trusted_user_id", "status"),
        # At most one pending/active connection per (patient, email), even under racing invites.
        Index(
            "uq_care_circle_open_patient_email",
            "patient_user_id",
            "trusted_email",
            unique=True,
            postgresql_where=text("status IN ('pending', 'active')"),
            sqlite_where=text("status IN ('pending', 'active')"),
        ),
        # At most one active connection per (patient, trusted person).
        Index(
            "uq_care_circle_active_patient_trusted",
            "patient_user_id",
            "trusted_user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )


class CareCircleAuditLog(Base):
    """
    Append-only audit trail for a connection.

    Non-negotiable invariants:
    - write-only from the application (no update/delete in code paths)
    - removed only by cascade when the connection goes away
    """

    __tablename__ = "care_circle_audit_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    connection_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("care_circle_connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    actor_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    action_type = Column(Text, nullable=False, index=True)
    details = Column(JSONType, nullable=True)
    ip_address = Column(String(45), nullable=True)  # fits IPv6
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True)

    connection = relationship("CareCircleConnection", back_populates="audit_logs")
    actor = relationship("User", lazy="joined")

    __table_args__ = (
        CheckConstraint(
            "action_type IN ('invited', 'accepted', 'declined', 'revoked', 'tier_changed', "
            "'viewed_summary', 'viewed_checkins', 'viewed_moods', 'exported_data')",
            name="ck_care_circle_audit_action_type",
        ),
        Index("ix_care_circle_audit_connection_created", "connection_id", "created_at"),
        Index("ix_care_circle_audit_actor_action_created", "actor_user_id", "action_type", "created_at"),
    )
