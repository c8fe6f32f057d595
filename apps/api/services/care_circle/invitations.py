"""
Care Circle Invitation Manager

Issues, re-issues and previews time-bounded invite tokens, and sweeps pending
invites whose token has run out.

Rules:
- one pending/active connection per (patient, email)
- the patient cannot invite their own address
- tokens are 96 hex chars, valid for CARE_CIRCLE_INVITE_TTL_DAYS days
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional
from uuid import UUID

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.orm import Session

from core.config import settings
from models import CareCircleConnection, User, as_utc, utcnow
from services.care_circle.audit import AuditLogger, RequestContext
from services.care_circle.errors import (
    CareCircleConflictError,
    ConcurrentUpdateError,
    CareCircleForbiddenError,
    CareCircleNotFoundError,
    CareCircleValidationError,
    InviteGoneError,
)
from services.care_circle.notifications import NotificationDispatcher
from services.care_circle.permissions import is_patient
from services.care_circle.store import ConnectionStore
from services.care_circle.states import (
    AuditAction,
    ConnectionEvent,
    ConnectionStatus,
    DEFAULT_TIER,
    SharingTier,
    next_status,
    parse_tier,
)
from services.care_circle.tokens import (
    generate_invite_token,
    is_expired,
    token_expiry,
    validate_token_shape,
)

logger = logging.getLogger(__name__)

TIER_DESCRIPTIONS = {
    SharingTier.FULL: "Full access to mood data, check-ins, and summaries",
    SharingTier.DATA_ONLY: "Access to mood summaries and trends only",
}

WHAT_THIS_MEANS = [
    "You will be able to view their wellness data",
    "You may receive alerts if they request support",
    "You are NOT responsible for their safety",
    "You can disconnect at any time",
]

_GONE_MESSAGES = {
    ConnectionStatus.ACTIVE.value: "This invitation has already been accepted",
    ConnectionStatus.DECLINED.value: "This invitation has already been declined",
    ConnectionStatus.REVOKED.value: "This invitation has been cancelled",
}

UNKNOWN_INVITE_MESSAGE = "Invitation not found or has already been used"


def normalize_email(email: Optional[str]) -> str:
    """Trim and lowercase; raise CareCircleValidationError on anything that is not an address."""
    candidate = (email or "").strip()
    if not candidate or len(candidate) > 255:
        raise CareCircleValidationError("A valid email address is required", field="email")
    try:
        validated = validate_email(candidate, check_deliverability=False)
    except EmailNotValidError:
        raise CareCircleValidationError("A valid email address is required", field="email") from None
    return validated.normalized.lower()


def build_invite_url(token: str) -> str:
    return f"{settings.WEB_APP_BASE_URL.rstrip('/')}/care-circle/invite/{token}"


def invite_message(patient_name: str, invite_url: str) -> str:
    return f"{patient_name} would like to add you to their Care Circle. Accept here: {invite_url}"


class InvitationManager:
    def __init__(
        self,
        db: Session,
        dispatcher: NotificationDispatcher,
        audit: Optional[AuditLogger] = None,
        store: Optional[ConnectionStore] = None,
        clock: Callable[[], datetime] = utcnow,
        token_factory: Callable[[], str] = generate_invite_token,
    ):
        self.db = db
        self.store = store or ConnectionStore(db)
        self.audit = audit or AuditLogger(db)
        self.dispatcher = dispatcher
        self.clock = clock
        self.token_factory = token_factory

    # ------------------------------------------------------------------

    def invite(
        self,
        patient: User,
        email: str,
        name: Optional[str] = None,
        tier: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> CareCircleConnection:
        trusted_email = normalize_email(email)
        if patient.email and trusted_email == patient.email.strip().lower():
            raise CareCircleValidationError("You cannot add yourself as a trusted person", field="email")

        existing = self.store.find_open(patient.id, trusted_email)
        if existing is not None:
            if existing.status == ConnectionStatus.ACTIVE.value:
                raise CareCircleConflictError("This person is already in your Care Circle")
            raise CareCircleConflictError("An invitation is already pending for this email")

        sharing_tier = parse_tier(tier) or DEFAULT_TIER
        trusted_name = (name or "").strip()[:255] or None
        now = self.clock()

        connection = self.store.create(
            patient_user_id=patient.id,
            trusted_email=trusted_email,
            trusted_name=trusted_name,
            sharing_tier=sharing_tier.value,
            token_factory=self.token_factory,
            expires_at=token_expiry(now, settings.CARE_CIRCLE_INVITE_TTL_DAYS),
            now=now,
        )
        logger.info(
            "Care Circle invite created",
            extra={"extra_fields": {
                "connection_id": str(connection.id),
                "patient_user_id": patient.id,
                "sharing_tier": sharing_tier.value,
            }},
        )

        self.audit.record(
            connection.id,
            patient.id,
            AuditAction.INVITED,
            {"trusted_email": trusted_email, "sharing_tier": sharing_tier.value},
            context,
            now=now,
        )
        self._send_invite(connection, patient)
        return connection

    def resend(self, connection_id: UUID, actor_user_id: int) -> CareCircleConnection:
        """Re-issue the token of a pending or declined invite and send it again."""
        connection = self.store.get(connection_id)
        if connection is None:
            raise CareCircleNotFoundError("Connection not found")
        if not is_patient(connection, actor_user_id):
            raise CareCircleForbiddenError("Only the patient can resend invitations")

        current = ConnectionStatus(connection.status)
        target = next_status(current, ConnectionEvent.RESEND)

        other = self.store.find_open(connection.patient_user_id, connection.trusted_email)
        if other is not None and other.id != connection.id:
            raise CareCircleConflictError("An invitation is already open for this email")

        now = self.clock()
        updated = self.store.compare_and_set(
            connection,
            current,
            {
                "status": target.value,
                "invite_token": self.token_factory(),
                "invite_token_expires_at": token_expiry(now, settings.CARE_CIRCLE_INVITE_TTL_DAYS),
                "invited_at": now,
            },
            now=now,
        )
        if not updated:
            raise ConcurrentUpdateError(
                "This invitation has already been processed",
                status=connection.status,
                event=ConnectionEvent.RESEND.value,
            )

        logger.info(
            "Care Circle invite resent",
            extra={"extra_fields": {"connection_id": str(connection.id)}},
        )
        self._send_invite(connection, connection.patient)
        return connection

    def preview(self, token: str) -> Dict[str, Any]:
        """Public view of a pending invite; reveals nothing beyond the patient's display name."""
        validate_token_shape(token)
        connection = self.store.get_by_token(token)
        if connection is None:
            raise CareCircleNotFoundError(UNKNOWN_INVITE_MESSAGE)

        if connection.status != ConnectionStatus.PENDING.value:
            raise InviteGoneError(
                _GONE_MESSAGES.get(connection.status, "Invitation is no longer valid"),
                status=connection.status,
            )
        if is_expired(connection.invite_token_expires_at, self.clock()):
            raise InviteGoneError("This invitation has expired", status="expired")

        tier = parse_tier(connection.sharing_tier) or DEFAULT_TIER
        return {
            "patient_name": connection.patient.public_name if connection.patient else "A Care Circle user",
            "sharing_tier": tier.value,
            "sharing_tier_description": TIER_DESCRIPTIONS[tier],
            "invited_at": as_utc(connection.invited_at),
            "expires_at": as_utc(connection.invite_token_expires_at),
            "what_this_means": list(WHAT_THIS_MEANS),
        }

    def expire_pending_invites(self, now: Optional[datetime] = None) -> int:
        expired = self.store.expire_pending(now or self.clock())
        if expired:
            logger.info(
                f"Expired {expired} pending Care Circle invitation(s)",
                extra={"extra_fields": {"expired_count": expired}},
            )
        return expired

    # ------------------------------------------------------------------

    def _send_invite(self, connection: CareCircleConnection, patient: Optional[User]) -> None:
        self.dispatcher.dispatch(
            "invite",
            connection.trusted_email,
            patient_name=patient.public_name if patient else None,
            trusted_name=connection.trusted_name,
            sharing_tier=connection.sharing_tier,
            invite_url=build_invite_url(connection.invite_token),
            expires_in_days=settings.CARE_CIRCLE_INVITE_TTL_DAYS,
        )
