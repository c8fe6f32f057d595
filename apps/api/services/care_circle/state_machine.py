"""
Care Circle Connection State Machine

accept / decline / revoke / change_tier over the Connection Store.

Each operation:
1. loads the row and checks the actor
2. asks ``next_status`` whether the event is legal from the current status
3. persists with compare-and-set on the status it read; losing the race
   raises ConcurrentUpdateError instead of overwriting
4. records one audit entry, then dispatches the notification

Steps 4 and later run after the transition is committed and cannot undo it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from models import CareCircleConnection, User, utcnow
from services.care_circle.audit import AuditLogger, RequestContext
from services.care_circle.errors import (
    CareCircleConflictError,
    CareCircleForbiddenError,
    CareCircleNotFoundError,
    CareCircleValidationError,
    ConcurrentUpdateError,
    InviteExpiredError,
)
from services.care_circle.invitations import UNKNOWN_INVITE_MESSAGE
from services.care_circle.notifications import NotificationDispatcher
from services.care_circle.permissions import (
    SharingPermissions,
    get_permissions,
    is_patient,
    is_trusted_person,
)
from services.care_circle.states import (
    AuditAction,
    ConnectionEvent,
    ConnectionStatus,
    RevokedBy,
    next_status,
    parse_tier,
)
from services.care_circle.store import ConnectionStore
from services.care_circle.tokens import generate_invite_token, is_expired, validate_token_shape

logger = logging.getLogger(__name__)


class ConnectionStateMachine:
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

    def _transition(
        self,
        connection: CareCircleConnection,
        event: ConnectionEvent,
        values: dict,
        now: datetime,
    ) -> None:
        current = ConnectionStatus(connection.status)
        target = next_status(current, event)
        payload = dict(values)
        payload["status"] = target.value
        if not self.store.compare_and_set(connection, current, payload, now=now):
            logger.warning(
                f"Lost compare-and-set on connection {connection.id}",
                extra={"extra_fields": {"event": event.value, "expected": current.value}},
            )
            raise ConcurrentUpdateError(
                "This invitation has already been processed"
                if current == ConnectionStatus.PENDING
                else "This connection has already been updated",
                status=connection.status,
                event=event.value,
            )

    def _get_or_404(self, connection_id: UUID) -> CareCircleConnection:
        connection = self.store.get(connection_id)
        if connection is None:
            raise CareCircleNotFoundError("Connection not found")
        return connection

    # ------------------------------------------------------------------

    def accept(
        self,
        token: str,
        trusted_user: User,
        context: Optional[RequestContext] = None,
    ) -> Tuple[CareCircleConnection, SharingPermissions]:
        validate_token_shape(token)
        connection = self.store.get_by_token(token)
        if connection is None:
            raise CareCircleNotFoundError("Invitation not found")
        if connection.patient_user_id == trusted_user.id:
            raise CareCircleValidationError("You cannot accept your own invitation")

        # Raises with a status-specific message for anything but pending.
        next_status(ConnectionStatus(connection.status), ConnectionEvent.ACCEPT)
        now = self.clock()
        if is_expired(connection.invite_token_expires_at, now):
            raise InviteExpiredError("This invitation has expired")
        # One active connection per (patient, trusted person), whichever address was invited.
        if self.store.find_active_between(connection.patient_user_id, trusted_user.id) is not None:
            raise CareCircleConflictError("You are already in this person's Care Circle")

        self._transition(
            connection,
            ConnectionEvent.ACCEPT,
            {
                "trusted_user_id": trusted_user.id,
                "accepted_at": now,
                "invite_token": self.token_factory(),
            },
            now,
        )
        logger.info(
            "Care Circle invite accepted",
            extra={"extra_fields": {"connection_id": str(connection.id), "trusted_user_id": trusted_user.id}},
        )

        self.audit.record(
            connection.id,
            trusted_user.id,
            AuditAction.ACCEPTED,
            {"patient_user_id": connection.patient_user_id},
            context,
            now=now,
        )
        patient = connection.patient
        self.dispatcher.dispatch(
            "accepted",
            patient.email if patient else None,
            patient_name=patient.public_name if patient else None,
            trusted_name=connection.trusted_name or trusted_user.public_name,
            trusted_email=connection.trusted_email,
        )
        return connection, get_permissions(connection)

    def decline(self, token: str, context: Optional[RequestContext] = None) -> CareCircleConnection:
        """Public: the token is the only credential, so unknown tokens get a generic message."""
        validate_token_shape(token)
        connection = self.store.get_by_token(token)
        if connection is None:
            raise CareCircleNotFoundError(UNKNOWN_INVITE_MESSAGE)

        next_status(ConnectionStatus(connection.status), ConnectionEvent.DECLINE)
        now = self.clock()
        if is_expired(connection.invite_token_expires_at, now):
            raise InviteExpiredError("This invitation has expired")

        self._transition(
            connection,
            ConnectionEvent.DECLINE,
            {"invite_token": self.token_factory()},
            now,
        )
        logger.info(
            "Care Circle invite declined",
            extra={"extra_fields": {"connection_id": str(connection.id)}},
        )

        # The invited person may have no account; the entry is attributed to the patient.
        self.audit.record(
            connection.id,
            connection.patient_user_id,
            AuditAction.DECLINED,
            {"declined_by": "invited_person"},
            context,
            now=now,
        )
        patient = connection.patient
        self.dispatcher.dispatch(
            "declined",
            patient.email if patient else None,
            patient_name=patient.public_name if patient else None,
            trusted_name=connection.trusted_name,
            trusted_email=connection.trusted_email,
        )
        return connection

    def revoke(
        self,
        connection_id: UUID,
        actor_user_id: int,
        context: Optional[RequestContext] = None,
    ) -> CareCircleConnection:
        connection = self._get_or_404(connection_id)
        if is_patient(connection, actor_user_id):
            revoked_by = RevokedBy.PATIENT
        elif is_trusted_person(connection, actor_user_id):
            revoked_by = RevokedBy.TRUSTED_PERSON
        else:
            raise CareCircleForbiddenError("You do not have permission to revoke this connection")

        now = self.clock()
        self._transition(
            connection,
            ConnectionEvent.REVOKE,
            {"revoked_at": now, "revoked_by": revoked_by.value},
            now,
        )
        logger.info(
            "Care Circle connection revoked",
            extra={"extra_fields": {"connection_id": str(connection.id), "revoked_by": revoked_by.value}},
        )

        self.audit.record(
            connection.id,
            actor_user_id,
            AuditAction.REVOKED,
            {"revoked_by": revoked_by.value},
            context,
            now=now,
        )

        if revoked_by == RevokedBy.PATIENT:
            recipient = connection.trusted_user
            actor = connection.patient
        else:
            recipient = connection.patient
            actor = connection.trusted_user
        self.dispatcher.dispatch(
            "revoked",
            recipient.email if recipient else None,
            other_party_name=actor.public_name if actor else None,
            revoked_by=revoked_by.value,
        )
        return connection

    def change_tier(
        self,
        connection_id: UUID,
        actor_user_id: int,
        new_tier: str,
        context: Optional[RequestContext] = None,
    ) -> Tuple[CareCircleConnection, str]:
        """Returns the updated connection and the tier it had before."""
        tier = parse_tier(new_tier)
        if tier is None:
            raise CareCircleValidationError(
                "Invalid sharing tier. Must be 'full' or 'data_only'", field="sharing_tier"
            )

        connection = self._get_or_404(connection_id)
        if not is_patient(connection, actor_user_id):
            raise CareCircleForbiddenError("Only the patient can change sharing tier")

        next_status(ConnectionStatus(connection.status), ConnectionEvent.CHANGE_TIER)
        old_tier = connection.sharing_tier
        if old_tier == tier.value:
            raise CareCircleValidationError("Sharing tier is already set to this value", field="sharing_tier")

        now = self.clock()
        self._transition(connection, ConnectionEvent.CHANGE_TIER, {"sharing_tier": tier.value}, now)
        logger.info(
            "Care Circle sharing tier changed",
            extra={"extra_fields": {
                "connection_id": str(connection.id),
                "old_tier": old_tier,
                "new_tier": tier.value,
            }},
        )

        self.audit.record(
            connection.id,
            actor_user_id,
            AuditAction.TIER_CHANGED,
            {"old_tier": old_tier, "new_tier": tier.value},
            context,
            now=now,
        )
        return connection, old_tier
