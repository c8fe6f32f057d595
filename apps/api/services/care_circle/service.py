"""
Care Circle service facade.

Wires the store, audit logger, invitation manager and state machine to one
request's session and dispatcher, and owns the read-side views (connection
listing, audit history, activity, access log).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.config import settings
from models import CareCircleConnection, User, as_utc, utcnow
from services.care_circle.audit import AuditLogger, serialize_entry
from services.care_circle.errors import CareCircleForbiddenError, CareCircleNotFoundError
from services.care_circle.invitations import InvitationManager
from services.care_circle.notifications import NotificationDispatcher
from services.care_circle.permissions import get_permissions, is_patient
from services.care_circle.state_machine import ConnectionStateMachine
from services.care_circle.states import AuditAction, ConnectionStatus
from services.care_circle.store import ConnectionStore

logger = logging.getLogger(__name__)


def _user_ref(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "name": user.public_name, "email": user.email}


def serialize_for_patient(connection: CareCircleConnection) -> Dict[str, Any]:
    return {
        "id": str(connection.id),
        "trusted_email": connection.trusted_email,
        "trusted_name": connection.trusted_name,
        "trusted_user": _user_ref(connection.trusted_user),
        "sharing_tier": connection.sharing_tier,
        "status": connection.status,
        "invited_at": as_utc(connection.invited_at),
        "invite_expires_at": (
            as_utc(connection.invite_token_expires_at)
            if connection.status == ConnectionStatus.PENDING.value
            else None
        ),
        "accepted_at": as_utc(connection.accepted_at),
        "revoked_at": as_utc(connection.revoked_at),
        "revoked_by": connection.revoked_by,
    }


def serialize_for_trusted(connection: CareCircleConnection) -> Dict[str, Any]:
    return {
        "id": str(connection.id),
        "patient": _user_ref(connection.patient),
        "sharing_tier": connection.sharing_tier,
        "status": connection.status,
        "accepted_at": as_utc(connection.accepted_at),
        "revoked_at": as_utc(connection.revoked_at),
        "revoked_by": connection.revoked_by,
        "permissions": get_permissions(connection).to_dict(),
    }


class CareCircleService:
    def __init__(
        self,
        db: Session,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.clock = clock
        self.store = ConnectionStore(db)
        self.audit = AuditLogger(db)
        self.invitations = InvitationManager(
            db, dispatcher, audit=self.audit, store=self.store, clock=clock
        )
        self.state_machine = ConnectionStateMachine(
            db, dispatcher, audit=self.audit, store=self.store, clock=clock
        )

    def list_connections(self, user: User) -> Dict[str, Any]:
        """
        Both sides of the user's Care Circle.

        Expired pending invites are swept first, so they come back as revoked.
        """
        now = self.clock()
        self.invitations.expire_pending_invites(now)

        closed_since = now - timedelta(days=settings.CARE_CIRCLE_HISTORY_DAYS)
        as_patient = self.store.list_for_patient(user.id, closed_since)
        as_trusted = self.store.list_for_trusted(user.id, closed_since)

        def count(rows: Iterable[CareCircleConnection], status: ConnectionStatus) -> int:
            return sum(1 for row in rows if row.status == status.value)

        return {
            "as_patient": [serialize_for_patient(c) for c in as_patient],
            "as_trusted_person": [serialize_for_trusted(c) for c in as_trusted],
            "counts": {
                "as_patient": {
                    "total": len(as_patient),
                    "active": count(as_patient, ConnectionStatus.ACTIVE),
                    "pending": count(as_patient, ConnectionStatus.PENDING),
                },
                "as_trusted_person": {
                    "total": len(as_trusted),
                    "active": count(as_trusted, ConnectionStatus.ACTIVE),
                },
            },
        }

    def audit_history(
        self,
        connection_id: UUID,
        actor_user_id: int,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        connection = self.store.get(connection_id)
        if connection is None:
            raise CareCircleNotFoundError("Connection not found")
        if not is_patient(connection, actor_user_id):
            raise CareCircleForbiddenError("Only the patient can view the audit log")

        entries, total = self.audit.connection_history(connection.id, limit=limit, offset=offset)
        return {
            "connection_id": str(connection.id),
            "entries": [serialize_entry(e) for e in entries],
            "action_counts": self.audit.count_by_action(connection.id),
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "has_more": offset + len(entries) < total,
            },
        }

    def activity(
        self,
        user_id: int,
        action_types: Optional[List[AuditAction]] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        entries, total = self.audit.user_activity(user_id, action_types, limit=limit, offset=offset)
        return {
            "entries": [serialize_entry(e) for e in entries],
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "has_more": offset + len(entries) < total,
            },
        }

    def access_log(self, patient_user_id: int, limit: int = 20) -> Dict[str, Any]:
        """Recent reads of the patient's data across all their connections."""
        connection_ids = self.store.connection_ids_for_patient(patient_user_id)
        entries = self.audit.recent_access(connection_ids, limit=limit)
        return {"entries": [serialize_entry(e) for e in entries]}
