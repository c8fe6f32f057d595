"""
Care Circle Audit Logger

Append-only trail of every connection state change and every read of shared
data. Entries are committed on their own, after the operation they describe;
a failed audit write is logged to ``carecircle.audit`` and never fails the
caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.logging import AUDIT_LOGGER_NAME
from models import CareCircleAuditLog, utcnow
from services.care_circle.states import ACCESS_ACTIONS, AuditAction

audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)

MAX_USER_AGENT_LENGTH = 500
MAX_IP_LENGTH = 45


@dataclass(frozen=True)
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request) -> "RequestContext":
        """Client IP (first proxy hop wins) and a truncated user agent."""
        ip_address = None
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            ip_address = forwarded_for.split(",")[0].strip()
        if not ip_address:
            ip_address = request.headers.get("x-real-ip")
        if not ip_address and request.client:
            ip_address = request.client.host

        user_agent = request.headers.get("user-agent")
        return cls(
            ip_address=ip_address[:MAX_IP_LENGTH] if ip_address else None,
            user_agent=user_agent[:MAX_USER_AGENT_LENGTH] if user_agent else None,
        )


def _action_value(action) -> str:
    return AuditAction(action).value


class AuditLogger:
    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        connection_id: UUID,
        actor_user_id: int,
        action: AuditAction,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
        now: Optional[datetime] = None,
    ) -> Optional[CareCircleAuditLog]:
        """
        Append one entry. Returns None (and logs) instead of raising.
        """
        context = context or RequestContext()
        try:
            entry = CareCircleAuditLog(
                connection_id=connection_id,
                actor_user_id=actor_user_id,
                action_type=_action_value(action),
                details=details or {},
                ip_address=context.ip_address,
                user_agent=(context.user_agent or "")[:MAX_USER_AGENT_LENGTH] or None,
                created_at=now or utcnow(),
            )
            self.db.add(entry)
            self.db.commit()
            return entry
        except Exception as e:
            try:
                self.db.rollback()
            except Exception as rollback_error:
                audit_logger.error(f"Audit rollback failed: {rollback_error}")
            audit_logger.error(
                f"Failed to write care circle audit entry: {e}",
                extra={"extra_fields": {
                    "connection_id": str(connection_id),
                    "actor_user_id": actor_user_id,
                    "action_type": str(getattr(action, "value", action)),
                }},
            )
            return None

    def connection_history(
        self,
        connection_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[CareCircleAuditLog], int]:
        """Entries for one connection, newest first, with the total count."""
        query = self.db.query(CareCircleAuditLog).filter(
            CareCircleAuditLog.connection_id == connection_id
        )
        total = query.count()
        entries = (
            query.order_by(CareCircleAuditLog.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return entries, total

    def user_activity(
        self,
        actor_user_id: int,
        action_types: Optional[Iterable[AuditAction]] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[CareCircleAuditLog], int]:
        query = self.db.query(CareCircleAuditLog).filter(
            CareCircleAuditLog.actor_user_id == actor_user_id
        )
        if action_types:
            query = query.filter(
                CareCircleAuditLog.action_type.in_([_action_value(a) for a in action_types])
            )
        total = query.count()
        entries = (
            query.order_by(CareCircleAuditLog.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return entries, total

    def count_by_action(self, connection_id: UUID) -> Dict[str, int]:
        rows = (
            self.db.query(CareCircleAuditLog.action_type, func.count(CareCircleAuditLog.id))
            .filter(CareCircleAuditLog.connection_id == connection_id)
            .group_by(CareCircleAuditLog.action_type)
            .all()
        )
        return {action_type: count for action_type, count in rows}

    def recent_access(
        self,
        connection_ids: Sequence[UUID],
        limit: int = 20,
        access_only: bool = True,
    ) -> List[CareCircleAuditLog]:
        """Latest entries across ``connection_ids``; reads of shared data only by default."""
        if not connection_ids:
            return []
        query = self.db.query(CareCircleAuditLog).filter(
            CareCircleAuditLog.connection_id.in_(list(connection_ids))
        )
        if access_only:
            query = query.filter(
                CareCircleAuditLog.action_type.in_([a.value for a in ACCESS_ACTIONS])
            )
        return query.order_by(CareCircleAuditLog.created_at.desc()).limit(limit).all()


def serialize_entry(entry: CareCircleAuditLog) -> Dict[str, Any]:
    actor = entry.actor
    return {
        "id": str(entry.id),
        "connection_id": str(entry.connection_id),
        "action_type": entry.action_type,
        "details": entry.details or {},
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "created_at": entry.created_at,
        "actor": {
            "id": actor.id,
            "name": actor.public_name,
            "email": actor.email,
        } if actor else None,
    }
