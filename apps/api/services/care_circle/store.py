"""
Connection Store

Durable access to care_circle_connections. Every status change goes through
``compare_and_set`` so that racing requests on one token or id produce exactly
one winner; token uniqueness is left to the unique index.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models import CareCircleConnection
from services.care_circle.errors import CareCircleConflictError, CareCircleInternalError
from services.care_circle.states import ConnectionEvent, ConnectionStatus, OPEN_STATUSES, next_status

logger = logging.getLogger(__name__)

MAX_TOKEN_ATTEMPTS = 3

_CLOSED_STATUSES = [ConnectionStatus.DECLINED.value, ConnectionStatus.REVOKED.value]
_OPEN_STATUSES = [s.value for s in OPEN_STATUSES]


class ConnectionStore:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Connection store failure during {operation}: {e}",
                extra={"extra_fields": {"operation": operation}},
            )
            raise CareCircleInternalError("Care Circle storage is unavailable") from e

    # -- reads -------------------------------------------------------------

    def get(self, connection_id: UUID) -> Optional[CareCircleConnection]:
        with self._guard("get"):
            return self.db.get(CareCircleConnection, connection_id)

    def get_by_token(self, token: str) -> Optional[CareCircleConnection]:
        with self._guard("get_by_token"):
            return (
                self.db.query(CareCircleConnection)
                .filter(CareCircleConnection.invite_token == token)
                .first()
            )

    def find_open(self, patient_user_id: int, trusted_email: str) -> Optional[CareCircleConnection]:
        """The pending or active connection for (patient, email), if any."""
        with self._guard("find_open"):
            return (
                self.db.query(CareCircleConnection)
                .filter(
                    CareCircleConnection.patient_user_id == patient_user_id,
                    CareCircleConnection.trusted_email == trusted_email,
                    CareCircleConnection.status.in_(_OPEN_STATUSES),
                )
                .first()
            )

    def find_active_between(self, patient_user_id: int, trusted_user_id: int) -> Optional[CareCircleConnection]:
        with self._guard("find_active_between"):
            return (
                self.db.query(CareCircleConnection)
                .filter(
                    CareCircleConnection.patient_user_id == patient_user_id,
                    CareCircleConnection.trusted_user_id == trusted_user_id,
                    CareCircleConnection.status == ConnectionStatus.ACTIVE.value,
                )
                .first()
            )

    def list_for_patient(self, user_id: int, closed_since: datetime) -> List[CareCircleConnection]:
        return self._list_for(CareCircleConnection.patient_user_id, user_id, closed_since)

    def list_for_trusted(self, user_id: int, closed_since: datetime) -> List[CareCircleConnection]:
        return self._list_for(CareCircleConnection.trusted_user_id, user_id, closed_since)

    def _list_for(self, column, user_id: int, closed_since: datetime) -> List[CareCircleConnection]:
        """Open connections plus declined/revoked ones touched since ``closed_since``."""
        with self._guard("list"):
            return (
                self.db.query(CareCircleConnection)
                .filter(
                    column == user_id,
                    or_(
                        CareCircleConnection.status.in_(_OPEN_STATUSES),
                        and_(
                            CareCircleConnection.status.in_(_CLOSED_STATUSES),
                            CareCircleConnection.updated_at >= closed_since,
                        ),
                    ),
                )
                .order_by(CareCircleConnection.created_at.desc())
                .all()
            )

    def connection_ids_for_patient(self, user_id: int) -> List[UUID]:
        with self._guard("connection_ids_for_patient"):
            rows = (
                self.db.query(CareCircleConnection.id)
                .filter(CareCircleConnection.patient_user_id == user_id)
                .all()
            )
            return [row.id for row in rows]

    # -- writes ------------------------------------------------------------

    def create(
        self,
        *,
        patient_user_id: int,
        trusted_email: str,
        trusted_name: Optional[str],
        sharing_tier: str,
        token_factory: Callable[[], str],
        expires_at: datetime,
        now: datetime,
    ) -> CareCircleConnection:
        """
        Insert a pending connection.

        A token collision on the unique index is retried with a fresh token.
        Losing the open-connection index to a concurrent invite is a conflict.
        """
        for attempt in range(1, MAX_TOKEN_ATTEMPTS + 1):
            connection = CareCircleConnection(
                patient_user_id=patient_user_id,
                trusted_email=trusted_email,
                trusted_name=trusted_name,
                sharing_tier=sharing_tier,
                status=ConnectionStatus.PENDING.value,
                invite_token=token_factory(),
                invite_token_expires_at=expires_at,
                invited_at=now,
                created_at=now,
                updated_at=now,
            )
            try:
                self.db.add(connection)
                self.db.commit()
                return connection
            except IntegrityError as e:
                self.db.rollback()
                # A concurrent invite to the same address won the open-connection index.
                if self.find_open(patient_user_id, trusted_email) is not None:
                    raise CareCircleConflictError("An invitation is already pending for this email") from e
                if attempt == MAX_TOKEN_ATTEMPTS:
                    logger.error(f"Could not insert connection after {attempt} attempts: {e}")
                    raise CareCircleInternalError("Failed to create invitation") from e
                logger.warning(f"Invite insert collided (attempt {attempt}), retrying with a new token")
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Connection store failure during create: {e}")
                raise CareCircleInternalError("Care Circle storage is unavailable") from e
        raise CareCircleInternalError("Failed to create invitation")

    def compare_and_set(
        self,
        connection: CareCircleConnection,
        expected_status: ConnectionStatus,
        values: Dict[str, Any],
        *,
        now: datetime,
    ) -> bool:
        """
        Apply ``values`` only if the row is still in ``expected_status``.

        Returns False when another writer got there first. On success the
        in-memory ``connection`` is refreshed from the row.
        """
        payload = dict(values)
        payload["updated_at"] = now
        with self._guard("compare_and_set"):
            try:
                updated = (
                    self.db.query(CareCircleConnection)
                    .filter(
                        CareCircleConnection.id == connection.id,
                        CareCircleConnection.status == ConnectionStatus(expected_status).value,
                    )
                    .update(payload, synchronize_session=False)
                )
                self.db.commit()
            except IntegrityError as e:
                # A concurrent accept already activated this (patient, trusted person) pair.
                self.db.rollback()
                raise CareCircleConflictError("You are already in this person's Care Circle") from e
            self.db.refresh(connection)
        return updated == 1

    def expire_pending(self, now: datetime) -> int:
        """Move every pending connection past its token expiry to revoked."""
        with self._guard("expire_pending"):
            expired = (
                self.db.query(CareCircleConnection)
                .filter(
                    CareCircleConnection.status == ConnectionStatus.PENDING.value,
                    CareCircleConnection.invite_token_expires_at < now,
                )
                .update(
                    {
                        "status": next_status(ConnectionStatus.PENDING, ConnectionEvent.EXPIRE).value,
                        "revoked_at": now,
                        "updated_at": now,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
            if expired:
                # Instances already loaded in this session would otherwise
                # still report "pending".
                self.db.expire_all()
        return expired
