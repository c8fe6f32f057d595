"""
Care Circle vocabulary and the connection transition table.

Every legal (status, event) pair lives in TRANSITIONS. Anything missing is an
illegal transition; callers never re-derive the rules themselves.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from services.care_circle.errors import InvalidTransitionError


class ConnectionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    DECLINED = "declined"
    REVOKED = "revoked"


class SharingTier(str, Enum):
    FULL = "full"
    DATA_ONLY = "data_only"


class RevokedBy(str, Enum):
    PATIENT = "patient"
    TRUSTED_PERSON = "trusted_person"


class ConnectionEvent(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    REVOKE = "revoke"
    EXPIRE = "expire"
    RESEND = "resend"
    CHANGE_TIER = "change_tier"


class AuditAction(str, Enum):
    INVITED = "invited"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REVOKED = "revoked"
    TIER_CHANGED = "tier_changed"
    VIEWED_SUMMARY = "viewed_summary"
    VIEWED_CHECKINS = "viewed_checkins"
    VIEWED_MOODS = "viewed_moods"
    EXPORTED_DATA = "exported_data"


# Reads of shared data, as opposed to lifecycle changes.
ACCESS_ACTIONS: FrozenSet[AuditAction] = frozenset({
    AuditAction.VIEWED_SUMMARY,
    AuditAction.VIEWED_CHECKINS,
    AuditAction.VIEWED_MOODS,
    AuditAction.EXPORTED_DATA,
})

# Statuses that block a second invite to the same email.
OPEN_STATUSES: FrozenSet[ConnectionStatus] = frozenset({
    ConnectionStatus.PENDING,
    ConnectionStatus.ACTIVE,
})

DEFAULT_TIER = SharingTier.DATA_ONLY

_S = ConnectionStatus
_E = ConnectionEvent

TRANSITIONS: Dict[Tuple[ConnectionStatus, ConnectionEvent], ConnectionStatus] = {
    (_S.PENDING, _E.ACCEPT): _S.ACTIVE,
    (_S.PENDING, _E.DECLINE): _S.DECLINED,
    (_S.PENDING, _E.REVOKE): _S.REVOKED,
    (_S.PENDING, _E.EXPIRE): _S.REVOKED,
    (_S.PENDING, _E.RESEND): _S.PENDING,
    (_S.ACTIVE, _E.REVOKE): _S.REVOKED,
    (_S.ACTIVE, _E.CHANGE_TIER): _S.ACTIVE,
    (_S.DECLINED, _E.REVOKE): _S.REVOKED,
    (_S.DECLINED, _E.RESEND): _S.PENDING,
}

# Caller-facing reason for each illegal (status, event) pair worth explaining.
_REJECTION_MESSAGES: Dict[Tuple[ConnectionStatus, ConnectionEvent], str] = {
    (_S.ACTIVE, _E.ACCEPT): "This invitation has already been accepted",
    (_S.DECLINED, _E.ACCEPT): "This invitation has been declined",
    (_S.REVOKED, _E.ACCEPT): "This invitation has been cancelled",
    (_S.ACTIVE, _E.DECLINE): "This invitation has already been processed",
    (_S.DECLINED, _E.DECLINE): "This invitation has already been processed",
    (_S.REVOKED, _E.DECLINE): "This invitation has already been processed",
    (_S.REVOKED, _E.REVOKE): "Connection has already been revoked",
    (_S.ACTIVE, _E.RESEND): "Connection is already active",
    (_S.REVOKED, _E.RESEND): "Cannot resend a revoked invitation. Create a new one instead.",
    (_S.PENDING, _E.CHANGE_TIER): "Can only change tier for active connections",
    (_S.DECLINED, _E.CHANGE_TIER): "Can only change tier for active connections",
    (_S.REVOKED, _E.CHANGE_TIER): "Can only change tier for active connections",
}


def parse_tier(value: Optional[str]) -> Optional[SharingTier]:
    """Return the SharingTier for ``value``, or None when it is not a tier."""
    if value is None:
        return None
    try:
        return SharingTier(value)
    except ValueError:
        return None


def next_status(status: ConnectionStatus, event: ConnectionEvent) -> ConnectionStatus:
    """
    Look up the status ``event`` leads to from ``status``.

    Raises:
        InvalidTransitionError: the pair is not in TRANSITIONS
    """
    key = (ConnectionStatus(status), ConnectionEvent(event))
    try:
        return TRANSITIONS[key]
    except KeyError:
        message = _REJECTION_MESSAGES.get(
            key, f"Cannot {key[1].value.replace('_', ' ')} a {key[0].value} connection"
        )
        raise InvalidTransitionError(message, status=key[0].value, event=key[1].value) from None
