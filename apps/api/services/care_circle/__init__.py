"""
Care Circle Package

Consent-based sharing of a patient's wellness data with a trusted person.

Modules:
- states: enums and the connection transition table
- permissions: access predicates and the permission table
- store: connection persistence (compare-and-set transitions)
- audit: append-only audit trail
- invitations / state_machine: connection lifecycle
- shared_data / aggregates: what the trusted person can read
- notifications: queued email dispatch

Usage:
    from services.care_circle import CareCircleService, SharedDataGateway
    from services.care_circle.permissions import get_permissions
"""

from .errors import (
    CareCircleError,
    CareCircleValidationError,
    CareCircleNotFoundError,
    CareCircleConflictError,
    CareCircleForbiddenError,
    CareCircleInternalError,
    InvalidTransitionError,
    ConcurrentUpdateError,
    InviteExpiredError,
    InviteGoneError,
)
from .states import (
    AuditAction,
    ConnectionEvent,
    ConnectionStatus,
    RevokedBy,
    SharingTier,
    TRANSITIONS,
    next_status,
)
from .permissions import (
    SharingPermissions,
    PERMISSION_TABLE,
    can_access,
    get_permissions,
    is_active,
)
from .audit import AuditLogger, RequestContext
from .notifications import NotificationDispatcher, get_notification_dispatcher
from .service import CareCircleService
from .shared_data import SharedDataGateway

__all__ = [
    "CareCircleError",
    "CareCircleValidationError",
    "CareCircleNotFoundError",
    "CareCircleConflictError",
    "CareCircleForbiddenError",
    "CareCircleInternalError",
    "InvalidTransitionError",
    "ConcurrentUpdateError",
    "InviteExpiredError",
    "InviteGoneError",
    "AuditAction",
    "ConnectionEvent",
    "ConnectionStatus",
    "RevokedBy",
    "SharingTier",
    "TRANSITIONS",
    "next_status",
    "SharingPermissions",
    "PERMISSION_TABLE",
    "can_access",
    "get_permissions",
    "is_active",
    "AuditLogger",
    "RequestContext",
    "NotificationDispatcher",
    "get_notification_dispatcher",
    "CareCircleService",
    "SharedDataGateway",
]
