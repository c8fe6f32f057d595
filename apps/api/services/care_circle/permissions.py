"""
Care Circle Access Control Gate

Pure predicates over a connection. Every data-access path asks
``get_permissions`` instead of deriving its own rules; the answer is a lookup
in PERMISSION_TABLE keyed by (is_active, tier).
"""

from dataclasses import asdict, dataclass
from typing import Dict, Optional, Tuple

from services.care_circle.errors import CareCircleForbiddenError
from services.care_circle.states import ConnectionStatus, SharingTier, parse_tier


@dataclass(frozen=True)
class SharingPermissions:
    can_view_summary: bool = False
    can_view_checkins: bool = False
    can_view_moods: bool = False
    can_export_data: bool = False
    can_receive_alerts: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)


NO_PERMISSIONS = SharingPermissions()

PERMISSION_TABLE: Dict[Tuple[bool, Optional[SharingTier]], SharingPermissions] = {
    (True, SharingTier.FULL): SharingPermissions(
        can_view_summary=True,
        can_view_checkins=True,
        can_view_moods=True,
        can_export_data=True,
        can_receive_alerts=True,
    ),
    (True, SharingTier.DATA_ONLY): SharingPermissions(
        can_view_summary=True,
        can_view_checkins=False,
        can_view_moods=True,
        can_export_data=False,
        can_receive_alerts=True,
    ),
}

PERMISSION_LABELS = {
    "can_view_summary": "view summaries",
    "can_view_checkins": "view check-in details",
    "can_view_moods": "view mood history",
    "can_export_data": "export data",
    "can_receive_alerts": "receive alerts",
}


def is_active(connection) -> bool:
    return (
        connection is not None
        and connection.status == ConnectionStatus.ACTIVE.value
        and connection.revoked_at is None
    )


def is_patient(connection, user_id: Optional[int]) -> bool:
    return user_id is not None and connection.patient_user_id == user_id


def is_trusted_person(connection, user_id: Optional[int]) -> bool:
    return user_id is not None and connection.trusted_user_id == user_id


def can_access(connection, user_id: Optional[int]) -> bool:
    """The patient always; the trusted person only while the connection is active."""
    if connection is None or user_id is None:
        return False
    if is_patient(connection, user_id):
        return True
    return is_trusted_person(connection, user_id) and is_active(connection)


def get_permissions(connection) -> SharingPermissions:
    if connection is None:
        return NO_PERMISSIONS
    key = (is_active(connection), parse_tier(connection.sharing_tier))
    return PERMISSION_TABLE.get(key, NO_PERMISSIONS)


def require_permission(connection, name: str) -> SharingPermissions:
    """
    Raise CareCircleForbiddenError unless ``connection`` grants ``name``.

    ``name`` is a SharingPermissions field, e.g. ``"can_view_checkins"``.
    """
    if name not in PERMISSION_LABELS:
        raise ValueError(f"Unknown permission: {name}")
    permissions = get_permissions(connection)
    if not getattr(permissions, name):
        raise CareCircleForbiddenError(
            f"Your sharing tier does not allow you to {PERMISSION_LABELS[name]}"
        )
    return permissions
