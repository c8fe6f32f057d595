from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional, List, Dict, Any


class UserRef(BaseModel):
    id: int
    name: str
    email: Optional[str] = None


class SharingPermissionsResponse(BaseModel):
    can_view_summary: bool
    can_view_checkins: bool
    can_view_moods: bool
    can_export_data: bool
    can_receive_alerts: bool


class InviteRequest(BaseModel):
    """Patient invites someone into their Care Circle."""
    email: str = Field(..., max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    sharing_tier: Optional[str] = None  # full | data_only; anything else falls back to data_only


class TierUpdateRequest(BaseModel):
    sharing_tier: str


class ConnectionResponse(BaseModel):
    """Patient-side view of a connection."""
    id: str
    trusted_email: str
    trusted_name: Optional[str] = None
    trusted_user: Optional[UserRef] = None
    sharing_tier: str
    status: str
    invited_at: Optional[datetime] = None
    invite_expires_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TrustedConnectionResponse(BaseModel):
    """Trusted-person-side view of a connection."""
    id: str
    patient: Optional[UserRef] = None
    sharing_tier: str
    status: str
    accepted_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None
    permissions: SharingPermissionsResponse


class InviteResponse(BaseModel):
    message: str
    connection: ConnectionResponse
    invite_url: str
    invite_message: str
    expires_at: datetime


class InvitePreviewResponse(BaseModel):
    patient_name: str
    sharing_tier: str
    sharing_tier_description: str
    invited_at: datetime
    expires_at: datetime
    what_this_means: List[str]


class AcceptResponse(BaseModel):
    message: str
    connection: TrustedConnectionResponse
    permissions: SharingPermissionsResponse


class StatusMessageResponse(BaseModel):
    message: str
    connection_id: str
    status: str


class TierUpdateResponse(BaseModel):
    message: str
    connection_id: str
    old_tier: str
    new_tier: str


class RevokeResponse(BaseModel):
    message: str
    connection_id: str
    status: str
    revoked_by: str
    revoked_at: datetime


class ConnectionCounts(BaseModel):
    as_patient: Dict[str, int]
    as_trusted_person: Dict[str, int]


class ConnectionListResponse(BaseModel):
    as_patient: List[ConnectionResponse]
    as_trusted_person: List[TrustedConnectionResponse]
    counts: ConnectionCounts


class AuditEntryResponse(BaseModel):
    id: str
    connection_id: str
    action_type: str
    details: Dict[str, Any] = {}
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    actor: Optional[UserRef] = None


class PaginationResponse(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class AuditHistoryResponse(BaseModel):
    connection_id: str
    entries: List[AuditEntryResponse]
    action_counts: Dict[str, int]
    pagination: PaginationResponse


class ActivityResponse(BaseModel):
    entries: List[AuditEntryResponse]
    pagination: PaginationResponse


class AccessLogResponse(BaseModel):
    entries: List[AuditEntryResponse]
