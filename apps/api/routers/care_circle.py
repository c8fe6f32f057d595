"""
Care Circle Endpoints

POST   /care-circle/invite                 Patient invites a trusted person
GET    /care-circle/connections            Both sides of the caller's Care Circle
GET    /care-circle/invite/{token}         Public invite preview
POST   /care-circle/accept/{token}         Trusted person accepts (authenticated)
POST   /care-circle/decline/{token}        Public decline; the token is the credential
PUT    /care-circle/{connection_id}/tier   Patient changes the sharing tier
POST   /care-circle/{connection_id}/resend Patient re-issues a pending/declined invite
DELETE /care-circle/{connection_id}        Either party revokes
GET    /care-circle/audit/{connection_id}  Patient reads the audit trail
GET    /care-circle/activity               Caller's own audit activity
GET    /care-circle/access-log             Recent reads of the caller's data

Domain errors are mapped to HTTP here; public token routes use the public
status codes (expired invites are 410 there, 400 elsewhere).
"""
from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import (
    APIException,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    GoneError,
    InternalServerError,
    NotFoundError,
)
from models import User
from schemas import (
    AcceptResponse,
    AccessLogResponse,
    ActivityResponse,
    AuditHistoryResponse,
    ConnectionListResponse,
    InvitePreviewResponse,
    InviteRequest,
    InviteResponse,
    RevokeResponse,
    StatusMessageResponse,
    TierUpdateRequest,
    TierUpdateResponse,
)
from services.care_circle import CareCircleError, CareCircleService, RequestContext
from services.care_circle.aggregates import parse_pagination
from services.care_circle.invitations import build_invite_url, invite_message
from services.care_circle.notifications import NotificationDispatcher, get_notification_dispatcher
from services.care_circle.service import serialize_for_patient, serialize_for_trusted
from services.care_circle.states import AuditAction

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/care-circle", tags=["care-circle"])

_HTTP_ERRORS = {
    400: BadRequestError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
    410: GoneError,
}


def to_api_exception(error: CareCircleError, public: bool = False) -> APIException:
    """Map a domain error onto the API's error types."""
    status_code = error.public_status_code if public else error.status_code
    exception_class = _HTTP_ERRORS.get(status_code)
    if exception_class is None:
        logger.error(f"Care Circle internal error: {error.message}")
        return InternalServerError(error.message, error_code=error.error_code)
    return exception_class(error.message, error_code=error.error_code)


def get_care_circle_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> CareCircleService:
    return CareCircleService(db, dispatcher)


# =============================================================================
# INVITATIONS
# =============================================================================

@router.post("/invite", response_model=InviteResponse, status_code=status.HTTP_201_CREATED)
def create_invite(
    body: InviteRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: CareCircleService = Depends(get_care_circle_service),
):
    """Invite someone into the caller's Care Circle. The invite email is queued, not awaited."""
    try:
        connection = service.invitations.invite(
            current_user,
            body.email,
            name=body.name,
            tier=body.sharing_tier,
            context=RequestContext.from_request(request),
        )
    except CareCircleError as e:
        raise to_api_exception(e)

    invite_url = build_invite_url(connection.invite_token)
    return {
        "message": f"Invitation sent to {connection.trusted_email}",
        "connection": serialize_for_patient(connection),
        "invite_url": invite_url,
        "invite_message": invite_message(current_user.public_name, invite_url),
        "expires_at": connection.invite_token_expires_at,
    }


@router.get("/connections", response_model=ConnectionListResponse)
def list_connections(
    current_user: User = Depends(get_current_user),
    service: CareCircleService = Depends(get_care_circle_service),
):
    try:
        return service.list_connections(current_user)
    except CareCircleError as e:
        raise to_api_exception(e)


@router.get("/invite/{token}", response_model=InvitePreviewResponse)
def preview_invite(
    token: str,
    service: CareCircleService = Depends(get_care_circle_service),
):
    """Public. Shows who is inviting and what accepting means; nothing else."""
    try:
        return service.invitations.preview(token)
    except CareCircleError as e:
        raise to_api_exception(e, public=True)


@router.post("/accept/{token}", response_model=AcceptResponse)
def accept_invite(
    token: str,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: CareCircleService = Depends(get_care_circle_service),
):
    try:
        connection, permissions = service.state_machine.accept(
            token, current_user, RequestContext.from_request(request)
        )
    except CareCircleError as e:
        raise to_api_exception(e)

    patient_name = connection.patient.public_name if connection.patient else "your contact"
    return {
        "message": f"You are now connected to {patient_name}'s Care Circle",
        "connection": serialize_for_trusted(connection),
        "permissions": permissions.to_dict(),
    }


@router.post("/decline/{token}", response_model=StatusMessageResponse)
def decline_invite(
    token: str,
    request: Request,
    service: CareCircleService = Depends(get_care_circle_service),
):
    """Public. Declining needs no account."""
    try:
        connection = service.state_machine.decline(token, RequestContext.from_request(request))
    except CareCircleError as e:
        raise to_api_exception(e, public=True)

    return {
        "message": "Invitation declined",
        "connection_id": str(connection.id),
        "status": connection.status,
    }


# =============================================================================
# CONNECTION MANAGEMENT
# =============================================================================

@router.put("/{connection_id}/tier", response_model=TierUpdateResponse)
def update_sharing_tier(
    connection_id: UUID,
    body: TierUpdateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: CareCircleService = Depends(get_care_circle_service),
):
    try:
        connection, old_tier = service.state_machine.change_tier(
            connection_id, current_user.id, body.sharing_tier, RequestContext.from_request(request)
        )
    except CareCircleError as e:
        raise to_api_exception(e)

    return {
        "message": "Sharing tier updated",
        "connection_id": str(connection.id),
        "old_tier": old_tier,
        "new_tier": connection.sharing_tier,
    }


@router.post("/{connection_id}/resend", response_model=InviteResponse)
def resend_invite(
    connection_id: UUID,
    current_user: User = Depends(get_current_user),
    service: CareCircleService = Depends(get_care_circle_service),
):
    try:
        connection = service.invitations.resend(connection_id, current_user.id)
    except CareCircleError as e:
        raise to_api_exception(e)

    invite_url = build_invite_url(connection.invite_token)
    return {
        "message": f"Invitation resent to {connection.trusted_email}",
        "connection": serialize_for_patient(connection),
        "invite_url": invite_url,
        "invite_message": invite_message(current_user.public_name, invite_url),
        "expires_at": connection.invite_token_expires_at,
    }


@router.delete("/{connection_id}", response_model=RevokeResponse)
def revoke_connection(
    connection_id: UUID,
    request: Request,
    current_user: User = Depends(get_current_user),
    service: CareCircleService = Depends(get_care_circle_service),
):
    """Either party may end the connection; the other side is notified."""
    try:
        connection = service.state_machine.revoke(
            connection_id, current_user.id, RequestContext.from_request(request)
        )
    except CareCircleError as e:
        raise to_api_exception(e)

    return {
        "message": "Connection revoked",
        "connection_id": str(connection.id),
        "status": connection.status,
        "revoked_by": connection.revoked_by,
        "revoked_at": connection.revoked_at,
    }


# =============================================================================
# AUDIT
# =============================================================================

@router.get("/audit/{connection_id}", response_model=AuditHistoryResponse)
def get_audit_log(
    connection_id: UUID,
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    current_user: User = Depends(get_current_user),
    service: CareCircleService = Depends(get_care_circle_service),
):
    try:
        limit, offset = parse_pagination(limit, offset)
        return service.audit_history(connection_id, current_user.id, limit=limit, offset=offset)
    except CareCircleError as e:
        raise to_api_exception(e)


def _parse_action_types(raw: Optional[str]) -> Optional[List[AuditAction]]:
    if not raw:
        return None
    try:
        return [AuditAction(value.strip()) for value in raw.split(",") if value.strip()]
    except ValueError:
        raise BadRequestError("Unknown action type in action_types", error_code="VALIDATION_ERROR")


@router.get("/activity", response_model=ActivityResponse)
def get_activity(
    action_types: Optional[str] = Query(None, description="Comma-separated action types"),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    current_user: User = Depends(get_current_user),
    service: CareCircleService = Depends(get_care_circle_service),
):
    actions = _parse_action_types(action_types)
    try:
        limit, offset = parse_pagination(limit, offset)
        return service.activity(current_user.id, actions, limit=limit, offset=offset)
    except CareCircleError as e:
        raise to_api_exception(e)


@router.get("/access-log", response_model=AccessLogResponse)
def get_access_log(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: CareCircleService = Depends(get_care_circle_service),
):
    """Who looked at the caller's data recently, across all their connections."""
    try:
        return service.access_log(current_user.id, limit=limit)
    except CareCircleError as e:
        raise to_api_exception(e)
