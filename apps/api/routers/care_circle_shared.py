"""
Care Circle Shared Data Endpoints

GET /care-circle/shared/{patient_id}/summary   30-day overview
GET /care-circle/shared/{patient_id}/moods     Mood history (check-ins + quick moods)
GET /care-circle/shared/{patient_id}/checkins  Check-ins, projected through the tier
GET /care-circle/shared/{patient_id}/trends    Weekly trends for 7d/30d/90d
GET /care-circle/shared/{patient_id}/export    JSON download

Trusted person only. No active connection means 403, never 404, so callers
cannot probe which patients exist. Every successful read is audited.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.database import get_db
from models import User
from routers.care_circle import to_api_exception
from services.care_circle import CareCircleError, RequestContext, SharedDataGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/care-circle/shared", tags=["care-circle"])


def get_shared_data_gateway(db: Session = Depends(get_db)) -> SharedDataGateway:
    return SharedDataGateway(db)


@router.get("/{patient_id}/summary")
def get_shared_summary(
    patient_id: int,
    request: Request,
    current_user: User = Depends(get_current_user),
    gateway: SharedDataGateway = Depends(get_shared_data_gateway),
):
    try:
        return gateway.summary(current_user, patient_id, RequestContext.from_request(request))
    except CareCircleError as e:
        raise to_api_exception(e)


@router.get("/{patient_id}/moods")
def get_shared_moods(
    patient_id: int,
    request: Request,
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    current_user: User = Depends(get_current_user),
    gateway: SharedDataGateway = Depends(get_shared_data_gateway),
):
    try:
        return gateway.moods(
            current_user,
            patient_id,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
            context=RequestContext.from_request(request),
        )
    except CareCircleError as e:
        raise to_api_exception(e)


@router.get("/{patient_id}/checkins")
def get_shared_checkins(
    patient_id: int,
    request: Request,
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    current_user: User = Depends(get_current_user),
    gateway: SharedDataGateway = Depends(get_shared_data_gateway),
):
    """Requires the full tier; data_only viewers get 403 even on an active connection."""
    try:
        return gateway.checkins(
            current_user,
            patient_id,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
            context=RequestContext.from_request(request),
        )
    except CareCircleError as e:
        raise to_api_exception(e)


@router.get("/{patient_id}/trends")
def get_shared_trends(
    patient_id: int,
    request: Request,
    period: Optional[str] = Query("30d", description="7d, 30d or 90d"),
    current_user: User = Depends(get_current_user),
    gateway: SharedDataGateway = Depends(get_shared_data_gateway),
):
    try:
        return gateway.trends(current_user, patient_id, period, RequestContext.from_request(request))
    except CareCircleError as e:
        raise to_api_exception(e)


@router.get("/{patient_id}/export")
def export_shared_data(
    patient_id: int,
    request: Request,
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    export_format: str = Query("json", alias="format"),
    current_user: User = Depends(get_current_user),
    gateway: SharedDataGateway = Depends(get_shared_data_gateway),
):
    try:
        document, filename = gateway.export(
            current_user,
            patient_id,
            start_date=start_date,
            end_date=end_date,
            export_format=export_format,
            context=RequestContext.from_request(request),
        )
    except CareCircleError as e:
        raise to_api_exception(e)

    return JSONResponse(
        content=jsonable_encoder(document),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
