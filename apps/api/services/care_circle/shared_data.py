"""
Care Circle Shared Data Gateway

What a trusted person sees of a patient's wellness data.

Every view follows the same steps:
1. resolve the active connection for (viewer, patient), else 403
2. require the view's permission from get_permissions
3. project rows through the sharing tier
4. aggregate
5. record exactly one audit entry (best effort)
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from models import CareCircleConnection, CheckinResponse, MoodEntry, User, as_utc, utcnow
from services.care_circle import aggregates
from services.care_circle.audit import AuditLogger, RequestContext
from services.care_circle.errors import CareCircleForbiddenError, CareCircleValidationError
from services.care_circle.permissions import is_active, require_permission
from services.care_circle.states import AuditAction, SharingTier
from services.care_circle.store import ConnectionStore

logger = logging.getLogger(__name__)

SUMMARY_DAYS = 30
DEFAULT_VIEW_DAYS = 30
DEFAULT_EXPORT_DAYS = 90
EXPORT_FORMATS = ("json",)

CHECKINS_TIER_NOTE = "Check-in text content is hidden based on sharing preferences"
EXPORT_TIER_NOTES = {
    SharingTier.DATA_ONLY.value: "Check-in text content excluded based on sharing preferences",
    SharingTier.FULL.value: "Full access - includes check-in text content",
}

NO_ACCESS_MESSAGE = "You do not have access to this person's data"


def project_checkin(checkin: CheckinResponse, tier: str, for_export: bool = False) -> Dict[str, Any]:
    """
    One check-in as the viewer's tier allows.

    data_only never carries checkin_text, ai_suggestions or the raw
    ai_analysis, whichever view asks.
    """
    analysis = checkin.ai_analysis if isinstance(checkin.ai_analysis, dict) else {}
    data: Dict[str, Any] = {
        "id": str(checkin.id),
        "date": as_utc(checkin.created_at),
        "mood_rating": checkin.mood_rating,
        "mood_score": aggregates.mood_score(checkin.mood_rating),
        "stress_level": checkin.stress_level,
        "emotions": list(checkin.selected_emotions or []),
        "risk_level": aggregates.risk_level(checkin),
        "sentiment": analysis.get("sentiment"),
    }
    if not for_export:
        data["mood_emoji"] = aggregates.mood_emoji(checkin.mood_rating)
        data["detected_topics"] = list(analysis.get("keywords") or [])

    if tier == SharingTier.FULL.value:
        data["checkin_text"] = checkin.check_in_text or None
        if for_export:
            data["ai_analysis"] = checkin.ai_analysis or None
        else:
            data["ai_suggestions"] = list(analysis.get("suggestions") or [])
    return data


def export_filename(patient_name: str, start: datetime, end: datetime) -> str:
    slug = re.sub(r"[^a-z0-9_-]", "", re.sub(r"\s+", "_", patient_name.strip().lower())) or "patient"
    return f"carecircle_{slug}_{start.date().isoformat()}_to_{end.date().isoformat()}.json"


class SharedDataGateway:
    def __init__(
        self,
        db: Session,
        audit: Optional[AuditLogger] = None,
        store: Optional[ConnectionStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.audit = audit or AuditLogger(db)
        self.store = store or ConnectionStore(db)
        self.clock = clock

    # ------------------------------------------------------------------
    # access
    # ------------------------------------------------------------------

    def resolve_connection(self, trusted_user_id: int, patient_user_id: int) -> CareCircleConnection:
        """The active connection for the pair. Missing and inactive look the same (403)."""
        connection = self.store.find_active_between(patient_user_id, trusted_user_id)
        if connection is None or not is_active(connection):
            raise CareCircleForbiddenError(NO_ACCESS_MESSAGE)
        return connection

    def _open(self, viewer: User, patient_user_id: int, permission: str) -> CareCircleConnection:
        connection = self.resolve_connection(viewer.id, patient_user_id)
        require_permission(connection, permission)
        return connection

    def _patient_name(self, connection: CareCircleConnection) -> str:
        return connection.patient.public_name if connection.patient else "User"

    def _checkins_query(self, patient_user_id: int, start: datetime, end: Optional[datetime] = None):
        query = self.db.query(CheckinResponse).filter(
            CheckinResponse.user_id == patient_user_id,
            CheckinResponse.created_at >= start,
        )
        if end is not None:
            query = query.filter(CheckinResponse.created_at <= end)
        return query

    def _moods_query(self, patient_user_id: int, start: datetime, end: Optional[datetime] = None):
        query = self.db.query(MoodEntry).filter(
            MoodEntry.user_id == patient_user_id,
            MoodEntry.created_at >= start,
        )
        if end is not None:
            query = query.filter(MoodEntry.created_at <= end)
        return query

    # ------------------------------------------------------------------
    # views
    # ------------------------------------------------------------------

    def summary(self, viewer: User, patient_user_id: int, context: Optional[RequestContext] = None) -> Dict[str, Any]:
        connection = self._open(viewer, patient_user_id, "can_view_summary")
        now = self.clock()
        start = datetime.combine(
            aggregates.day_of(now) - timedelta(days=SUMMARY_DAYS), time.min, tzinfo=timezone.utc
        )

        checkins = (
            self._checkins_query(patient_user_id, start)
            .order_by(CheckinResponse.created_at.desc())
            .all()
        )
        moods = self._moods_query(patient_user_id, start).order_by(MoodEntry.created_at.desc()).all()

        mood_trends, stress_trends = aggregates.daily_trends(checkins, moods)
        streak = aggregates.checkin_streak(
            {aggregates.day_of(c.created_at) for c in checkins}, aggregates.day_of(now)
        )

        self.audit.record(
            connection.id, viewer.id, AuditAction.VIEWED_SUMMARY, {"period_days": SUMMARY_DAYS}, context
        )
        return {
            "patient_name": self._patient_name(connection),
            "sharing_tier": connection.sharing_tier,
            "period": {"start": start, "end": now, "days": SUMMARY_DAYS},
            "summary": {
                "total_checkins": len(checkins),
                "average_mood_score": aggregates.mean(
                    (aggregates.mood_score(c.mood_rating) for c in checkins), 2
                ),
                "average_stress_level": aggregates.mean((c.stress_level for c in checkins), 1),
                "checkin_streak": streak,
                "last_checkin_date": as_utc(checkins[0].created_at) if checkins else None,
            },
            "mood_trends": mood_trends,
            "stress_trends": stress_trends,
            "most_common_emotions": aggregates.top_emotions(checkins, 5),
        }

    def moods(
        self,
        viewer: User,
        patient_user_id: int,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        context: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """Check-in moods and quick moods, merged newest first."""
        connection = self._open(viewer, patient_user_id, "can_view_moods")
        limit, offset = aggregates.parse_pagination(limit, offset)
        start, end = aggregates.parse_date_range(start_date, end_date, DEFAULT_VIEW_DAYS, self.clock())

        checkin_query = self._checkins_query(patient_user_id, start, end)
        mood_query = self._moods_query(patient_user_id, start, end)
        total = checkin_query.count() + mood_query.count()

        # Enough rows from each source to cut the merged page.
        window = offset + limit
        checkins = checkin_query.order_by(CheckinResponse.created_at.desc()).limit(window).all()
        quick_moods = mood_query.order_by(MoodEntry.created_at.desc()).limit(window).all()

        merged: List[Dict[str, Any]] = [
            {
                "id": f"checkin_{c.id}",
                "mood_score": aggregates.mood_score(c.mood_rating),
                "mood_label": c.mood_rating,
                "emoji": aggregates.mood_emoji(c.mood_rating),
                "stress_level": c.stress_level,
                "timestamp": as_utc(c.created_at),
                "source": "checkin",
            }
            for c in checkins
        ] + [
            {
                "id": f"mood_{m.id}",
                "mood_score": float(m.sentiment_score) if m.sentiment_score is not None else None,
                "mood_label": m.sentiment_label,
                "emoji": None,
                "stress_level": None,
                "timestamp": as_utc(m.created_at),
                "source": "quick_mood",
            }
            for m in quick_moods
        ]
        merged.sort(key=lambda item: item["timestamp"], reverse=True)
        page = merged[offset:offset + limit]

        self.audit.record(
            connection.id,
            viewer.id,
            AuditAction.VIEWED_MOODS,
            {"start_date": start.isoformat(), "end_date": end.isoformat(), "count": len(page)},
            context,
        )
        return {
            "patient_name": self._patient_name(connection),
            "sharing_tier": connection.sharing_tier,
            "moods": page,
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "has_more": offset + len(page) < total,
            },
            "date_range": {"start": start, "end": end},
        }

    def checkins(
        self,
        viewer: User,
        patient_user_id: int,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        context: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        connection = self._open(viewer, patient_user_id, "can_view_checkins")
        limit, offset = aggregates.parse_pagination(limit, offset)
        start, end = aggregates.parse_date_range(start_date, end_date, DEFAULT_VIEW_DAYS, self.clock())
        tier = connection.sharing_tier

        query = self._checkins_query(patient_user_id, start, end)
        total = query.count()
        rows = query.order_by(CheckinResponse.created_at.desc()).offset(offset).limit(limit).all()
        checkins = [project_checkin(row, tier) for row in rows]

        self.audit.record(
            connection.id,
            viewer.id,
            AuditAction.VIEWED_CHECKINS,
            {
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "count": len(checkins),
                "sharing_tier": tier,
            },
            context,
        )
        return {
            "patient_name": self._patient_name(connection),
            "sharing_tier": tier,
            "sharing_tier_note": CHECKINS_TIER_NOTE if tier == SharingTier.DATA_ONLY.value else None,
            "checkins": checkins,
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "has_more": offset + len(checkins) < total,
            },
            "date_range": {"start": start, "end": end},
        }

    def trends(
        self,
        viewer: User,
        patient_user_id: int,
        period: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        connection = self._open(viewer, patient_user_id, "can_view_summary")
        label, days = aggregates.parse_period(period)
        now = self.clock()
        start = datetime.combine(aggregates.day_of(now) - timedelta(days=days), time.min, tzinfo=timezone.utc)

        checkins = (
            self._checkins_query(patient_user_id, start)
            .order_by(CheckinResponse.created_at.asc())
            .all()
        )
        weekly = aggregates.weekly_trends(checkins)

        self.audit.record(
            connection.id,
            viewer.id,
            AuditAction.VIEWED_SUMMARY,
            {"period": label, "period_days": days, "trend_type": "detailed"},
            context,
        )
        return {
            "patient_name": self._patient_name(connection),
            "sharing_tier": connection.sharing_tier,
            "period": {"label": label, "days": days, "start": start, "end": now},
            "overview": {"total_checkins": len(checkins), "weeks_analyzed": len(weekly)},
            "weekly_trends": weekly,
            "emotion_frequency": aggregates.emotion_frequency(checkins),
            "risk_distribution": aggregates.risk_distribution(checkins),
            "checkin_frequency_by_day": aggregates.checkin_frequency_by_day(checkins),
        }

    def export(
        self,
        viewer: User,
        patient_user_id: int,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        export_format: str = "json",
        context: Optional[RequestContext] = None,
    ) -> Tuple[Dict[str, Any], str]:
        """Returns (document, download filename)."""
        connection = self._open(viewer, patient_user_id, "can_export_data")
        if export_format not in EXPORT_FORMATS:
            raise CareCircleValidationError(
                "Currently only JSON format is supported", field="format"
            )
        now = self.clock()
        start, end = aggregates.parse_date_range(start_date, end_date, DEFAULT_EXPORT_DAYS, now)
        tier = connection.sharing_tier

        checkins = (
            self._checkins_query(patient_user_id, start, end)
            .order_by(CheckinResponse.created_at.desc())
            .all()
        )
        moods = self._moods_query(patient_user_id, start, end).order_by(MoodEntry.created_at.desc()).all()
        patient_name = self._patient_name(connection)

        self.audit.record(
            connection.id,
            viewer.id,
            AuditAction.EXPORTED_DATA,
            {
                "format": export_format,
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "checkin_count": len(checkins),
                "mood_count": len(moods),
                "sharing_tier": tier,
            },
            context,
        )
        document = {
            "export_info": {
                "patient_name": patient_name,
                "exported_by": viewer.email,
                "export_date": now,
                "sharing_tier": tier,
                "date_range": {"start": start, "end": end},
            },
            "summary": {
                "total_checkins": len(checkins),
                "total_mood_entries": len(moods),
                "average_mood_score": aggregates.mean(
                    (aggregates.mood_score(c.mood_rating) for c in checkins), 2
                ),
                "average_stress_level": aggregates.mean((c.stress_level for c in checkins), 1),
            },
            "checkins": [project_checkin(c, tier, for_export=True) for c in checkins],
            "mood_entries": [
                {
                    "id": m.id,
                    "date": m.check_in_date,
                    "sentiment_score": float(m.sentiment_score) if m.sentiment_score is not None else None,
                    "sentiment_label": m.sentiment_label,
                    "created_at": as_utc(m.created_at),
                }
                for m in moods
            ],
            "sharing_tier_note": EXPORT_TIER_NOTES.get(tier, EXPORT_TIER_NOTES[SharingTier.DATA_ONLY.value]),
        }
        return document, export_filename(patient_name, start, end)
