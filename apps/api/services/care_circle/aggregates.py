"""
Wellness aggregates shown to a trusted person.

Pure functions over check-in / mood rows: score mapping, per-day and
per-week averages, the check-in streak, emotion and risk counts, plus the
query-parameter parsing shared by the shared-data views. Calendar days are
UTC days.
"""

from collections import Counter, OrderedDict
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from models import as_utc
from services.care_circle.errors import CareCircleValidationError

MOOD_SCORES: Dict[str, float] = {
    "great": 1.0,
    "good": 0.5,
    "okay": 0.0,
    "not_good": -0.5,
    "terrible": -1.0,
}

MOOD_EMOJIS: Dict[str, str] = {
    "great": "😄",
    "good": "😊",
    "okay": "😐",
    "not_good": "😟",
    "terrible": "😢",
}

RISK_LEVELS = ("low", "moderate", "high", "critical")

TREND_PERIODS: Dict[str, int] = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_TREND_PERIOD = "30d"

STREAK_WINDOW_DAYS = 30
DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 100

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def mood_score(rating: Optional[str]) -> float:
    return MOOD_SCORES.get(rating or "", 0.0)


def mood_emoji(rating: Optional[str]) -> str:
    return MOOD_EMOJIS.get(rating or "", MOOD_EMOJIS["okay"])


def risk_level(checkin) -> str:
    analysis = checkin.ai_analysis or {}
    level = analysis.get("risk_level") if isinstance(analysis, dict) else None
    return level if level in RISK_LEVELS else "low"


def mean(values: Iterable[Optional[float]], places: int) -> Optional[float]:
    present = [float(v) for v in values if v is not None]
    if not present:
        return None
    return round(sum(present) / len(present), places)


def day_of(value: datetime) -> date:
    return as_utc(value).astimezone(timezone.utc).date()


def week_start(day: date) -> date:
    """Sunday on or before ``day``."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

def daily_trends(checkins: Sequence, mood_entries: Sequence = ()) -> Tuple[List[Dict], List[Dict]]:
    """
    Per-day mood and stress averages.

    Check-ins contribute their mapped mood score and stress level; quick mood
    entries contribute their sentiment score only.
    """
    days: Dict[str, Dict[str, list]] = {}

    def bucket(key: str) -> Dict[str, list]:
        return days.setdefault(key, {"scores": [], "stress": []})

    for checkin in checkins:
        entry = bucket(day_of(checkin.created_at).isoformat())
        entry["scores"].append(mood_score(checkin.mood_rating))
        if checkin.stress_level is not None:
            entry["stress"].append(checkin.stress_level)

    for mood in mood_entries:
        if mood.sentiment_score is None:
            continue
        bucket(day_of(mood.created_at).isoformat())["scores"].append(float(mood.sentiment_score))

    mood_trends = [
        {
            "date": key,
            "average_mood": mean(data["scores"], 2),
            "average_stress": mean(data["stress"], 1),
            "entry_count": len(data["scores"]),
        }
        for key, data in sorted(days.items())
    ]
    stress_trends = [
        {"date": key, "average_stress": mean(data["stress"], 1)}
        for key, data in sorted(days.items())
        if data["stress"]
    ]
    return mood_trends, stress_trends


def checkin_streak(days_with_entries: Iterable[date], today: date, window: int = STREAK_WINDOW_DAYS) -> int:
    """
    Consecutive days with at least one check-in, counted back from today.

    A missing entry today does not break the streak (it may still come);
    any other missing day does.
    """
    present = set(days_with_entries)
    streak = 0
    for offset in range(window):
        if today - timedelta(days=offset) in present:
            streak += 1
        elif offset > 0:
            break
    return streak


def emotion_counts(checkins: Sequence) -> Counter:
    counts: Counter = Counter()
    for checkin in checkins:
        counts.update(checkin.selected_emotions or [])
    return counts


def top_emotions(checkins: Sequence, limit: int = 5) -> List[Dict]:
    return [
        {"emotion": emotion, "count": count}
        for emotion, count in emotion_counts(checkins).most_common(limit)
    ]


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------

def weekly_trends(checkins: Sequence) -> List[Dict]:
    weeks: Dict[date, Dict] = {}
    for checkin in checkins:
        key = week_start(day_of(checkin.created_at))
        week = weeks.setdefault(key, {
            "scores": [],
            "stress": [],
            "risk_flags": OrderedDict((level, 0) for level in RISK_LEVELS),
            "count": 0,
        })
        week["scores"].append(mood_score(checkin.mood_rating))
        if checkin.stress_level is not None:
            week["stress"].append(checkin.stress_level)
        week["risk_flags"][risk_level(checkin)] += 1
        week["count"] += 1

    return [
        {
            "week_start": key.isoformat(),
            "average_mood": mean(week["scores"], 2),
            "average_stress": mean(week["stress"], 1),
            "checkin_count": week["count"],
            "risk_flags": dict(week["risk_flags"]),
        }
        for key, week in sorted(weeks.items())
    ]


def emotion_frequency(checkins: Sequence) -> List[Dict]:
    total = len(checkins)
    return [
        {
            "emotion": emotion,
            "count": count,
            "percentage": round(count / total * 100, 1) if total else 0.0,
        }
        for emotion, count in emotion_counts(checkins).most_common()
    ]


def risk_distribution(checkins: Sequence) -> Dict[str, int]:
    distribution = OrderedDict((level, 0) for level in RISK_LEVELS)
    for checkin in checkins:
        distribution[risk_level(checkin)] += 1
    return dict(distribution)


def checkin_frequency_by_day(checkins: Sequence) -> List[Dict]:
    counts = [0] * 7
    for checkin in checkins:
        counts[(day_of(checkin.created_at).weekday() + 1) % 7] += 1
    return [{"day": name, "count": counts[i]} for i, name in enumerate(DAY_NAMES)]


# ---------------------------------------------------------------------------
# Query parameters
# ---------------------------------------------------------------------------

def _parse_day(value: str, field: str) -> date:
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00"))).astimezone(timezone.utc).date()
    except (ValueError, OverflowError):
        raise CareCircleValidationError(f"Invalid {field}: expected an ISO-8601 date", field=field) from None


def parse_date_range(
    start_date: Optional[str],
    end_date: Optional[str],
    default_days: int,
    now: datetime,
) -> Tuple[datetime, datetime]:
    """
    Whole-day UTC window: start of the start day to end of the end day.

    Defaults: end is today, start is ``default_days`` before the end.
    """
    end_day = _parse_day(end_date, "end_date") if end_date else day_of(now)
    if start_date:
        start_day = _parse_day(start_date, "start_date")
    elif end_day - date.min < timedelta(days=default_days):
        raise CareCircleValidationError("end_date is out of range", field="end_date")
    else:
        start_day = end_day - timedelta(days=default_days)
    if start_day > end_day:
        raise CareCircleValidationError("start_date must be on or before end_date", field="start_date")
    start = datetime.combine(start_day, time.min, tzinfo=timezone.utc)
    end = datetime.combine(end_day, time.max, tzinfo=timezone.utc)
    return start, end


def parse_period(period: Optional[str]) -> Tuple[str, int]:
    if period in TREND_PERIODS:
        return period, TREND_PERIODS[period]
    return DEFAULT_TREND_PERIOD, TREND_PERIODS[DEFAULT_TREND_PERIOD]


def parse_pagination(limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
    """Limit defaults to 50 and is capped at 100; negatives are rejected."""
    limit = DEFAULT_PAGE_LIMIT if limit is None else limit
    offset = 0 if offset is None else offset
    if limit < 1:
        raise CareCircleValidationError("limit must be at least 1", field="limit")
    if offset < 0:
        raise CareCircleValidationError("offset must not be negative", field="offset")
    return min(limit, MAX_PAGE_LIMIT), offset
