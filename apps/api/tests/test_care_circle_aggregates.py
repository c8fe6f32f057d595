"""Pure aggregate helpers behind the shared-data views."""
from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from services.care_circle import aggregates
from services.care_circle.errors import CareCircleValidationError

NOW = datetime(2026, 10, 18, 15, 30, tzinfo=timezone.utc)  # a Sunday
TODAY = NOW.date()


def _checkin(created_at, mood="okay", stress=None, emotions=None, risk=None):
    return SimpleNamespace(
        created_at=created_at,
        mood_rating=mood,
        stress_level=stress,
        selected_emotions=emotions,
        ai_analysis={"risk_level": risk} if risk else None,
    )


class TestMoodMapping:
    @pytest.mark.parametrize("rating,score", [
        ("great", 1.0),
        ("good", 0.5),
        ("okay", 0.0),
        ("not_good", -0.5),
        ("terrible", -1.0),
        (None, 0.0),
        ("ecstatic", 0.0),
    ])
    def test_mood_score(self, rating, score):
        assert aggregates.mood_score(rating) == score

    def test_unknown_mood_gets_neutral_emoji(self):
        assert aggregates.mood_emoji("ecstatic") == aggregates.MOOD_EMOJIS["okay"]

    def test_risk_level_defaults_to_low(self):
        assert aggregates.risk_level(_checkin(NOW)) == "low"
        assert aggregates.risk_level(_checkin(NOW, risk="nonsense")) == "low"
        assert aggregates.risk_level(_checkin(NOW, risk="high")) == "high"


class TestStreak:
    def test_counts_back_from_today(self):
        days = {TODAY, TODAY - timedelta(days=1), TODAY - timedelta(days=2)}
        assert aggregates.checkin_streak(days, TODAY) == 3

    def test_missing_today_does_not_break_streak(self):
        days = {TODAY - timedelta(days=1), TODAY - timedelta(days=2)}
        assert aggregates.checkin_streak(days, TODAY) == 2

    def test_gap_breaks_streak(self):
        days = {TODAY, TODAY - timedelta(days=2), TODAY - timedelta(days=3)}
        assert aggregates.checkin_streak(days, TODAY) == 1

    def test_no_checkins(self):
        assert aggregates.checkin_streak(set(), TODAY) == 0

    def test_capped_by_window(self):
        days = {TODAY - timedelta(days=i) for i in range(60)}
        assert aggregates.checkin_streak(days, TODAY) == aggregates.STREAK_WINDOW_DAYS


class TestDailyTrends:
    def test_averages_per_day(self):
        checkins = [
            _checkin(NOW, mood="great", stress=4),
            _checkin(NOW - timedelta(hours=1), mood="okay", stress=7),
            _checkin(NOW - timedelta(days=1), mood="terrible"),
        ]
        moods = [SimpleNamespace(created_at=NOW, sentiment_score=0.25)]

        mood_trends, stress_trends = aggregates.daily_trends(checkins, moods)

        assert [t["date"] for t in mood_trends] == ["2026-10-17", "2026-10-18"]
        assert mood_trends[1]["average_mood"] == round((1.0 + 0.0 + 0.25) / 3, 2)
        assert mood_trends[1]["average_stress"] == 5.5
        assert mood_trends[1]["entry_count"] == 3
        assert mood_trends[0]["average_stress"] is None
        assert stress_trends == [{"date": "2026-10-18", "average_stress": 5.5}]

    def test_mean(self):
        assert aggregates.mean([1, None, 2], 1) == 1.5
        assert aggregates.mean([None], 1) is None
        assert aggregates.mean([], 2) is None


class TestWeekly:
    def test_week_starts_on_sunday(self):
        assert aggregates.week_start(date(2026, 10, 18)) == date(2026, 10, 18)
        assert aggregates.week_start(date(2026, 10, 21)) == date(2026, 10, 18)
        assert aggregates.week_start(date(2026, 10, 17)) == date(2026, 10, 11)

    def test_weekly_trends(self):
        checkins = [
            _checkin(NOW, mood="good", stress=3, risk="moderate"),
            _checkin(NOW + timedelta(days=2), mood="great", stress=5),
            _checkin(NOW - timedelta(days=1), mood="not_good", stress=8, risk="high"),
        ]

        weeks = aggregates.weekly_trends(checkins)

        assert [w["week_start"] for w in weeks] == ["2026-10-11", "2026-10-18"]
        current = weeks[1]
        assert current["checkin_count"] == 2
        assert current["average_mood"] == 0.75
        assert current["average_stress"] == 4.0
        assert current["risk_flags"] == {"low": 1, "moderate": 1, "high": 0, "critical": 0}

    def test_emotion_frequency(self):
        checkins = [
            _checkin(NOW, emotions=["anxious", "tired"]),
            _checkin(NOW, emotions=["anxious"]),
            _checkin(NOW, emotions=None),
        ]
        frequency = aggregates.emotion_frequency(checkins)
        assert frequency[0] == {"emotion": "anxious", "count": 2, "percentage": 66.7}
        assert frequency[1] == {"emotion": "tired", "count": 1, "percentage": 33.3}

    def test_top_emotions_limit(self):
        checkins = [_checkin(NOW, emotions=[f"e{i}" for i in range(8)])]
        assert len(aggregates.top_emotions(checkins, 5)) == 5

    def test_risk_distribution(self):
        checkins = [_checkin(NOW, risk="critical"), _checkin(NOW), _checkin(NOW, risk="unknown")]
        assert aggregates.risk_distribution(checkins) == {"low": 2, "moderate": 0, "high": 0, "critical": 1}

    def test_frequency_by_day(self):
        checkins = [_checkin(NOW), _checkin(NOW + timedelta(days=1)), _checkin(NOW + timedelta(days=7))]
        by_day = aggregates.checkin_frequency_by_day(checkins)
        assert [d["day"] for d in by_day][0] == "Sunday"
        assert by_day[0]["count"] == 2
        assert by_day[1] == {"day": "Monday", "count": 1}


class TestQueryParameters:
    def test_default_range_is_whole_days(self):
        start, end = aggregates.parse_date_range(None, None, 30, NOW)
        assert start == datetime(2026, 9, 18, 0, 0, tzinfo=timezone.utc)
        assert end.date() == TODAY
        assert (end.hour, end.minute, end.second) == (23, 59, 59)

    def test_explicit_range(self):
        start, end = aggregates.parse_date_range("2026-10-01", "2026-10-05T10:00:00Z", 30, NOW)
        assert start.date() == date(2026, 10, 1)
        assert end.date() == date(2026, 10, 5)

    def test_start_after_end(self):
        with pytest.raises(CareCircleValidationError) as exc_info:
            aggregates.parse_date_range("2026-10-10", "2026-10-01", 30, NOW)
        assert exc_info.value.message == "start_date must be on or before end_date"

    def test_bad_date(self):
        with pytest.raises(CareCircleValidationError) as exc_info:
            aggregates.parse_date_range("yesterday", None, 30, NOW)
        assert exc_info.value.field == "start_date"

    def test_end_date_near_minimum_date(self):
        with pytest.raises(CareCircleValidationError) as exc_info:
            aggregates.parse_date_range(None, "0001-01-05", 30, NOW)
        assert exc_info.value.field == "end_date"

    def test_explicit_range_at_minimum_date(self):
        start, _ = aggregates.parse_date_range("0001-01-01", "0001-01-05", 30, NOW)
        assert start.date() == date.min

    @pytest.mark.parametrize("period,expected", [
        ("7d", ("7d", 7)),
        ("90d", ("90d", 90)),
        ("1y", ("30d", 30)),
        (None, ("30d", 30)),
    ])
    def test_parse_period(self, period, expected):
        assert aggregates.parse_period(period) == expected

    def test_pagination_defaults_and_cap(self):
        assert aggregates.parse_pagination(None, None) == (50, 0)
        assert aggregates.parse_pagination(500, 10) == (100, 10)

    @pytest.mark.parametrize("limit,offset", [(0, 0), (-1, 0), (10, -1)])
    def test_pagination_rejects_negatives(self, limit, offset):
        with pytest.raises(CareCircleValidationError):
            aggregates.parse_pagination(limit, offset)
