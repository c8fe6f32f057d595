"""
Connection transition table.

Pure lookups, no database.
"""
import pytest

from services.care_circle.errors import InvalidTransitionError
from services.care_circle.states import (
    ConnectionEvent,
    ConnectionStatus,
    DEFAULT_TIER,
    SharingTier,
    TRANSITIONS,
    next_status,
    parse_tier,
)


class TestLegalTransitions:
    @pytest.mark.parametrize("status,event,expected", [
        (ConnectionStatus.PENDING, ConnectionEvent.ACCEPT, ConnectionStatus.ACTIVE),
        (ConnectionStatus.PENDING, ConnectionEvent.DECLINE, ConnectionStatus.DECLINED),
        (ConnectionStatus.PENDING, ConnectionEvent.REVOKE, ConnectionStatus.REVOKED),
        (ConnectionStatus.PENDING, ConnectionEvent.EXPIRE, ConnectionStatus.REVOKED),
        (ConnectionStatus.PENDING, ConnectionEvent.RESEND, ConnectionStatus.PENDING),
        (ConnectionStatus.ACTIVE, ConnectionEvent.REVOKE, ConnectionStatus.REVOKED),
        (ConnectionStatus.ACTIVE, ConnectionEvent.CHANGE_TIER, ConnectionStatus.ACTIVE),
        (ConnectionStatus.DECLINED, ConnectionEvent.REVOKE, ConnectionStatus.REVOKED),
        (ConnectionStatus.DECLINED, ConnectionEvent.RESEND, ConnectionStatus.PENDING),
    ])
    def test_next_status(self, status, event, expected):
        assert next_status(status, event) == expected

    def test_accepts_plain_strings(self):
        assert next_status("pending", "accept") == ConnectionStatus.ACTIVE

    def test_table_has_no_other_entries(self):
        assert len(TRANSITIONS) == 9


class TestIllegalTransitions:
    @pytest.mark.parametrize("event", list(ConnectionEvent))
    def test_revoked_is_terminal(self, event):
        with pytest.raises(InvalidTransitionError):
            next_status(ConnectionStatus.REVOKED, event)

    @pytest.mark.parametrize("status,event,message", [
        (ConnectionStatus.ACTIVE, ConnectionEvent.ACCEPT, "This invitation has already been accepted"),
        (ConnectionStatus.DECLINED, ConnectionEvent.ACCEPT, "This invitation has been declined"),
        (ConnectionStatus.REVOKED, ConnectionEvent.ACCEPT, "This invitation has been cancelled"),
        (ConnectionStatus.DECLINED, ConnectionEvent.DECLINE, "This invitation has already been processed"),
        (ConnectionStatus.REVOKED, ConnectionEvent.REVOKE, "Connection has already been revoked"),
        (ConnectionStatus.ACTIVE, ConnectionEvent.RESEND, "Connection is already active"),
        (
            ConnectionStatus.REVOKED,
            ConnectionEvent.RESEND,
            "Cannot resend a revoked invitation. Create a new one instead.",
        ),
        (ConnectionStatus.PENDING, ConnectionEvent.CHANGE_TIER, "Can only change tier for active connections"),
    ])
    def test_rejection_messages(self, status, event, message):
        with pytest.raises(InvalidTransitionError) as exc_info:
            next_status(status, event)
        assert exc_info.value.message == message
        assert exc_info.value.status == status.value
        assert exc_info.value.event == event.value
        assert exc_info.value.status_code == 400

    def test_unlisted_pair_gets_generic_message(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            next_status(ConnectionStatus.ACTIVE, ConnectionEvent.EXPIRE)
        assert "expire" in exc_info.value.message

    def test_active_cannot_go_back_to_pending(self):
        targets = {
            target for (status, _), target in TRANSITIONS.items()
            if status == ConnectionStatus.ACTIVE
        }
        assert ConnectionStatus.PENDING not in targets


class TestParseTier:
    def test_known_values(self):
        assert parse_tier("full") == SharingTier.FULL
        assert parse_tier("data_only") == SharingTier.DATA_ONLY

    @pytest.mark.parametrize("value", [None, "", "FULL", "everything"])
    def test_unknown_values(self, value):
        assert parse_tier(value) is None

    def test_default_tier_is_data_only(self):
        assert DEFAULT_TIER == SharingTier.DATA_ONLY
