"""Invite token generation, expiry and shape checks."""
import re
from datetime import datetime, timedelta, timezone

import pytest

from services.care_circle.errors import CareCircleValidationError
from services.care_circle.tokens import (
    generate_invite_token,
    is_expired,
    token_expiry,
    validate_token_shape,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def test_tokens_are_96_hex_chars():
    token = generate_invite_token()
    assert len(token) == 96
    assert re.fullmatch(r"[0-9a-f]{96}", token)


def test_tokens_do_not_repeat():
    tokens = {generate_invite_token() for _ in range(2000)}
    assert len(tokens) == 2000


def test_generated_tokens_pass_shape_check():
    token = generate_invite_token()
    assert validate_token_shape(token) == token


def test_token_expiry():
    assert token_expiry(NOW, 7) == NOW + timedelta(days=7)


class TestIsExpired:
    def test_before_expiry(self):
        assert is_expired(NOW + timedelta(seconds=1), NOW) is False

    def test_at_expiry_is_still_valid(self):
        assert is_expired(NOW, NOW) is False

    def test_after_expiry(self):
        assert is_expired(NOW - timedelta(seconds=1), NOW) is True

    def test_missing_expiry_counts_as_expired(self):
        assert is_expired(None, NOW) is True

    def test_naive_expiry_is_read_as_utc(self):
        assert is_expired(datetime(2026, 10, 19, 12, 0), NOW) is False


class TestValidateTokenShape:
    @pytest.mark.parametrize("token", [
        None,
        "",
        "short",
        "a" * 31,
        "a" * 129,
        "a" * 40 + "!",
        "a" * 40 + "/..",
        "a" * 40 + " ",
    ])
    def test_rejects(self, token):
        with pytest.raises(CareCircleValidationError) as exc_info:
            validate_token_shape(token)
        assert exc_info.value.message == "Invalid invite token format"

    @pytest.mark.parametrize("token", ["a" * 32, "A-b_c" * 10, "0" * 128])
    def test_accepts(self, token):
        assert validate_token_shape(token) == token
