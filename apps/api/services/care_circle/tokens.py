"""
Invite tokens.

48 random bytes, hex encoded: 96 characters, 384 bits of entropy. Lookups are
plain equality against the unique index; the entropy plus the rate limit on
the public token routes is what keeps guessing impractical.
"""

import re
import secrets
from datetime import datetime, timedelta
from typing import Optional

from models import as_utc
from services.care_circle.errors import CareCircleValidationError

TOKEN_BYTES = 48
MIN_TOKEN_LENGTH = 32
MAX_TOKEN_LENGTH = 128

_TOKEN_SHAPE = re.compile(r"^[A-Za-z0-9_-]+$")


def generate_invite_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def token_expiry(now: datetime, ttl_days: int) -> datetime:
    return now + timedelta(days=ttl_days)


def is_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    """A missing expiry counts as expired."""
    if expires_at is None:
        return True
    return now > as_utc(expires_at)


def validate_token_shape(token: Optional[str]) -> str:
    if (
        not token
        or not (MIN_TOKEN_LENGTH <= len(token) <= MAX_TOKEN_LENGTH)
        or not _TOKEN_SHAPE.match(token)
    ):
        raise CareCircleValidationError("Invalid invite token format", field="token")
    return token
