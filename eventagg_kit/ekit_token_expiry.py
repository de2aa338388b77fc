import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from eventagg_kit.ekit_config import TOKEN_DEFAULT_EXPIRES_DAYS, TOKEN_WARNING_DAYS


SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class TokenExpiryStatus:
    is_expiring: bool
    days_until_expiry: int
    expires_at: Optional[datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def days_until_expiry(expires_at: datetime, now: Optional[datetime] = None) -> int:
    """
    Whole days between now and expires_at, rounded half up. Negative once
    the token is past expiry.
    """
    now = now or _utc_now()
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    days = (expires_at - now).total_seconds() / SECONDS_PER_DAY
    return int(math.floor(days + 0.5))


def is_token_expiring(days: int, warning_days: int = TOKEN_WARNING_DAYS) -> bool:
    return days <= warning_days


def evaluate_expiry(
    expires_at: Optional[datetime],
    warning_days: int = TOKEN_WARNING_DAYS,
    now: Optional[datetime] = None,
) -> TokenExpiryStatus:
    # unknown expiry is treated as expiring now, so it gets refreshed
    if expires_at is None:
        return TokenExpiryStatus(is_expiring=True, days_until_expiry=0, expires_at=None)
    days = days_until_expiry(expires_at, now)
    return TokenExpiryStatus(
        is_expiring=is_token_expiring(days, warning_days),
        days_until_expiry=days,
        expires_at=expires_at,
    )


def calculate_expiration_date(expires_in_days: int = TOKEN_DEFAULT_EXPIRES_DAYS, now: Optional[datetime] = None) -> datetime:
    return (now or _utc_now()) + timedelta(days=expires_in_days)
