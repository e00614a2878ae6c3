from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Optional

from app.models.enums import ProfileRole

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    # SQLite drops tzinfo on round-trip
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class RoleProfile:
    role: ProfileRole
    profile_id: str
    display_name: str
    suspended: bool = False
    # phone as stored by the backend; used to prefer canonical rows on dedup
    stored_phone: Optional[str] = None


@dataclass(frozen=True)
class OtpChallenge:
    phone: str
    code_hash: str
    issued_at: datetime
    expires_at: datetime
    attempts_remaining: int
    resend_available_at: datetime
    # hash of the code this challenge replaced; lets verify report "replaced" instead of "wrong"
    previous_code_hash: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def resend_seconds_remaining(self, now: datetime) -> int:
        remaining = (self.resend_available_at - now).total_seconds()
        if remaining <= 0:
            return 0
        # round up so the UI never shows 0 while still blocked
        return int(remaining) + (1 if remaining % 1 else 0)

    def with_attempts(self, attempts_remaining: int) -> "OtpChallenge":
        return replace(self, attempts_remaining=attempts_remaining)
