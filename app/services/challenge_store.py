# app/services/challenge_store.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional, Protocol

from sqlalchemy import delete
from sqlalchemy.orm import sessionmaker

from app.core.types import OtpChallenge, as_utc
from app.models.otp_challenge import OtpChallengeRecord


class ChallengeStore(Protocol):
    def get(self, phone: str) -> Optional[OtpChallenge]: ...

    def put(self, challenge: OtpChallenge) -> None: ...

    def delete(self, phone: str) -> None: ...

    def purge_expired(self, now: datetime) -> int: ...


class InMemoryChallengeStore:
    """Process-local store keyed by canonical phone."""

    def __init__(self) -> None:
        self._by_phone: Dict[str, OtpChallenge] = {}

    def get(self, phone: str) -> Optional[OtpChallenge]:
        return self._by_phone.get(phone)

    def put(self, challenge: OtpChallenge) -> None:
        self._by_phone[challenge.phone] = challenge

    def delete(self, phone: str) -> None:
        self._by_phone.pop(phone, None)

    def purge_expired(self, now: datetime) -> int:
        stale = [p for p, ch in self._by_phone.items() if ch.is_expired(now)]
        for p in stale:
            del self._by_phone[p]
        return len(stale)


class SqlAlchemyChallengeStore:
    """Durable store: one `otp_challenges` row per phone."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    @staticmethod
    def _to_domain(row: OtpChallengeRecord) -> OtpChallenge:
        return OtpChallenge(
            phone=row.phone,
            code_hash=row.code_hash,
            issued_at=as_utc(row.issued_at),
            expires_at=as_utc(row.expires_at),
            attempts_remaining=row.attempts_remaining,
            resend_available_at=as_utc(row.resend_available_at),
            previous_code_hash=row.previous_code_hash,
        )

    def get(self, phone: str) -> Optional[OtpChallenge]:
        with self.session_factory() as db:
            row = db.get(OtpChallengeRecord, phone)
            return self._to_domain(row) if row else None

    def put(self, challenge: OtpChallenge) -> None:
        with self.session_factory() as db:
            row = db.get(OtpChallengeRecord, challenge.phone)
            if row is None:
                row = OtpChallengeRecord(phone=challenge.phone)
                db.add(row)
            row.code_hash = challenge.code_hash
            row.issued_at = challenge.issued_at
            row.expires_at = challenge.expires_at
            row.resend_available_at = challenge.resend_available_at
            row.attempts_remaining = challenge.attempts_remaining
            row.previous_code_hash = challenge.previous_code_hash
            db.commit()

    def delete(self, phone: str) -> None:
        with self.session_factory() as db:
            row = db.get(OtpChallengeRecord, phone)
            if row is not None:
                db.delete(row)
                db.commit()

    def purge_expired(self, now: datetime) -> int:
        with self.session_factory() as db:
            result = db.execute(delete(OtpChallengeRecord).where(OtpChallengeRecord.expires_at < now))
            db.commit()
            return result.rowcount or 0
