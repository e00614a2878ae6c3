# app/services/otp_service.py
from __future__ import annotations

import asyncio
import logging
import secrets
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Optional

from app.core.errors import (
    AttemptsExhausted,
    DeliveryFailed,
    Expired,
    InvalidCode,
    NoActiveChallenge,
    ResendCooldownActive,
    TransientFailure,
)
from app.core.hashing import digests_match, otp_digest
from app.core.locks import KeyedLocks
from app.core.redaction import phone_log_fields
from app.core.types import Clock, OtpChallenge, utcnow
from app.models.enums import ChallengeState
from app.services.challenge_store import ChallengeStore
from app.services.messaging import MessagingGateway

logger = logging.getLogger(__name__)


def random_numeric_code(length: int = 6) -> str:
    return f"{secrets.randbelow(10 ** length):0{length}d}"


@dataclass(frozen=True)
class OtpPolicy:
    code_length: int = 6
    ttl_seconds: int = 300
    resend_cooldown_seconds: int = 60
    max_attempts: int = 5
    delivery_retries: int = 1


@dataclass(frozen=True)
class ChallengeStatus:
    phone: str
    state: ChallengeState
    resend_seconds_remaining: int
    expires_in_seconds: int
    attempts_remaining: int

    @classmethod
    def of(cls, phone: str, challenge: Optional[OtpChallenge], now: datetime) -> "ChallengeStatus":
        if challenge is None:
            return cls(phone, ChallengeState.NONE, 0, 0, 0)

        if challenge.is_expired(now):
            state = ChallengeState.EXPIRED
        elif challenge.attempts_remaining <= 0:
            state = ChallengeState.EXHAUSTED
        else:
            state = ChallengeState.ISSUED

        return cls(
            phone=phone,
            state=state,
            resend_seconds_remaining=challenge.resend_seconds_remaining(now),
            expires_in_seconds=max(0, int((challenge.expires_at - now).total_seconds())),
            attempts_remaining=challenge.attempts_remaining,
        )


class OtpChallengeManager:
    """
    Issues and verifies one-time codes, one active challenge per canonical phone.

    NONE -> ISSUED -> (consumed) | EXPIRED | EXHAUSTED

    A verified challenge is consumed, so status reads NONE again afterwards.
    Requests and verifications for the same phone run under one lock, so a
    resend never interleaves with a verify in flight. Different phones never
    share a lock. Only code digests are stored.
    """

    def __init__(
        self,
        store: ChallengeStore,
        gateway: MessagingGateway,
        hash_secret: str,
        policy: Optional[OtpPolicy] = None,
        clock: Clock = utcnow,
        code_generator: Optional[Callable[[], str]] = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.hash_secret = hash_secret
        self.policy = policy or OtpPolicy()
        self.clock = clock
        self.code_generator = code_generator or (lambda: random_numeric_code(self.policy.code_length))
        self._locks = KeyedLocks()
        self._last_sweep: Optional[datetime] = None

    def _digest(self, phone: str, code: str) -> str:
        return otp_digest(self.hash_secret, phone, code)

    async def _get(self, phone: str) -> Optional[OtpChallenge]:
        return await asyncio.to_thread(self.store.get, phone)

    async def _put(self, challenge: OtpChallenge) -> None:
        await asyncio.to_thread(self.store.put, challenge)

    async def _delete(self, phone: str) -> None:
        await asyncio.to_thread(self.store.delete, phone)

    async def _sweep(self, now: datetime) -> None:
        # at most once per code lifetime
        if self._last_sweep is not None and (now - self._last_sweep).total_seconds() < self.policy.ttl_seconds:
            return
        self._last_sweep = now
        purged = await asyncio.to_thread(self.store.purge_expired, now)
        if purged:
            logger.info("expired otp challenges purged", extra={"count": purged})

    # ---------------------------
    # ISSUE
    # ---------------------------

    async def request_challenge(self, phone: str) -> OtpChallenge:
        async with self._locks.hold(phone):
            now = self.clock()
            await self._sweep(now)
            existing = await self._get(phone)
            if existing is not None:
                wait = existing.resend_seconds_remaining(now)
                if wait > 0:
                    # existing challenge (and its cooldown) stays as is
                    raise ResendCooldownActive(wait)

            code = self.code_generator()
            await self._deliver(phone, code)

            challenge = OtpChallenge(
                phone=phone,
                code_hash=self._digest(phone, code),
                issued_at=now,
                expires_at=now + timedelta(seconds=self.policy.ttl_seconds),
                attempts_remaining=self.policy.max_attempts,
                resend_available_at=now + timedelta(seconds=self.policy.resend_cooldown_seconds),
                previous_code_hash=existing.code_hash if existing is not None else None,
            )
            await self._put(challenge)
            logger.info("otp challenge issued", extra=phone_log_fields(phone))
            return challenge

    async def _deliver(self, phone: str, code: str) -> None:
        attempts = 1 + self.policy.delivery_retries
        for attempt in range(1, attempts + 1):
            try:
                await self.gateway.send(phone, code)
                return
            except TransientFailure:
                logger.warning(
                    "otp delivery attempt %d/%d failed",
                    attempt,
                    attempts,
                    extra=phone_log_fields(phone),
                )
        raise DeliveryFailed()

    # ---------------------------
    # VERIFY
    # ---------------------------

    @asynccontextmanager
    async def verification(self, phone: str, code: str) -> AsyncIterator[str]:
        """
        Checks `code` and yields the verified phone. The challenge is consumed
        only when the block exits cleanly; if it raises, the challenge (with
        its attempt count) stays so the same code can be submitted again.
        """
        async with self._locks.hold(phone):
            await self._check(phone, code)
            yield phone
            await self._delete(phone)
            logger.info("otp verified", extra=phone_log_fields(phone))

    async def verify(self, phone: str, code: str) -> str:
        """Returns the verified canonical phone; raises on every other outcome."""
        async with self.verification(phone, code) as verified:
            return verified

    async def _check(self, phone: str, code: str) -> None:
        now = self.clock()
        challenge = await self._get(phone)
        if challenge is None:
            raise NoActiveChallenge()

        if challenge.is_expired(now):
            await self._delete(phone)
            logger.info("otp challenge expired", extra=phone_log_fields(phone))
            raise Expired()

        if challenge.attempts_remaining <= 0:
            raise AttemptsExhausted()

        digest = self._digest(phone, code)
        if digests_match(digest, challenge.code_hash):
            return

        if challenge.previous_code_hash and digests_match(digest, challenge.previous_code_hash):
            raise Expired("This code was replaced by a newer one. Use the latest code sent to you.")

        remaining = challenge.attempts_remaining - 1
        await self._put(challenge.with_attempts(remaining))
        logger.info(
            "otp mismatch",
            extra={**phone_log_fields(phone), "attempts_remaining": remaining},
        )
        raise InvalidCode(remaining)

    # ---------------------------
    # READS
    # ---------------------------

    def describe(self, challenge: OtpChallenge) -> ChallengeStatus:
        return ChallengeStatus.of(challenge.phone, challenge, self.clock())

    async def status(self, phone: str) -> ChallengeStatus:
        """Countdown and state derived from stored instants, never from a running timer."""
        return ChallengeStatus.of(phone, await self._get(phone), self.clock())

    async def resend_seconds_remaining(self, phone: str) -> int:
        return (await self.status(phone)).resend_seconds_remaining
