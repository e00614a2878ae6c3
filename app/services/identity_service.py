# app/services/identity_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from app.core.config import Settings
from app.core.errors import AccountSuspended
from app.core.phone import PhoneNormalizer
from app.core.redaction import phone_log_fields
from app.core.types import Clock, OtpChallenge, RoleProfile, utcnow
from app.models.enums import LoginOutcome, ProfileRole
from app.policies.route_guard import GuardDecision, GuardInput, decide, required_role_set
from app.services.challenge_store import ChallengeStore
from app.services.messaging import MessagingGateway
from app.services.otp_service import ChallengeStatus, OtpChallengeManager, OtpPolicy
from app.services.profile_resolver import ProfileResolver
from app.services.profile_store import ProfileStore
from app.services.selected_role_store import SelectedRoleStore
from app.services.session_manager import Session, SessionManager

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    outcome: LoginOutcome
    phone: str
    session: Optional[Session] = None
    roles: List[RoleProfile] = field(default_factory=list)


class IdentityService:
    """
    Surface used by the HTTP layer:
    request_otp, verify_otp, current_session, select_role, switch_role,
    sign_out, authorize.
    """

    def __init__(
        self,
        normalizer: PhoneNormalizer,
        otp: OtpChallengeManager,
        resolver: ProfileResolver,
        sessions: SessionManager,
    ) -> None:
        self.normalizer = normalizer
        self.otp = otp
        self.resolver = resolver
        self.sessions = sessions

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        challenge_store: ChallengeStore,
        profile_store: ProfileStore,
        selected_role_store: SelectedRoleStore,
        gateway: MessagingGateway,
        clock: Clock = utcnow,
        code_generator=None,
    ) -> "IdentityService":
        normalizer = PhoneNormalizer(
            country_code=settings.home_country_code,
            national_length=settings.national_number_length,
            min_digits=settings.min_phone_digits,
        )
        otp = OtpChallengeManager(
            store=challenge_store,
            gateway=gateway,
            hash_secret=settings.otp_hash_secret,
            policy=OtpPolicy(
                code_length=settings.otp_length,
                ttl_seconds=settings.otp_ttl_seconds,
                resend_cooldown_seconds=settings.otp_resend_cooldown_seconds,
                max_attempts=settings.otp_max_attempts,
                delivery_retries=settings.otp_delivery_retries,
            ),
            clock=clock,
            code_generator=code_generator,
        )
        resolver = ProfileResolver(profile_store, retry_backoff_seconds=settings.backend_retry_backoff_seconds)
        sessions = SessionManager(
            resolver=resolver,
            selected_roles=selected_role_store,
            normalizer=normalizer,
            session_ttl_seconds=settings.jwt_access_token_minutes * 60,
            clock=clock,
        )
        return cls(normalizer, otp, resolver, sessions)

    # ---------------------------
    # OTP
    # ---------------------------

    async def request_otp(self, raw_phone: str) -> OtpChallenge:
        phone = self.normalizer.normalize(raw_phone)
        return await self.otp.request_challenge(phone)

    async def otp_status(self, raw_phone: str) -> ChallengeStatus:
        return await self.otp.status(self.normalizer.normalize(raw_phone))

    async def verify_otp(self, raw_phone: str, code: str, device_key: Optional[str] = None) -> LoginResult:
        """
        OTP success -> resolve profiles -> suspension check -> session.
        Zero profiles is the onboarding outcome, not an error.

        The challenge is consumed only after the backend lookups succeed, so
        a BackendUnavailable leaves the same code valid for a manual retry.
        """
        phone = self.normalizer.normalize(raw_phone)
        async with self.otp.verification(phone, code):
            roles = await self.resolver.resolve(phone, self.normalizer.variations(raw_phone))
            suspended = await self.resolver.is_suspended(phone) if roles else False

        if not roles:
            logger.info("verified phone has no profiles", extra=phone_log_fields(phone))
            return LoginResult(LoginOutcome.NEEDS_ONBOARDING, phone)

        session = await self.sessions.start_session(
            phone, roles, account_suspended=suspended, device_key=device_key
        )

        if session.suspended:
            outcome = LoginOutcome.SUSPENDED
        elif session.pending_role_selection:
            outcome = LoginOutcome.PENDING_ROLE_SELECTION
        else:
            outcome = LoginOutcome.AUTHENTICATED
        return LoginResult(outcome, phone, session, list(session.roles))

    # ---------------------------
    # SESSION
    # ---------------------------

    def current_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.current_session(session_id)

    async def select_role(self, session_id: str, role: ProfileRole) -> Session:
        session = self.sessions.current_session(session_id)
        if session is not None and session.account_suspended:
            raise AccountSuspended()
        return await self.sessions.select_role(session_id, role)

    async def switch_role(self, session_id: str) -> List[RoleProfile]:
        return await self.sessions.switch_role(session_id)

    async def sign_out(self, session_id: str) -> None:
        await self.sessions.end_session(session_id)

    async def refresh_roles(self, session_id: str) -> Optional[List[RoleProfile]]:
        return await self.sessions.refresh_roles(session_id)

    def start_refresh(self, session_id: str) -> None:
        """Kick off a background re-resolution; the guard reports LOADING meanwhile."""
        self.sessions.schedule_refresh(session_id)

    def cancel_refresh(self, session_id: str) -> None:
        self.sessions.cancel_refresh(session_id)

    # ---------------------------
    # ROUTE GUARD
    # ---------------------------

    def authorize(
        self,
        session_id: Optional[str],
        required: Union[None, ProfileRole, Iterable[ProfileRole]] = None,
    ) -> GuardDecision:
        session = self.sessions.current_session(session_id) if session_id else None
        if session is None:
            return decide(GuardInput(session_present=False))
        return decide(
            GuardInput(
                session_present=True,
                session_loading=self.sessions.is_resolving(session.session_id),
                roles_count=len(session.roles),
                selected_role=session.selected_role.role if session.selected_role else None,
                required_roles=required_role_set(required),
                account_suspended=session.suspended,
            )
        )
