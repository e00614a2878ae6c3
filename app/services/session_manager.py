# app/services/session_manager.py
from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Set, Tuple

from app.core.errors import RoleNotOwned, SessionNotFound
from app.core.locks import KeyedLocks
from app.core.phone import PhoneNormalizer
from app.core.redaction import phone_log_fields
from app.core.types import Clock, RoleProfile, utcnow
from app.models.enums import ProfileRole
from app.services.profile_resolver import ProfileResolver
from app.services.selected_role_store import SelectedRoleStore

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """
    Authenticated context for one verified phone.

    `selected_role` is None while the user has several roles and has not
    picked one yet (pending role selection). It is only ever set by
    `SessionManager._select`, which checks ownership first.
    """

    session_id: str
    phone: str
    roles: Tuple[RoleProfile, ...]
    device_key: str
    created_at: datetime
    expires_at: datetime
    account_suspended: bool = False
    selected_role: Optional[RoleProfile] = field(default=None)

    @property
    def pending_role_selection(self) -> bool:
        return self.selected_role is None and len(self.roles) > 1

    @property
    def suspended(self) -> bool:
        return self.account_suspended or bool(self.selected_role and self.selected_role.suspended)

    def owned(self, role: ProfileRole) -> Optional[RoleProfile]:
        for p in self.roles:
            if p.role == role:
                return p
        return None


class ResolutionSequencer:
    """Monotonic per-key tokens; only the newest token's result may be applied."""

    def __init__(self) -> None:
        self._latest: Dict[str, int] = defaultdict(int)

    def begin(self, key: str) -> int:
        self._latest[key] += 1
        return self._latest[key]

    def is_current(self, key: str, token: int) -> bool:
        return self._latest.get(key) == token

    def forget(self, key: str) -> None:
        self._latest.pop(key, None)


class SessionManager:
    """
    Holds live sessions and mediates role selection / switching.

    Writers on one session (select, switch, end, applying a refresh) are
    serialized by a per-session lock; sessions never share a lock. A session
    whose roles all disappear on re-resolution is ended: zero roles is the
    onboarding outcome, never a live session.
    """

    def __init__(
        self,
        resolver: ProfileResolver,
        selected_roles: SelectedRoleStore,
        normalizer: PhoneNormalizer,
        session_ttl_seconds: int = 86400,
        clock: Clock = utcnow,
    ) -> None:
        self.resolver = resolver
        self.selected_roles = selected_roles
        self.normalizer = normalizer
        self.session_ttl_seconds = session_ttl_seconds
        self.clock = clock

        self._sessions: Dict[str, Session] = {}
        self._locks = KeyedLocks()
        self._sequencer = ResolutionSequencer()
        self._inflight: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()

    # ---------------------------
    # READS
    # ---------------------------

    def current_session(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if self.clock() >= session.expires_at:
            self._drop(session)
            return None
        return session

    def _require(self, session_id: str) -> Session:
        session = self.current_session(session_id)
        if session is None:
            raise SessionNotFound()
        return session

    def is_resolving(self, session_id: str) -> bool:
        task = self._inflight.get(session_id)
        return task is not None and not task.done()

    # ---------------------------
    # MUTATIONS
    # ---------------------------

    async def start_session(
        self,
        verified_phone: str,
        roles: Sequence[RoleProfile],
        *,
        account_suspended: bool = False,
        device_key: Optional[str] = None,
    ) -> Optional[Session]:
        """
        Returns None when there are no roles: the caller routes to onboarding.
        One role is selected immediately; several roles leave the session
        pending selection unless this device already chose one of them.
        """
        if not roles:
            return None
        if len({p.role for p in roles}) != len(roles):
            raise ValueError("Role profiles must be unique per role.")

        now = self.clock()
        session_id = uuid.uuid4().hex
        session = Session(
            session_id=session_id,
            phone=verified_phone,
            roles=tuple(roles),
            device_key=device_key or session_id,
            created_at=now,
            expires_at=now + timedelta(seconds=self.session_ttl_seconds),
            account_suspended=account_suspended,
        )
        self._sessions[session_id] = session

        async with self._locks.hold(session_id):
            if len(session.roles) == 1:
                await self._select(session, session.roles[0].role)
            else:
                remembered = await asyncio.to_thread(self.selected_roles.get, session.device_key, verified_phone)
                if remembered and session.owned(ProfileRole(remembered)):
                    await self._select(session, ProfileRole(remembered))

        logger.info(
            "session started",
            extra={
                **phone_log_fields(verified_phone),
                "session_id": session_id,
                "roles": [p.role.value for p in session.roles],
                "selected_role": session.selected_role.role.value if session.selected_role else None,
            },
        )
        return session

    async def select_role(self, session_id: str, role: ProfileRole) -> Session:
        self._require(session_id)
        async with self._locks.hold(session_id):
            session = self._require(session_id)
            await self._select(session, role)
            return session

    async def _select(self, session: Session, role: ProfileRole) -> None:
        # the only place selected_role is assigned a profile
        profile = session.owned(role)
        if profile is None:
            raise RoleNotOwned(role.value)
        session.selected_role = profile
        await asyncio.to_thread(self.selected_roles.set, session.device_key, session.phone, role.value)
        logger.info("role selected", extra={"session_id": session.session_id, "role": role.value})

    async def _apply_roles(self, session: Session, roles: Sequence[RoleProfile]) -> None:
        """Install freshly resolved roles; ends the session when none remain."""
        if not roles:
            await asyncio.to_thread(self.selected_roles.clear, session.device_key)
            self._drop(session)
            logger.info(
                "session ended: no role profiles remain",
                extra={**phone_log_fields(session.phone), "session_id": session.session_id},
            )
            return

        session.roles = tuple(roles)
        selected = session.selected_role
        if selected is not None and session.owned(selected.role):
            # rebind to the fresh copy (e.g. updated suspension flag)
            await self._select(session, selected.role)
        elif selected is not None:
            session.selected_role = None
            await asyncio.to_thread(self.selected_roles.clear, session.device_key)
        if session.selected_role is None and len(session.roles) == 1:
            await self._select(session, session.roles[0].role)

    async def switch_role(self, session_id: str) -> List[RoleProfile]:
        """
        Clears the selection (no new OTP) and re-reads roles from the backend,
        since they may have changed since sign-in. An empty result ends the
        session and returns [].
        """
        self._require(session_id)
        async with self._locks.hold(session_id):
            session = self._require(session_id)
            session.selected_role = None
            await asyncio.to_thread(self.selected_roles.clear, session.device_key)

            token = self._sequencer.begin(session_id)
            self._cancel_inflight(session_id)
            roles = await self.resolver.resolve(session.phone, self.normalizer.variations(session.phone))
            suspended = await self.resolver.is_suspended(session.phone)

            if not self._sequencer.is_current(session_id, token) or session_id not in self._sessions:
                return list(session.roles)

            session.account_suspended = suspended
            await self._apply_roles(session, roles)

            logger.info(
                "role switch started",
                extra={"session_id": session_id, "roles": [p.role.value for p in roles]},
            )
            return list(roles)

    # ---------------------------
    # BACKGROUND RE-RESOLUTION
    # ---------------------------

    def _begin_refresh(self, session: Session) -> Tuple[int, asyncio.Task]:
        # supersedes (and cancels) any lookup already in flight for the session
        token = self._sequencer.begin(session.session_id)
        self._cancel_inflight(session.session_id)
        task = asyncio.ensure_future(
            self.resolver.resolve(session.phone, self.normalizer.variations(session.phone))
        )
        self._inflight[session.session_id] = task
        return token, task

    async def refresh_roles(self, session_id: str) -> Optional[List[RoleProfile]]:
        """
        Re-resolve roles for a navigation.

        A newer refresh (or switch) for the same session supersedes this one:
        the older lookup is cancelled and its result is never applied.
        Returns None when superseded.
        """
        session = self._require(session_id)
        token, task = self._begin_refresh(session)
        return await self._finish_refresh(session_id, token, task)

    def schedule_refresh(self, session_id: str) -> asyncio.Task:
        """
        Start a refresh without waiting for it. The lookup is in flight (and
        `is_resolving` true) as soon as this returns.
        """
        session = self._require(session_id)
        token, task = self._begin_refresh(session)
        runner = asyncio.ensure_future(self._finish_refresh(session_id, token, task))
        self._background.add(runner)
        runner.add_done_callback(self._background_done)
        return runner

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("background role refresh failed", extra={"error": type(exc).__name__})

    async def _finish_refresh(
        self, session_id: str, token: int, task: asyncio.Task
    ) -> Optional[List[RoleProfile]]:
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._inflight.get(session_id) is task:
                del self._inflight[session_id]

        if task.cancelled() or not self._sequencer.is_current(session_id, token):
            logger.info("stale role resolution discarded", extra={"session_id": session_id, "token": token})
            return None

        roles = task.result()
        if session_id not in self._sessions:
            return None
        async with self._locks.hold(session_id):
            if not self._sequencer.is_current(session_id, token):
                return None
            session = self.current_session(session_id)
            if session is None:
                return None
            await self._apply_roles(session, roles)
            return list(roles)

    def cancel_refresh(self, session_id: str) -> None:
        """Navigation away: drop any in-flight lookup for this session."""
        if session_id not in self._sessions:
            return
        self._sequencer.begin(session_id)
        self._cancel_inflight(session_id)

    def _cancel_inflight(self, session_id: str) -> None:
        task = self._inflight.pop(session_id, None)
        if task is not None and not task.done():
            task.cancel()

    async def end_session(self, session_id: str) -> None:
        if session_id not in self._sessions:
            return
        async with self._locks.hold(session_id):
            session = self._sessions.get(session_id)
            if session is None:
                return
            await asyncio.to_thread(self.selected_roles.clear, session.device_key)
            self._drop(session)
            logger.info("session ended", extra={"session_id": session_id})

    def _drop(self, session: Session) -> None:
        self._cancel_inflight(session.session_id)
        self._sessions.pop(session.session_id, None)
        self._sequencer.forget(session.session_id)
