# app/services/profile_store.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Protocol, Set

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from app.core.errors import BackendUnavailable
from app.core.types import RoleProfile
from app.models.account import Account
from app.models.enums import ProfileRole
from app.models.role_profile import RoleProfileRecord

logger = logging.getLogger(__name__)


class ProfileStore(Protocol):
    """Backend-authoritative source of role profiles (read-only here)."""

    def find_profiles_by_phone_variants(self, variants: Set[str]) -> List[RoleProfile]: ...

    def is_suspended(self, account_id: str) -> bool: ...


def _to_domain(row: RoleProfileRecord) -> RoleProfile:
    return RoleProfile(
        role=ProfileRole(row.role),
        profile_id=str(row.id),
        display_name=row.display_name,
        suspended=bool(row.suspended),
        stored_phone=row.phone,
    )


class SqlAlchemyProfileStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def find_profiles_by_phone_variants(self, variants: Set[str]) -> List[RoleProfile]:
        if not variants:
            return []
        try:
            with self.session_factory() as db:
                rows = db.execute(
                    select(RoleProfileRecord)
                    .where(RoleProfileRecord.phone.in_(sorted(variants)))
                    .order_by(RoleProfileRecord.created_at)
                ).scalars().all()
        except OperationalError as exc:
            logger.warning("profile store unavailable", extra={"error": str(exc.orig)})
            raise BackendUnavailable() from exc

        out: List[RoleProfile] = []
        for row in rows:
            try:
                out.append(_to_domain(row))
            except ValueError:
                logger.warning("skipping profile with unknown role", extra={"profile_id": str(row.id), "role": row.role})
        return out

    def is_suspended(self, account_id: str) -> bool:
        try:
            with self.session_factory() as db:
                acct = db.get(Account, account_id)
        except OperationalError as exc:
            raise BackendUnavailable() from exc
        return bool(acct and acct.is_suspended)


@dataclass
class InMemoryProfileStore:
    """Dict-backed store for local runs and tests; rows keyed by stored phone."""

    profiles: Dict[str, List[RoleProfile]] = field(default_factory=dict)
    suspended_accounts: Set[str] = field(default_factory=set)

    def add(self, phone: str, profiles: Iterable[RoleProfile]) -> None:
        self.profiles.setdefault(phone, []).extend(
            p if p.stored_phone else RoleProfile(p.role, p.profile_id, p.display_name, p.suspended, phone)
            for p in profiles
        )

    def suspend(self, account_id: str) -> None:
        self.suspended_accounts.add(account_id)

    def find_profiles_by_phone_variants(self, variants: Set[str]) -> List[RoleProfile]:
        out: List[RoleProfile] = []
        for v in sorted(variants):
            out.extend(self.profiles.get(v, []))
        return out

    def is_suspended(self, account_id: str) -> bool:
        return account_id in self.suspended_accounts
