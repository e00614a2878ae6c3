# app/services/profile_resolver.py
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Set

from app.core.errors import BackendUnavailable
from app.core.redaction import phone_log_fields
from app.core.types import RoleProfile
from app.models.enums import ROLE_ORDER, ProfileRole
from app.services.profile_store import ProfileStore

logger = logging.getLogger(__name__)


def dedupe_by_role(canonical_phone: str, profiles: Iterable[RoleProfile]) -> List[RoleProfile]:
    """
    One profile per role. When two stored spellings of the same number both
    carry a role, the row stored under the canonical form wins, else the
    first one seen.
    """
    chosen: Dict[ProfileRole, RoleProfile] = {}
    for p in profiles:
        current = chosen.get(p.role)
        if current is None:
            chosen[p.role] = p
            continue
        logger.warning(
            "duplicate role across phone variants",
            extra={"role": p.role.value, "kept": current.profile_id, "other": p.profile_id},
        )
        if current.stored_phone != canonical_phone and p.stored_phone == canonical_phone:
            chosen[p.role] = p
    return [chosen[r] for r in ROLE_ORDER if r in chosen]


class ProfileResolver:
    """Read-only lookup of every role profile a phone owns."""

    def __init__(self, store: ProfileStore, retry_backoff_seconds: float = 0.5) -> None:
        self.store = store
        self.retry_backoff_seconds = retry_backoff_seconds

    async def resolve(self, canonical_phone: str, variations: Set[str]) -> List[RoleProfile]:
        variants = set(variations) | {canonical_phone}
        try:
            rows = await asyncio.to_thread(self.store.find_profiles_by_phone_variants, variants)
        except BackendUnavailable:
            logger.warning("profile lookup failed; retrying once", extra=phone_log_fields(canonical_phone))
            await asyncio.sleep(self.retry_backoff_seconds)
            rows = await asyncio.to_thread(self.store.find_profiles_by_phone_variants, variants)

        profiles = dedupe_by_role(canonical_phone, rows)
        logger.info(
            "profiles resolved",
            extra={**phone_log_fields(canonical_phone), "roles": [p.role.value for p in profiles]},
        )
        return profiles

    async def is_suspended(self, account_id: str) -> bool:
        try:
            return await asyncio.to_thread(self.store.is_suspended, account_id)
        except BackendUnavailable:
            await asyncio.sleep(self.retry_backoff_seconds)
            return await asyncio.to_thread(self.store.is_suspended, account_id)
