#app/policies/route_guard.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Union

from app.models.enums import ProfileRole


class GuardState(str, Enum):
    LOADING = "LOADING"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    SUSPENDED = "SUSPENDED"
    NEEDS_ONBOARDING = "NEEDS_ONBOARDING"
    PENDING_ROLE_SELECTION = "PENDING_ROLE_SELECTION"
    ROLE_MISMATCH = "ROLE_MISMATCH"
    AUTHORIZED = "AUTHORIZED"


LOGIN_PATH = "/auth"
ROLE_SELECTION_PATH = "/role-selection"
SUSPENDED_PATH = "/suspended"
ONBOARDING_PATH = "/onboarding"
HOME_PATH = "/"

ROLE_DASHBOARD_PATHS = {
    ProfileRole.ADMIN: "/admin/dashboard",
    ProfileRole.BUYER_SELLER: "/buyer-seller/dashboard",
    ProfileRole.BROKER: "/broker/dashboard",
    ProfileRole.DEVELOPER: "/developer/dashboard",
    ProfileRole.SOCIETY_OWNER: "/society-owner/dashboard",
    ProfileRole.SOCIETY_MEMBER: "/society-member/dashboard",
}


def dashboard_path(role: Optional[ProfileRole]) -> str:
    if role is None:
        return HOME_PATH
    return ROLE_DASHBOARD_PATHS.get(role, HOME_PATH)


@dataclass(frozen=True)
class GuardInput:
    session_present: bool
    session_loading: bool = False
    roles_count: int = 0
    selected_role: Optional[ProfileRole] = None
    required_roles: Optional[FrozenSet[ProfileRole]] = None
    account_suspended: bool = False


@dataclass(frozen=True)
class GuardDecision:
    state: GuardState
    redirect_to: Optional[str] = None

    @property
    def render(self) -> bool:
        return self.state == GuardState.AUTHORIZED


def required_role_set(
    required: Union[None, ProfileRole, Iterable[ProfileRole]],
) -> Optional[FrozenSet[ProfileRole]]:
    if required is None:
        return None
    if isinstance(required, ProfileRole):
        return frozenset({required})
    roles = frozenset(required)
    return roles or None


def decide(g: GuardInput) -> GuardDecision:
    """
    Pure route decision. Checks run in a fixed priority order:
    LOADING > UNAUTHENTICATED > SUSPENDED > NEEDS_ONBOARDING > PENDING_ROLE_SELECTION > ROLE_MISMATCH > AUTHORIZED
    """
    if g.session_loading:
        return GuardDecision(GuardState.LOADING)

    if not g.session_present:
        return GuardDecision(GuardState.UNAUTHENTICATED, LOGIN_PATH)

    # unconditional: no test/mock bypass
    if g.account_suspended:
        return GuardDecision(GuardState.SUSPENDED, SUSPENDED_PATH)

    if g.roles_count == 0:
        return GuardDecision(GuardState.NEEDS_ONBOARDING, ONBOARDING_PATH)

    if g.selected_role is None and (g.roles_count > 1 or g.required_roles):
        return GuardDecision(GuardState.PENDING_ROLE_SELECTION, ROLE_SELECTION_PATH)

    if g.required_roles and g.selected_role not in g.required_roles:
        return GuardDecision(GuardState.ROLE_MISMATCH, dashboard_path(g.selected_role))

    return GuardDecision(GuardState.AUTHORIZED)
