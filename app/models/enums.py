#app/models/enums.py
from __future__ import annotations
from enum import Enum


class ProfileRole(str, Enum):
    ADMIN = "admin"
    BUYER_SELLER = "buyer_seller"
    BROKER = "broker"
    DEVELOPER = "developer"
    SOCIETY_OWNER = "society_owner"
    SOCIETY_MEMBER = "society_member"


# Display / tie-break order for role lists
ROLE_ORDER = [
    ProfileRole.ADMIN,
    ProfileRole.BUYER_SELLER,
    ProfileRole.BROKER,
    ProfileRole.DEVELOPER,
    ProfileRole.SOCIETY_OWNER,
    ProfileRole.SOCIETY_MEMBER,
]


class ChallengeState(str, Enum):
    NONE = "NONE"
    ISSUED = "ISSUED"
    EXPIRED = "EXPIRED"
    EXHAUSTED = "EXHAUSTED"


class LoginOutcome(str, Enum):
    AUTHENTICATED = "AUTHENTICATED"
    PENDING_ROLE_SELECTION = "PENDING_ROLE_SELECTION"
    NEEDS_ONBOARDING = "NEEDS_ONBOARDING"
    SUSPENDED = "SUSPENDED"
