from __future__ import annotations
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.enums import ChallengeState, LoginOutcome, ProfileRole
from app.policies.route_guard import GuardState


class OtpRequest(BaseModel):
    phone: str = Field(..., min_length=1, max_length=32, description="phone as typed by the user")


class OtpRequestResponse(BaseModel):
    phone: str
    expires_in: int
    resend_available_in: int


class OtpStatusResponse(BaseModel):
    phone: str
    state: ChallengeState
    resend_available_in: int
    expires_in: int
    attempts_remaining: int


class OtpVerifyRequest(BaseModel):
    phone: str = Field(..., min_length=1, max_length=32)
    code: str = Field(..., pattern=r"^\d{4,8}$")


class RoleProfileOut(BaseModel):
    role: ProfileRole
    profile_id: str
    display_name: str
    suspended: bool = False


class SessionOut(BaseModel):
    session_id: str
    phone: str
    phone_verified: bool = True
    roles: List[RoleProfileOut]
    selected_role: Optional[RoleProfileOut] = None
    pending_role_selection: bool
    account_suspended: bool


class LoginResponse(BaseModel):
    outcome: LoginOutcome
    phone: str
    access_token: Optional[str] = None
    token_type: str = "bearer"
    session: Optional[SessionOut] = None


class SelectRoleRequest(BaseModel):
    role: ProfileRole


class SwitchRoleResponse(BaseModel):
    roles: List[RoleProfileOut]
    selected_role: Optional[RoleProfileOut] = None
    # set when no role profile remains and the session was ended
    outcome: Optional[LoginOutcome] = None


class GuardDecisionOut(BaseModel):
    state: GuardState
    redirect_to: Optional[str] = None
    render: bool
