#app/api/v1/auth.py
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.core.deps import (
    get_current_session,
    get_device_key,
    get_identity,
    get_optional_session_id,
    get_session_id,
)
from app.core.security import create_session_token
from app.core.types import RoleProfile
from app.models.enums import LoginOutcome, ProfileRole
from app.schemas.auth import (
    GuardDecisionOut,
    LoginResponse,
    OtpRequest,
    OtpRequestResponse,
    OtpStatusResponse,
    OtpVerifyRequest,
    RoleProfileOut,
    SelectRoleRequest,
    SessionOut,
    SwitchRoleResponse,
)
from app.services.identity_service import IdentityService
from app.services.session_manager import Session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth")


def _profile_out(p: Optional[RoleProfile]) -> Optional[RoleProfileOut]:
    if p is None:
        return None
    return RoleProfileOut(
        role=p.role,
        profile_id=p.profile_id,
        display_name=p.display_name,
        suspended=p.suspended,
    )


def _session_out(s: Session) -> SessionOut:
    return SessionOut(
        session_id=s.session_id,
        phone=s.phone,
        roles=[_profile_out(p) for p in s.roles],
        selected_role=_profile_out(s.selected_role),
        pending_role_selection=s.pending_role_selection,
        account_suspended=s.suspended,
    )


@router.post("/otp/request", response_model=OtpRequestResponse)
async def request_otp(req: OtpRequest, identity: IdentityService = Depends(get_identity)):
    challenge = await identity.request_otp(req.phone)
    status = identity.otp.describe(challenge)
    return OtpRequestResponse(
        phone=challenge.phone,
        expires_in=status.expires_in_seconds,
        resend_available_in=status.resend_seconds_remaining,
    )


@router.get("/otp/status", response_model=OtpStatusResponse)
async def otp_status(phone: str = Query(..., min_length=1), identity: IdentityService = Depends(get_identity)):
    s = await identity.otp_status(phone)
    return OtpStatusResponse(
        phone=s.phone,
        state=s.state,
        resend_available_in=s.resend_seconds_remaining,
        expires_in=s.expires_in_seconds,
        attempts_remaining=s.attempts_remaining,
    )


@router.post("/otp/verify", response_model=LoginResponse)
async def verify_otp(
    req: OtpVerifyRequest,
    identity: IdentityService = Depends(get_identity),
    device_key: Optional[str] = Depends(get_device_key),
):
    result = await identity.verify_otp(req.phone, req.code, device_key=device_key)
    if result.session is None:
        return LoginResponse(outcome=result.outcome, phone=result.phone)

    token = create_session_token(result.phone, result.session.session_id)
    return LoginResponse(
        outcome=result.outcome,
        phone=result.phone,
        access_token=token,
        session=_session_out(result.session),
    )


@router.get("/session", response_model=SessionOut)
def current_session(session: Session = Depends(get_current_session)):
    return _session_out(session)


@router.post("/session/role", response_model=SessionOut)
async def select_role(
    req: SelectRoleRequest,
    session: Session = Depends(get_current_session),
    identity: IdentityService = Depends(get_identity),
):
    updated = await identity.select_role(session.session_id, req.role)
    return _session_out(updated)


@router.post("/session/switch-role", response_model=SwitchRoleResponse)
async def switch_role(
    session: Session = Depends(get_current_session),
    identity: IdentityService = Depends(get_identity),
):
    roles = await identity.switch_role(session.session_id)
    current = identity.current_session(session.session_id)
    return SwitchRoleResponse(
        roles=[_profile_out(p) for p in roles],
        selected_role=_profile_out(current.selected_role) if current else None,
        outcome=LoginOutcome.NEEDS_ONBOARDING if current is None else None,
    )


@router.post("/sign-out")
async def sign_out(
    session_id: str = Depends(get_session_id),
    identity: IdentityService = Depends(get_identity),
):
    await identity.sign_out(session_id)
    return {"status": "signed out"}


@router.post("/session/refresh/cancel")
async def cancel_refresh(
    session: Session = Depends(get_current_session),
    identity: IdentityService = Depends(get_identity),
):
    identity.cancel_refresh(session.session_id)
    return {"status": "cancelled"}


@router.get("/authorize", response_model=GuardDecisionOut)
async def authorize(
    required_role: Optional[List[ProfileRole]] = Query(default=None),
    refresh: bool = Query(default=False, description="re-resolve roles in the background (navigation)"),
    session_id: Optional[str] = Depends(get_optional_session_id),
    identity: IdentityService = Depends(get_identity),
):
    if refresh and session_id and identity.current_session(session_id) is not None:
        identity.start_refresh(session_id)
    decision = identity.authorize(session_id, required_role)
    logger.debug("route guard decision", extra={"state": decision.state.value, "redirect_to": decision.redirect_to})
    return GuardDecisionOut(state=decision.state, redirect_to=decision.redirect_to, render=decision.render)
