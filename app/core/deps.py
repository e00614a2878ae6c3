# /app/core/deps.py
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.security import decode_token
from app.services.identity_service import IdentityService
from app.services.session_manager import Session

bearer = HTTPBearer(auto_error=True)
optional_bearer = HTTPBearer(auto_error=False)


def get_identity(request: Request) -> IdentityService:
    return request.app.state.identity


def _session_id_from_token(token: str) -> str:
    try:
        payload = decode_token(token)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")

    sid = payload.get("sid")
    if not sid or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Token missing required claims.")
    return str(sid)


def get_session_id(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> str:
    return _session_id_from_token(creds.credentials)


def get_current_session(
    request: Request,
    session_id: str = Depends(get_session_id),
    identity: IdentityService = Depends(get_identity),
) -> Session:
    """
    Canonical authentication dependency.

    Guarantees:
    - JWT is valid and carries a session id
    - the session is still live (not signed out, not expired)
    """
    session = identity.current_session(session_id)
    if session is None:
        raise HTTPException(status_code=401, detail="Session has ended. Please sign in again.")

    request.state.session_id = session.session_id
    return session


def get_optional_session_id(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
) -> Optional[str]:
    """For the route guard: a missing or bad token just means "no session"."""
    if creds is None:
        return None
    try:
        return _session_id_from_token(creds.credentials)
    except HTTPException:
        return None


def get_device_key(request: Request) -> Optional[str]:
    header = request.app.state.settings.device_id_header
    value = request.headers.get(header)
    return value.strip() if value and value.strip() else None
