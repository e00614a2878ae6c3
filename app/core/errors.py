# app/core/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class IdentityError(Exception):
    """
    Base class for every failure the identity subsystem surfaces upward.

    - code: stable machine-readable identifier (UI maps it to copy)
    - status_code: HTTP status used by the API layer
    - retryable: False only for states that need a different action to recover
    """

    code: str = "IDENTITY_ERROR"
    status_code: int = 400
    retryable: bool = True
    default_message: str = "Identity request failed."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def extra(self) -> Dict[str, Any]:
        return {}

    def headers(self) -> Optional[Dict[str, str]]:
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "code": self.code,
            "retryable": self.retryable,
            **self.extra(),
        }


# ─────────── PHONE ───────────

class MalformedPhone(IdentityError):
    code = "MALFORMED_PHONE"
    status_code = 422
    default_message = "Phone number is not valid."


# ─────────── OTP ───────────

class ResendCooldownActive(IdentityError):
    code = "RESEND_COOLDOWN_ACTIVE"
    status_code = 429

    def __init__(self, seconds_remaining: int) -> None:
        self.seconds_remaining = seconds_remaining
        super().__init__(f"Please wait {seconds_remaining} seconds before requesting a new code.")

    def extra(self) -> Dict[str, Any]:
        return {"seconds_remaining": self.seconds_remaining}

    def headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": str(self.seconds_remaining)}


class NoActiveChallenge(IdentityError):
    code = "NO_ACTIVE_CHALLENGE"
    status_code = 400
    default_message = "No verification code is pending for this phone. Request a new code."


class Expired(IdentityError):
    code = "OTP_EXPIRED"
    status_code = 410
    default_message = "Verification code has expired. Request a new code."


class AttemptsExhausted(IdentityError):
    code = "ATTEMPTS_EXHAUSTED"
    status_code = 429
    retryable = False
    default_message = "Too many incorrect attempts. Request a new code."


class InvalidCode(IdentityError):
    code = "INVALID_CODE"
    status_code = 401

    def __init__(self, attempts_remaining: int) -> None:
        self.attempts_remaining = attempts_remaining
        super().__init__(f"Incorrect code. {attempts_remaining} attempt(s) remaining.")

    def extra(self) -> Dict[str, Any]:
        return {"attempts_remaining": self.attempts_remaining}


class TransientFailure(IdentityError):
    """Raised by messaging gateways; the OTP manager retries it before giving up."""

    code = "TRANSIENT_FAILURE"
    status_code = 503
    default_message = "Messaging gateway temporarily unavailable."


class DeliveryFailed(IdentityError):
    code = "DELIVERY_FAILED"
    status_code = 502
    default_message = "Could not deliver the verification code. Please try again."


# ─────────── ROLES / SESSION ───────────

class RoleNotOwned(IdentityError):
    code = "ROLE_NOT_OWNED"
    status_code = 403

    def __init__(self, role: str) -> None:
        self.role = role
        super().__init__(f"You are not registered as {role}.")

    def extra(self) -> Dict[str, Any]:
        return {"role": self.role}


class NoProfilesFound(IdentityError):
    """Outcome marker: verified phone with no profiles must be onboarded."""

    code = "NO_PROFILES_FOUND"
    status_code = 404
    default_message = "No profile is registered for this phone number."


class AccountSuspended(IdentityError):
    code = "ACCOUNT_SUSPENDED"
    status_code = 403
    retryable = False
    default_message = "This account is suspended."


class SessionNotFound(IdentityError):
    code = "SESSION_NOT_FOUND"
    status_code = 401
    default_message = "Session has ended. Please sign in again."


class BackendUnavailable(IdentityError):
    code = "BACKEND_UNAVAILABLE"
    status_code = 503
    default_message = "Profile service is temporarily unavailable. Please retry."


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(IdentityError)
    async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
        body = exc.to_dict()
        rid = getattr(request.state, "request_id", None)
        if rid:
            body["request_id"] = rid
        return JSONResponse(body, status_code=exc.status_code, headers=exc.headers())
