"""
api/routes/v1/users.py -- Account onboarding, login and profile REST endpoints.

Routes:
  GET   /api/v1/users/check-email      -- is this email free to register? (public)
  POST  /api/v1/users/register         -- create unverified account, mail OTP (public)
  POST  /api/v1/users/verify-otp       -- verify email, returns token (public)
  POST  /api/v1/users/resend-otp       -- replace and re-mail the OTP (public)
  POST  /api/v1/users/login            -- password login, returns token (public)
  GET   /api/v1/users/me               -- current account (requires auth)
  PATCH /api/v1/users/me               -- update own profile (requires auth)
  POST  /api/v1/users/change-password  -- replace own password (requires auth)
  GET   /api/v1/users/{id}             -- any account (admin only)
  PATCH /api/v1/users/{id}             -- update any account incl. role/status (admin only)

Handlers are plain `def`: AccountService is synchronous and bcrypt-bound,
so FastAPI runs each call in its thread pool.

Errors are never built here. AccountService raises AppError subclasses and
the handler in api/main.py renders them.

Security:
  Token responses carry Cache-Control: no-store.
  /users/me is registered before /users/{id} so "me" never reaches the int
  path parameter.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr

from api.models import (
    AccountResponse,
    AdminUpdateRequest,
    AuthData,
    ChangePasswordRequest,
    EmailAvailabilityData,
    LoginRequest,
    ProfileUpdateRequest,
    RegisteredData,
    RegisterRequest,
    ResendOtpRequest,
    SuccessResponse,
    VerifyOtpRequest,
)
from auth.accounts import AccountService
from auth.dependencies import require_admin, require_identity
from auth.models import AuthResult, Identity

# Auth policy:
# - GET   /users/check-email: public
# - POST  /users/register, /verify-otp, /resend-otp, /login: public
# - GET   /users/me, PATCH /users/me, POST /users/change-password: require_identity
# - GET   /users/{id}, PATCH /users/{id}: require_admin
router = APIRouter()


def _accounts(request: Request) -> AccountService:
    return request.app.state.accounts


def _ok(
    message: str,
    data: Any = None,
    meta: Optional[dict[str, Any]] = None,
    status_code: int = 200,
) -> JSONResponse:
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True, mode="json")
    body = SuccessResponse(message=message, data=data, meta=meta)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True, mode="json"))


def _token_response(message: str, result: AuthResult) -> JSONResponse:
    resp = _ok(
        message,
        data=AuthData(token=result.token, user=AccountResponse.from_account(result.account)),
        meta={"tokenType": "Bearer", "expiresIn": result.expires_in},
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public onboarding endpoints
# ---------------------------------------------------------------------------


@router.get("/users/check-email", response_model=SuccessResponse)
def check_email(request: Request, email: EmailStr = Query(..., description="Address to check.")) -> JSONResponse:
    """Report whether an email is free. An unverified owner still makes it unavailable."""
    result = _accounts(request).check_email_availability(email)
    return _ok(
        result.message,
        data=EmailAvailabilityData(email=result.email, available=result.available, is_verified=result.is_verified),
    )


@router.post("/users/register", response_model=SuccessResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an unverified account and mail the OTP.

    Registering again with an email that is still unverified re-sends the OTP
    instead of failing. The response never contains the OTP.
    """
    email = _accounts(request).register(body.email, body.password, body.to_profile())
    return _ok(
        "Registration successful. Please check your email for the verification code.",
        data=RegisteredData(email=email),
        status_code=201,
    )


@router.post("/users/verify-otp", response_model=SuccessResponse)
def verify_otp(request: Request, body: VerifyOtpRequest) -> JSONResponse:
    """Verify the email with the mailed OTP. Returns a bearer token on success."""
    result = _accounts(request).verify_otp(body.email, body.otp)
    return _token_response("Email verified successfully.", result)


@router.post("/users/resend-otp", response_model=SuccessResponse)
def resend_otp(request: Request, body: ResendOtpRequest) -> JSONResponse:
    email = _accounts(request).resend_otp(body.email)
    return _ok("A new verification code has been sent to your email.", data=RegisteredData(email=email))


@router.post("/users/login", response_model=SuccessResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 INVALID_CREDENTIALS.
    """
    result = _accounts(request).login(body.email, body.password)
    return _token_response("Login successful.", result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/users/me", response_model=SuccessResponse)
def get_me(request: Request, identity: Identity = Depends(require_identity)) -> JSONResponse:
    account = _accounts(request).get_account(identity.account_id)
    return _ok("Profile retrieved successfully.", data=AccountResponse.from_account(account))


@router.patch("/users/me", response_model=SuccessResponse)
def update_me(
    request: Request,
    body: ProfileUpdateRequest,
    identity: Identity = Depends(require_identity),
) -> JSONResponse:
    """Update own profile. email, password, role and status are ignored if sent."""
    account = _accounts(request).update_profile(identity.account_id, body.to_patch())
    return _ok("Profile updated successfully.", data=AccountResponse.from_account(account))


@router.post("/users/change-password", response_model=SuccessResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(require_identity),
) -> JSONResponse:
    """Replace own password. Tokens issued before the change stay valid until they expire."""
    _accounts(request).change_password(identity.account_id, body.current_password, body.new_password)
    return _ok("Password changed successfully.")


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------


@router.get("/users/{account_id}", response_model=SuccessResponse)
def get_account(
    request: Request,
    account_id: int,
    identity: Identity = Depends(require_admin),
) -> JSONResponse:
    account = _accounts(request).get_account(account_id)
    return _ok("User retrieved successfully.", data=AccountResponse.from_account(account))


@router.patch("/users/{account_id}", response_model=SuccessResponse)
def update_account(
    request: Request,
    account_id: int,
    body: AdminUpdateRequest,
    identity: Identity = Depends(require_admin),
) -> JSONResponse:
    """Update any account, including role and status.

    An admin cannot change their own role or status (400 SELF_LOCKOUT).
    """
    account = _accounts(request).update_account_as_admin(identity, account_id, body.to_patch())
    return _ok("User updated successfully.", data=AccountResponse.from_account(account))
