"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes (all under /api/v1):
  POST /auth/register                 -- create account; 201 {token, user}
  POST /auth/login                    -- password login; {token, user} or {mfaPending, tempToken}
  POST /auth/mfa/setup                -- start TOTP enrollment; {enrollmentUri, secret, qrCode}
  POST /auth/mfa/setup/cancel         -- abandon enrollment
  POST /auth/mfa/confirm              -- finish enrollment with a code
  POST /auth/mfa/challenge            -- partial token + code -> full token
  POST /auth/password-reset/request   -- always {ok: true}
  POST /auth/password-reset/confirm   -- token + newPassword
  POST /auth/otp/request              -- mail a one-time login code; always {ok: true}
  POST /auth/otp/verify               -- email + code -> same result as /login
  GET  /auth/me                       -- principal of the bearer token

Security:
  Every route except /me is in the auth rate-limit class (api.limiter).
  Handlers are plain `def` so FastAPI runs them in its threadpool; bcrypt
  hashing and verification never block the event loop.
  Cache-Control: no-store on every response that carries a token.
  Reset-token failures on /password-reset/confirm are reported as 400.

No `from __future__ import annotations` here: slowapi wraps each handler, and
FastAPI resolves string annotations against the wrapper's module globals.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import auth_limit
from api.models import (
    EmailRequest,
    LoginRequest,
    MeResponse,
    MfaChallengeRequest,
    MfaCodeRequest,
    MfaSetupResponse,
    MfaTokenRequest,
    OkResponse,
    OtpVerifyRequest,
    PasswordResetConfirmRequest,
    RegisterRequest,
    SuccessResponse,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import get_principal, resolve_mfa_subject
from auth.errors import TokenExpired, TokenInvalid
from auth.models import Principal, Role
from auth.reset import PasswordResetLifecycle
from auth.service import AuthService, LoginResult

router = APIRouter()


def _auth(request: Request) -> AuthService:
    return request.app.state.auth


def _token_response(result: LoginResult, status_code: int = 200) -> JSONResponse:
    if result.mfa_pending:
        body = TokenResponse(mfa_pending=True, temp_token=result.temp_token)
    else:
        body = TokenResponse(token=result.token, user=UserResponse.from_user(result.user))
    resp = JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True, exclude_none=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=TokenResponse, status_code=201)
@auth_limit
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    result = _auth(request).register(body.name, body.email, body.password, Role(body.role))
    return _token_response(result, status_code=201)


@router.post("/auth/login", response_model=TokenResponse)
@auth_limit
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same invalid_credentials
    error. An MFA-enabled account receives only a short-lived tempToken.
    """
    return _token_response(_auth(request).login(body.email, body.password))


# ---------------------------------------------------------------------------
# MFA
# ---------------------------------------------------------------------------


@router.post("/auth/mfa/setup", response_model=MfaSetupResponse)
@auth_limit
def mfa_setup(request: Request, body: Optional[MfaTokenRequest] = None) -> JSONResponse:
    user_id = resolve_mfa_subject(request, body.temp_token if body else None)
    enrollment = _auth(request).mfa.begin_setup(user_id)
    content = MfaSetupResponse(enrollment_uri=enrollment.uri, secret=enrollment.secret, qr_code=enrollment.qr_code)
    resp = JSONResponse(content=content.model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/mfa/setup/cancel", response_model=SuccessResponse)
@auth_limit
def mfa_setup_cancel(request: Request, body: Optional[MfaTokenRequest] = None) -> SuccessResponse:
    user_id = resolve_mfa_subject(request, body.temp_token if body else None)
    _auth(request).mfa.abandon_setup(user_id)
    return SuccessResponse()


@router.post("/auth/mfa/confirm", response_model=SuccessResponse)
@auth_limit
def mfa_confirm(request: Request, body: MfaCodeRequest) -> SuccessResponse:
    user_id = resolve_mfa_subject(request, body.temp_token)
    _auth(request).mfa.confirm_setup(user_id, body.code)
    return SuccessResponse()


@router.post("/auth/mfa/challenge", response_model=TokenResponse)
@auth_limit
def mfa_challenge(request: Request, body: MfaChallengeRequest) -> JSONResponse:
    return _token_response(_auth(request).complete_mfa_login(body.temp_token, body.code))


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/password-reset/request", response_model=OkResponse)
@auth_limit
def password_reset_request(request: Request, body: EmailRequest) -> OkResponse:
    reset: PasswordResetLifecycle = request.app.state.password_reset
    reset.request(body.email)
    return OkResponse()


@router.post("/auth/password-reset/confirm", response_model=OkResponse)
@auth_limit
def password_reset_confirm(request: Request, body: PasswordResetConfirmRequest) -> OkResponse:
    reset: PasswordResetLifecycle = request.app.state.password_reset
    try:
        reset.confirm(body.token, body.new_password)
    except (TokenInvalid, TokenExpired) as exc:
        raise type(exc)(exc.message, status_code=400) from exc
    return OkResponse()


# ---------------------------------------------------------------------------
# Email one-time login code
# ---------------------------------------------------------------------------


@router.post("/auth/otp/request", response_model=OkResponse)
@auth_limit
def otp_request(request: Request, body: EmailRequest) -> OkResponse:
    _auth(request).request_login_code(body.email)
    return OkResponse()


@router.post("/auth/otp/verify", response_model=TokenResponse)
@auth_limit
def otp_verify(request: Request, body: OtpVerifyRequest) -> JSONResponse:
    return _token_response(_auth(request).verify_login_code(body.email, body.code))


# ---------------------------------------------------------------------------
# Authenticated
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(principal: Principal = Depends(get_principal)) -> MeResponse:
    """Return the identity carried by the bearer token."""
    return MeResponse(id=principal.id, role=principal.role.value, email=principal.email)
