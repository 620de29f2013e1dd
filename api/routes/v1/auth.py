"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup                -- create account, email verification code sent
  POST /api/v1/auth/login                 -- password step; token or 2FA challenge
  POST /api/v1/auth/login-verify          -- second-factor step; token
  POST /api/v1/auth/verify-email          -- confirm signup email code
  POST /api/v1/auth/verify-phone          -- confirm SMS code for a new phone number
  POST /api/v1/auth/verify-authenticator  -- confirm first TOTP code after app setup
  POST /api/v1/auth/resend-code           -- re-send email or phone verification code
  POST /api/v1/auth/logout                -- revoke bearer token; always 200
  GET  /api/v1/auth/profile               -- current account (requires auth)
  POST /api/v1/auth/change-password       -- requires auth + current password
  POST /api/v1/auth/change-2fa            -- requires auth + password
  GET  /api/v1/auth/authenticator-qr      -- provisioning payload (requires auth)

Security:
  [H2] Every endpoint that checks a password or a code is rate-limited per IP.
  [C1] Login failures of every kind share one error code and message.
  [M5] Cache-Control: no-store on every response that may carry a token or
       provisioning secret.

Handlers are sync (def, not async def): bcrypt, SQLite and SMTP all block, and
FastAPI runs sync handlers on its threadpool.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import CREDENTIAL_LIMIT, limiter
from api.models import (
    AccountSummary,
    AuthResponse,
    ChangePasswordRequest,
    ChangeTwoFactorRequest,
    LoginRequest,
    ProvisioningResponse,
    ResendCodeRequest,
    SignupRequest,
    VerificationRequest,
)
from auth.dependencies import get_bearer_token, get_current_account, get_orchestrator
from auth.models import Account, LoginResult, LoginState, ProvisioningPayload
from auth.session import AuthOrchestrator

# Auth policy:
# - signup, login, login-verify, verify-*, resend-code: public
# - logout: public -- revokes whatever bearer token is presented, if any
# - profile, change-password, change-2fa, authenticator-qr: get_current_account
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(CREDENTIAL_LIMIT)  # [H2]
@router.post("/auth/signup", response_model=AuthResponse, status_code=201)
def signup(
    request: Request,
    body: SignupRequest,
    response: Response,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthResponse:
    """Create an account. The email stays unverified until /verify-email succeeds."""
    result = orchestrator.signup(
        body.email,
        body.password,
        body.confirm_password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone_number=body.phone_number,
        two_factor_method=body.two_factor_method,
    )
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return AuthResponse(
        message="Account created. Please check your email for a verification code.",
        account=AccountSummary.from_account(result.account),
        provisioning=_provisioning(result.provisioning),
    )


@limiter.limit(CREDENTIAL_LIMIT)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(
    request: Request,
    body: LoginRequest,
    response: Response,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthResponse:
    """Password step. Returns a token, or requires_two_factor=True and a pending challenge."""
    result = orchestrator.login_initiate(body.email, body.password)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return _login_response(result, orchestrator)


@limiter.limit(CREDENTIAL_LIMIT)  # [H2]
@router.post("/auth/login-verify", response_model=AuthResponse)
def login_verify(
    request: Request,
    body: VerificationRequest,
    response: Response,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthResponse:
    """Second-factor step of a pending login."""
    result = orchestrator.login_complete(body.email, body.code)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return _login_response(result, orchestrator)


@limiter.limit(CREDENTIAL_LIMIT)  # [H2]
@router.post("/auth/verify-email", response_model=AuthResponse)
def verify_email(
    request: Request,
    body: VerificationRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthResponse:
    account = orchestrator.verify_email(body.email, body.code)
    return AuthResponse(message="Email verified successfully.", account=AccountSummary.from_account(account))


@limiter.limit(CREDENTIAL_LIMIT)  # [H2]
@router.post("/auth/verify-phone", response_model=AuthResponse)
def verify_phone(
    request: Request,
    body: VerificationRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthResponse:
    account = orchestrator.verify_phone(body.email, body.code)
    return AuthResponse(message="Phone verified successfully.", account=AccountSummary.from_account(account))


@limiter.limit(CREDENTIAL_LIMIT)  # [H2]
@router.post("/auth/verify-authenticator", response_model=AuthResponse)
def verify_authenticator(
    request: Request,
    body: VerificationRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthResponse:
    account = orchestrator.verify_totp_setup(body.email, body.code)
    return AuthResponse(
        message="Authenticator app verified. Two-factor authentication is enabled.",
        account=AccountSummary.from_account(account),
    )


@limiter.limit(CREDENTIAL_LIMIT)  # [H2]
@router.post("/auth/resend-code", response_model=AuthResponse)
def resend_code(
    request: Request,
    body: ResendCodeRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthResponse:
    """Re-send a verification code. The response is identical whether or not the email exists."""
    orchestrator.resend_code(body.email, body.type)
    return AuthResponse(message="If the account exists, a verification code has been sent.")


@router.post("/auth/logout", response_model=AuthResponse)
def logout(request: Request, orchestrator: AuthOrchestrator = Depends(get_orchestrator)) -> AuthResponse:
    """Revoke the presented bearer token. Idempotent: always 200, even with no or a bad token."""
    orchestrator.logout(get_bearer_token(request))
    return AuthResponse(message="Logged out.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/profile", response_model=AuthResponse)
def profile(current_account: Account = Depends(get_current_account)) -> AuthResponse:
    return AuthResponse(message="Profile retrieved.", account=AccountSummary.from_account(current_account))


@limiter.limit(CREDENTIAL_LIMIT)  # [H2]
@router.post("/auth/change-password", response_model=AuthResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_account: Account = Depends(get_current_account),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthResponse:
    orchestrator.change_password(
        current_account, body.current_password, body.new_password, body.confirm_new_password
    )
    return AuthResponse(message="Password changed successfully.")


@limiter.limit(CREDENTIAL_LIMIT)  # [H2]
@router.post("/auth/change-2fa", response_model=AuthResponse)
def change_two_factor(
    request: Request,
    body: ChangeTwoFactorRequest,
    response: Response,
    current_account: Account = Depends(get_current_account),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthResponse:
    """Switch the second factor. AUTHENTICATOR_APP and SMS need a follow-up verification."""
    provisioning = orchestrator.change_two_factor_method(
        current_account, body.password, body.new_two_factor_method, body.phone_number
    )
    response.headers["Cache-Control"] = "no-store"  # [M5]
    messages = {
        "NONE": "Two-factor authentication disabled.",
        "EMAIL": "Two-factor authentication by email enabled.",
        "AUTHENTICATOR_APP": "Scan the QR code with your authenticator app, then verify a code.",
        "SMS": "A verification code was sent to your phone. Verify it to enable SMS codes.",
    }
    return AuthResponse(
        message=messages[body.new_two_factor_method.value],
        account=AccountSummary.from_account(current_account),
        provisioning=_provisioning(provisioning),
    )


@router.get("/auth/authenticator-qr", response_model=AuthResponse)
def authenticator_qr(
    response: Response,
    current_account: Account = Depends(get_current_account),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> AuthResponse:
    payload = orchestrator.get_qr_payload(current_account)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return AuthResponse(message="QR code generated.", provisioning=_provisioning(payload))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _login_response(result: LoginResult, orchestrator: AuthOrchestrator) -> AuthResponse:
    if result.state == LoginState.CHALLENGE_PENDING:
        return AuthResponse(
            message="Two-factor authentication required.",
            requires_two_factor=True,
            two_factor_method=result.two_factor_method,
        )
    return AuthResponse(
        message="Login successful.",
        access_token=result.token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=orchestrator.tokens.expire_seconds,
        account=AccountSummary.from_account(result.account),
    )


def _provisioning(payload: ProvisioningPayload | None) -> ProvisioningResponse | None:
    if payload is None:
        return None
    return ProvisioningResponse(provisioning_uri=payload.provisioning_uri, qr_code=payload.qr_code)
