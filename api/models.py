"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Account, TwoFactorMethod

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Loose: one @, no whitespace, a dot in the domain. Ownership is
# proven by the verification code, not by the regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# Passwords are capped well below bcrypt's 72-byte truncation threshold for
# typical input; minimum length is six characters.
_Password = Annotated[str, Field(min_length=6, max_length=64)]
_Code = Annotated[str, Field(min_length=4, max_length=10, pattern=r"^\d+$")]


def _normalize_email(value: str) -> str:
    return str(value).strip().lower()


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _EmailBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _normalize_email(value)


class SignupRequest(_EmailBody):
    """Request body for POST /api/v1/auth/signup."""

    password: _Password
    confirm_password: str = Field(max_length=64)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone_number: Optional[str] = Field(default=None, max_length=32, pattern=r"^\+?[0-9 ()-]{6,32}$")
    two_factor_method: Optional[TwoFactorMethod] = None


class LoginRequest(_EmailBody):
    """Request body for POST /api/v1/auth/login."""

    password: str = Field(min_length=1, max_length=64)


class VerificationRequest(_EmailBody):
    """Request body for the code-verification endpoints (login-verify, verify-*)."""

    code: _Code


class ResendCodeRequest(_EmailBody):
    """Request body for POST /api/v1/auth/resend-code."""

    type: str = Field(pattern=r"^(email|phone)$")


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=64)
    new_password: _Password
    confirm_new_password: str = Field(max_length=64)


class ChangeTwoFactorRequest(BaseModel):
    password: str = Field(min_length=1, max_length=64)
    new_two_factor_method: TwoFactorMethod
    phone_number: Optional[str] = Field(default=None, max_length=32, pattern=r"^\+?[0-9 ()-]{6,32}$")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountSummary(BaseModel):
    """Identity summary returned on login and profile requests. Never carries secrets."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    two_factor_method: TwoFactorMethod
    two_factor_enabled: bool
    email_verified: bool
    last_login: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountSummary":
        return cls(
            id=account.id,
            email=account.email,
            first_name=account.first_name,
            last_name=account.last_name,
            two_factor_method=account.two_factor_method,
            two_factor_enabled=account.two_factor_enabled,
            email_verified=account.email_verified,
            last_login=account.last_login or None,
        )


class ProvisioningResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    provisioning_uri: str
    qr_code: str


class AuthResponse(BaseModel):
    """Envelope for every successful auth operation.

    access_token is present only once a login reaches AUTHENTICATED.
    requires_two_factor is True when the caller must POST /login-verify next.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    access_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[int] = None
    requires_two_factor: bool = False
    two_factor_method: Optional[TwoFactorMethod] = None
    account: Optional[AccountSummary] = None
    provisioning: Optional[ProvisioningResponse] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
