"""
auth/errors.py -- Exception taxonomy for the authentication core.

Every error carries a stable public code, an HTTP status and a public message.
The API layer renders only those three; the constructor argument (detail) is
internal and goes to logs, never to the caller.

Enumeration resistance is enforced by the class hierarchy: the precise causes
(InvalidCredentials, AccountDisabled, InvalidTwoFactorCode) subclass
AuthenticationFailed and inherit its public code and message unchanged, so the
caller sees one outcome while tests and logs can still tell them apart. The
same applies to the InvalidCode family for challenge failures.

Layer rule: no imports from api/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all authentication-core errors."""

    status_code: int = 400
    code: str = "auth_error"
    public_message: str = "Request could not be completed."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.public_message)
        self.detail = detail


class ValidationError(AuthError):
    """Malformed input, e.g. password and confirmation differ. No side effects."""

    status_code = 400
    code = "validation_error"
    public_message = "Request validation failed."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail)
        # Validation messages describe the caller's own input, so they are safe
        # to return verbatim.
        if detail:
            self.public_message = detail


class AccountExists(AuthError):
    status_code = 409
    code = "conflict"
    public_message = "An account with that email already exists."


# ---------------------------------------------------------------------------
# Authentication failures -- one public face
# ---------------------------------------------------------------------------


class AuthenticationFailed(AuthError):
    status_code = 401
    code = "authentication_failed"
    public_message = "Invalid email, password or verification code."


class InvalidCredentials(AuthenticationFailed):
    """Unknown identifier or wrong secret. The two are indistinguishable to callers."""


class AccountDisabled(AuthenticationFailed):
    """Correct credentials, but the account is suspended, inactive or unverified."""


class InvalidTwoFactorCode(AuthenticationFailed):
    """Second factor rejected during login."""


# ---------------------------------------------------------------------------
# Challenge failures -- one public face
# ---------------------------------------------------------------------------


class InvalidCode(AuthError):
    status_code = 400
    code = "invalid_code"
    public_message = "Invalid or expired code."


class ChallengeNotFound(InvalidCode):
    """No outstanding challenge (or no TOTP secret) for the account."""


class ChallengeExpired(InvalidCode):
    """The challenge existed but its TTL has elapsed."""


class CodeMismatch(InvalidCode):
    """The challenge is live but the submitted code is wrong."""


# ---------------------------------------------------------------------------
# Collaborator and authorization failures
# ---------------------------------------------------------------------------


class DeliveryFailure(AuthError):
    """Email or SMS transport failed. Retryable; account state is untouched."""

    status_code = 503
    code = "delivery_failed"
    public_message = "The verification code could not be delivered. Please try again."


class Unauthorized(AuthError):
    """Missing, malformed, expired or revoked bearer token."""

    status_code = 401
    code = "unauthorized"
    public_message = "Authentication required."


__all__ = [
    "AuthError",
    "ValidationError",
    "AccountExists",
    "AuthenticationFailed",
    "InvalidCredentials",
    "AccountDisabled",
    "InvalidTwoFactorCode",
    "InvalidCode",
    "ChallengeNotFound",
    "ChallengeExpired",
    "CodeMismatch",
    "DeliveryFailure",
    "Unauthorized",
]
