"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; stores, services and routes do the work. The only behaviour
here is Account.is_enabled, the login-eligibility rule, because every layer
that asks "may this account log in?" must get the same answer.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TwoFactorMethod(str, Enum):
    NONE = "NONE"
    EMAIL = "EMAIL"
    AUTHENTICATOR_APP = "AUTHENTICATOR_APP"
    SMS = "SMS"


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class Channel(str, Enum):
    """Delivery channel of a stored verification challenge."""

    EMAIL = "email"
    SMS = "sms"
    TOTP = "totp"  # pending-login marker only, never a delivered code


class CodePurpose(str, Enum):
    """Why a code was issued. Selects the TTL class and the message wording."""

    VERIFICATION = "verification"  # signup / phone ownership, 10 minutes
    LOGIN = "login"  # second factor during login, 5 minutes


class LoginState(str, Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    CREDENTIALS_VERIFIED = "CREDENTIALS_VERIFIED"
    CHALLENGE_PENDING = "CHALLENGE_PENDING"
    AUTHENTICATED = "AUTHENTICATED"
    REJECTED = "REJECTED"


@dataclass
class Account:
    """A user identity in AuthGate.

    email is the login identifier and is unique. totp_secret is only set for
    accounts that have started an authenticator-app setup; it is overwritten on
    every re-setup and cleared when 2FA is switched off.

    two_factor_method records the chosen method even while two_factor_enabled
    is False -- e.g. an authenticator app that has been provisioned but not yet
    confirmed with a first TOTP code.
    """

    email: str
    hashed_password: str
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone_number: str | None = None
    two_factor_method: TwoFactorMethod = TwoFactorMethod.NONE
    two_factor_enabled: bool = False
    totp_secret: str | None = None
    email_verified: bool = False
    phone_verified: bool = False
    status: AccountStatus = AccountStatus.ACTIVE
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None

    @property
    def is_enabled(self) -> bool:
        """True when the account may complete a login: active and email-verified."""
        return self.status == AccountStatus.ACTIVE and self.email_verified

    @property
    def requires_second_factor(self) -> bool:
        return self.two_factor_enabled and self.two_factor_method != TwoFactorMethod.NONE


@dataclass(frozen=True)
class Challenge:
    """An outstanding one-time code for one (account, channel, purpose) slot."""

    code: str
    expires_at: datetime
    channel: Channel
    purpose: CodePurpose


@dataclass(frozen=True)
class Claims:
    """Verified contents of a session token."""

    subject: str  # account email
    user_id: int
    issued_at: datetime
    expires_at: datetime
    token_id: str


@dataclass(frozen=True)
class ProvisioningPayload:
    """What an authenticator app needs to enrol: otpauth:// URI and its QR code.

    qr_code is a data: URI (SVG) so clients can drop it into an <img> tag.
    """

    provisioning_uri: str
    qr_code: str


@dataclass
class LoginResult:
    """Outcome of a login step.

    token is set only in the AUTHENTICATED state; two_factor_method is set
    only in the CHALLENGE_PENDING state.
    """

    state: LoginState
    account: Account
    token: str | None = None
    two_factor_method: TwoFactorMethod | None = None


@dataclass
class SignupResult:
    account: Account
    provisioning: ProvisioningPayload | None = None
