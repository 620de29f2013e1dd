"""
auth/session.py -- AuthOrchestrator: signup, two-step login, logout, account 2FA settings.

Login is a small state machine (LoginState):

  UNAUTHENTICATED --credentials--> CREDENTIALS_VERIFIED
      CREDENTIALS_VERIFIED --(2FA off)--> AUTHENTICATED          token issued
      CREDENTIALS_VERIFIED --(2FA on)---> CHALLENGE_PENDING      code issued
      CHALLENGE_PENDING --(resend/re-initiate)--> CHALLENGE_PENDING
      CHALLENGE_PENDING --(code ok)-----> AUTHENTICATED          token issued
  any failure --> REJECTED

Every failure on the login path is an AuthenticationFailed subclass
(InvalidCredentials, AccountDisabled, InvalidTwoFactorCode). The API renders
them identically; the subclass only reaches logs and tests.

Each operation commits its own state change. Nothing is rolled back across
steps: a code consumed by login_complete stays consumed even if token issuance
fails afterwards, and the caller starts over.

Signup auto-enables email 2FA once the email is verified when no other
method is active. That couples "prove you own this email" with "opt into 2FA";
it is kept as current product behaviour (see DESIGN.md).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from auth.challenges import ChallengeManager, strategy_for
from auth.credentials import CredentialVerifier, hash_password
from auth.delivery import redact_email
from auth.errors import (
    AccountDisabled,
    AccountExists,
    ChallengeNotFound,
    InvalidCode,
    InvalidTwoFactorCode,
    Unauthorized,
    ValidationError,
)
from auth.models import (
    Account,
    Channel,
    Claims,
    CodePurpose,
    LoginResult,
    LoginState,
    ProvisioningPayload,
    SignupResult,
    TwoFactorMethod,
)
from auth.revocation import TokenRevocationStore
from auth.store import AccountStore
from auth.tokens import TokenService

logger = logging.getLogger("authgate.auth.session")

RESEND_KINDS = ("email", "phone")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthOrchestrator:
    """Composes credentials, challenges, tokens and revocation into the public protocol."""

    def __init__(
        self,
        store: AccountStore,
        challenges: ChallengeManager,
        tokens: TokenService,
        revocations: TokenRevocationStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.challenges = challenges
        self.tokens = tokens
        self.revocations = revocations
        self.verifier = CredentialVerifier(store)
        self._clock = clock

    # ------------------------------------------------------------------
    # Signup and ownership verification
    # ------------------------------------------------------------------

    def signup(
        self,
        email: str,
        password: str,
        confirm_password: str,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        phone_number: str | None = None,
        two_factor_method: TwoFactorMethod | None = None,
    ) -> SignupResult:
        """Create an unverified account and send its email verification code.

        Raises ValidationError or AccountExists before anything is written.
        DeliveryFailure after the account is saved leaves it unverified; the
        caller recovers with resend_code.
        """
        if password != confirm_password:
            raise ValidationError("Password and confirmation do not match.")
        method = two_factor_method or TwoFactorMethod.NONE
        if method == TwoFactorMethod.SMS and not phone_number:
            raise ValidationError("A phone number is required for SMS two-factor authentication.")
        if self.store.exists_by_identifier(email):
            logger.info("Signup rejected: %s already registered", redact_email(email))
            raise AccountExists()

        account = Account(
            email=email,
            hashed_password=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            phone_number=phone_number,
            two_factor_method=method,
        )
        provisioning: ProvisioningPayload | None = None
        if method == TwoFactorMethod.AUTHENTICATOR_APP:
            # Enabled only after the first TOTP code is confirmed.
            provisioning = self.challenges.setup_authenticator_app(account)
        elif method != TwoFactorMethod.NONE:
            account.two_factor_enabled = True

        try:
            account = self.store.save(account)
        except IntegrityError as exc:
            raise AccountExists("concurrent signup won the race") from exc
        logger.info("Account %s created for %s (2FA method %s)", account.id, redact_email(email), method.value)

        self.challenges.issue_email_code(account, CodePurpose.VERIFICATION)
        return SignupResult(account=account, provisioning=provisioning)

    def verify_email(self, email: str, code: str) -> Account:
        """Consume the email verification code and mark the account verified."""
        account = self._find_for_code(email)
        self.challenges.check_code(account, Channel.EMAIL, code, CodePurpose.VERIFICATION)
        account.email_verified = True
        if not account.requires_second_factor and account.two_factor_method in (
            TwoFactorMethod.NONE,
            TwoFactorMethod.EMAIL,
        ):
            account.two_factor_method = TwoFactorMethod.EMAIL
            account.two_factor_enabled = True
        account = self.store.save(account)
        logger.info("Email verified for account %s", account.id)
        return account

    def verify_phone(self, email: str, code: str) -> Account:
        """Consume the SMS verification code; enables SMS 2FA if that is the chosen method."""
        account = self._find_for_code(email)
        self.challenges.check_code(account, Channel.SMS, code, CodePurpose.VERIFICATION)
        account.phone_verified = True
        if account.two_factor_method == TwoFactorMethod.SMS:
            account.two_factor_enabled = True
        account = self.store.save(account)
        logger.info("Phone verified for account %s", account.id)
        return account

    def verify_totp_setup(self, email: str, code: str) -> Account:
        """Confirm a provisioned authenticator app and enable it as the second factor."""
        account = self._find_for_code(email)
        self.challenges.check_totp(account, code)
        account.two_factor_method = TwoFactorMethod.AUTHENTICATOR_APP
        account.two_factor_enabled = True
        account = self.store.save(account)
        logger.info("Authenticator app confirmed for account %s", account.id)
        return account

    def resend_code(self, email: str, kind: str) -> None:
        """Re-issue an email or phone verification code.

        An unknown email returns normally without sending anything, so the
        response does not reveal whether the address is registered.
        """
        if kind not in RESEND_KINDS:
            raise ValidationError("Invalid verification type.")
        account = self.store.find_by_identifier(email)
        if account is None:
            logger.info("Resend requested for unknown email %s; nothing sent", redact_email(email))
            return
        if kind == "email":
            self.challenges.issue_email_code(account, CodePurpose.VERIFICATION)
        else:
            self.challenges.issue_sms_code(account, CodePurpose.VERIFICATION)

    def _find_for_code(self, email: str) -> Account:
        account = self.store.find_by_identifier(email)
        if account is None:
            # Same public outcome as a wrong code.
            raise ChallengeNotFound("unknown email")
        return account

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login_initiate(self, email: str, password: str) -> LoginResult:
        """Check credentials; either authenticate outright or start a second-factor challenge."""
        account = self.verifier.verify(email, password)
        if not account.is_enabled:
            logger.warning(
                "Login rejected for account %s: status=%s verified=%s",
                account.id,
                account.status.value,
                account.email_verified,
            )
            raise AccountDisabled(f"status={account.status.value} email_verified={account.email_verified}")

        if not account.requires_second_factor:
            return self._authenticate(account)

        strategy_for(self.challenges, account.two_factor_method).issue(account, CodePurpose.LOGIN)
        logger.info("Login for account %s pending %s challenge", account.id, account.two_factor_method.value)
        return LoginResult(
            state=LoginState.CHALLENGE_PENDING,
            account=account,
            two_factor_method=account.two_factor_method,
        )

    def login_complete(self, email: str, code: str) -> LoginResult:
        """Verify the second factor of a pending login and issue a token."""
        account = self.store.find_by_identifier(email)
        if account is None:
            raise InvalidTwoFactorCode("unknown email")
        if not account.is_enabled:
            raise AccountDisabled(f"status={account.status.value} email_verified={account.email_verified}")
        if not account.requires_second_factor:
            raise InvalidTwoFactorCode("account has no second factor enabled")

        try:
            strategy_for(self.challenges, account.two_factor_method).verify(account, code)
        except InvalidCode as exc:
            logger.warning("Second factor rejected for account %s: %s", account.id, type(exc).__name__)
            raise InvalidTwoFactorCode(type(exc).__name__) from exc
        return self._authenticate(account)

    def _authenticate(self, account: Account) -> LoginResult:
        token = self.tokens.issue(account)
        account.last_login = self._clock().isoformat()
        account = self.store.save(account)
        logger.info("Account %s authenticated", account.id)
        return LoginResult(state=LoginState.AUTHENTICATED, account=account, token=token)

    # ------------------------------------------------------------------
    # Tokens: logout and request authorization
    # ------------------------------------------------------------------

    def logout(self, token: str | None) -> None:
        """Revoke the presented token. Always succeeds.

        Tokens that fail validation (malformed, expired, foreign signature) are
        already unusable, so they are not stored -- junk logouts cannot grow
        the revocation store.
        """
        if self.tokens.validate(token) is None:
            logger.debug("Logout with an invalid or missing token; nothing to revoke")
            return
        self.revocations.revoke(token)

    def validate_token(self, token: str | None) -> Claims | None:
        """Revocation check first, then signature and expiry."""
        if self.revocations.is_revoked(token):
            return None
        return self.tokens.validate(token)

    def resolve(self, token: str | None) -> Account:
        """Turn a bearer token into a login-eligible Account or raise Unauthorized."""
        claims = self.validate_token(token)
        if claims is None:
            raise Unauthorized("invalid, expired or revoked token")
        account = self.store.find_by_id(claims.user_id)
        if account is None or account.email != claims.subject:
            raise Unauthorized("token subject no longer matches an account")
        if not account.is_enabled:
            raise Unauthorized(f"account {account.id} is not enabled")
        return account

    # ------------------------------------------------------------------
    # Authenticated account management
    # ------------------------------------------------------------------

    def change_password(self, account: Account, current_password: str, new_password: str, confirm: str) -> None:
        if new_password != confirm:
            raise ValidationError("New password and confirmation do not match.")
        self.verifier.check_password(account, current_password)
        account.hashed_password = hash_password(new_password)
        self.store.save(account)
        logger.info("Password changed for account %s", account.id)

    def change_two_factor_method(
        self,
        account: Account,
        password: str,
        method: TwoFactorMethod,
        phone_number: str | None = None,
    ) -> ProvisioningPayload | None:
        """Switch the second factor. Returns a provisioning payload for AUTHENTICATOR_APP.

        EMAIL takes effect immediately (the email is already verified).
        AUTHENTICATOR_APP and SMS stay disabled until confirmed through
        verify_totp_setup / verify_phone.
        """
        self.verifier.check_password(account, password)
        provisioning: ProvisioningPayload | None = None

        if method == TwoFactorMethod.NONE:
            account.two_factor_enabled = False
            account.totp_secret = None
        elif method == TwoFactorMethod.EMAIL:
            account.two_factor_enabled = True
            account.totp_secret = None
        elif method == TwoFactorMethod.AUTHENTICATOR_APP:
            provisioning = self.challenges.setup_authenticator_app(account)
            account.two_factor_enabled = False
        elif method == TwoFactorMethod.SMS:
            number = phone_number or account.phone_number
            if not number:
                raise ValidationError("A phone number is required for SMS two-factor authentication.")
            if number != account.phone_number:
                account.phone_number = number
                account.phone_verified = False
            account.two_factor_enabled = False
            account.totp_secret = None
            # Sent before saving: a DeliveryFailure leaves the stored account untouched.
            self.challenges.issue_sms_code(account, CodePurpose.VERIFICATION)
        account.two_factor_method = method

        self.store.save(account)
        logger.info("Two-factor method for account %s changed to %s", account.id, method.value)
        return provisioning

    def get_qr_payload(self, account: Account) -> ProvisioningPayload:
        if account.two_factor_method != TwoFactorMethod.AUTHENTICATOR_APP or not account.totp_secret:
            raise ValidationError("Authenticator app is not set up for this account.")
        return self.challenges.provisioning_payload(account)
