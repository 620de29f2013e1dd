"""
auth/challenges.py -- One-time codes and TOTP: the two-factor challenge manager.

Three verification strategies share one call site:

  EmailChallenge  -- random numeric code, stored with expiry, sent by email
  SmsChallenge    -- same, sent by SMS
  TotpChallenge   -- authenticator app; nothing is sent, the code is derived
                     from the account's TOTP secret and the clock (pyotp)

The orchestrator picks a strategy with strategy_for(method) and only ever
calls issue()/verify(); it never branches on the method itself.

Challenge rules:
  - One outstanding challenge per (account, channel, purpose). Issuing
    overwrites. A code is only accepted for the purpose it was issued for, so
    a verification resend can never complete a login.
  - Two TTL classes: VERIFICATION codes (signup, phone) live 10 minutes,
    LOGIN codes live 5 minutes (both configurable).
  - A challenge is consumed by the first successful verification. Consumption
    is an atomic compare-and-pop, so two concurrent requests presenting the
    same code cannot both succeed.
  - A failed verification does NOT consume the challenge. Retry limits belong
    to the rate limiter in front of the API.
  - Codes are committed only after delivery succeeds, so a DeliveryFailure
    leaves any previous challenge usable.

Internally the failures are ChallengeNotFound / ChallengeExpired /
CodeMismatch; all three share InvalidCode's public message.

Storage is process-local and volatile, like the revocation store: a restart
drops outstanding codes and users simply request a new one.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import hmac
import logging
import secrets
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Protocol

import pyotp
import qrcode
import qrcode.image.svg

from auth.errors import ChallengeExpired, ChallengeNotFound, CodeMismatch, InvalidCode, ValidationError
from auth.models import Account, Challenge, Channel, CodePurpose, ProvisioningPayload, TwoFactorMethod

if TYPE_CHECKING:
    from auth.delivery import CodeDelivery
    from core.config import Settings

logger = logging.getLogger("authgate.auth.challenges")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Challenge storage
# ---------------------------------------------------------------------------


class ChallengeStore:
    """Thread-safe map of (account email, channel, purpose) -> Challenge."""

    def __init__(self) -> None:
        self._challenges: dict[tuple[str, Channel, CodePurpose], Challenge] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(account: Account, channel: Channel, purpose: CodePurpose) -> tuple[str, Channel, CodePurpose]:
        return account.email.lower(), channel, purpose

    def put(self, account: Account, challenge: Challenge) -> None:
        with self._lock:
            self._challenges[self._key(account, challenge.channel, challenge.purpose)] = challenge

    def get(self, account: Account, channel: Channel, purpose: CodePurpose) -> Challenge | None:
        with self._lock:
            return self._challenges.get(self._key(account, channel, purpose))

    def consume(self, account: Account, challenge: Challenge) -> bool:
        """Remove the challenge only if it is still the outstanding one."""
        key = self._key(account, challenge.channel, challenge.purpose)
        with self._lock:
            if self._challenges.get(key) is challenge:
                del self._challenges[key]
                return True
            return False

    def discard(self, account: Account, channel: Channel, purpose: CodePurpose) -> None:
        with self._lock:
            self._challenges.pop(self._key(account, channel, purpose), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)


# ---------------------------------------------------------------------------
# Challenge manager
# ---------------------------------------------------------------------------


class ChallengeManager:
    """Issues, delivers and verifies codes; provisions TOTP secrets."""

    def __init__(
        self,
        email_delivery: CodeDelivery,
        sms_delivery: CodeDelivery,
        *,
        store: ChallengeStore | None = None,
        code_length: int = 6,
        verification_ttl_seconds: int = 600,
        login_ttl_seconds: int = 300,
        totp_issuer: str = "AuthGate",
        totp_valid_window: int = 1,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._email_delivery = email_delivery
        self._sms_delivery = sms_delivery
        self.store = store or ChallengeStore()
        self.code_length = code_length
        self.ttls = {
            CodePurpose.VERIFICATION: timedelta(seconds=verification_ttl_seconds),
            CodePurpose.LOGIN: timedelta(seconds=login_ttl_seconds),
        }
        self.totp_issuer = totp_issuer
        self.totp_valid_window = totp_valid_window
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, email_delivery: CodeDelivery, sms_delivery: CodeDelivery
    ) -> ChallengeManager:
        return cls(
            email_delivery,
            sms_delivery,
            code_length=settings.code_length,
            verification_ttl_seconds=settings.verification_code_ttl_seconds,
            login_ttl_seconds=settings.login_code_ttl_seconds,
            totp_issuer=settings.totp_issuer,
            totp_valid_window=settings.totp_valid_window,
        )

    # ------------------------------------------------------------------
    # Delivered codes (email / SMS)
    # ------------------------------------------------------------------

    def generate_code(self) -> str:
        """Return a zero-padded numeric code from the OS CSPRNG."""
        return f"{secrets.randbelow(10**self.code_length):0{self.code_length}d}"

    def issue_email_code(self, account: Account, purpose: CodePurpose = CodePurpose.VERIFICATION) -> None:
        self._issue(account, Channel.EMAIL, account.email, self._email_delivery, purpose)

    def issue_sms_code(self, account: Account, purpose: CodePurpose = CodePurpose.VERIFICATION) -> None:
        if not account.phone_number:
            raise ValidationError("A phone number is required for SMS verification.")
        self._issue(account, Channel.SMS, account.phone_number, self._sms_delivery, purpose)

    def _issue(
        self,
        account: Account,
        channel: Channel,
        destination: str,
        delivery: CodeDelivery,
        purpose: CodePurpose,
    ) -> None:
        code = self.generate_code()
        challenge = Challenge(
            code=code,
            expires_at=self._clock() + self.ttls[purpose],
            channel=channel,
            purpose=purpose,
        )
        # Raises DeliveryFailure; nothing is stored in that case.
        delivery.deliver(destination, code, purpose)
        self.store.put(account, challenge)
        logger.info("Issued %s %s challenge for account %s", channel.value, purpose.value, account.id)

    def check_code(
        self,
        account: Account,
        channel: Channel,
        submitted: str,
        purpose: CodePurpose = CodePurpose.VERIFICATION,
    ) -> None:
        """Verify and consume a delivered code, raising the precise InvalidCode subclass.

        Only a challenge issued for the same purpose is considered.
        """
        challenge = self.store.get(account, channel, purpose)
        if challenge is None:
            raise ChallengeNotFound(f"no outstanding {channel.value} {purpose.value} challenge")
        if self._clock() >= challenge.expires_at:
            self.store.consume(account, challenge)
            raise ChallengeExpired(f"{channel.value} challenge expired at {challenge.expires_at.isoformat()}")
        if not hmac.compare_digest(challenge.code.encode("utf-8"), (submitted or "").strip().encode("utf-8")):
            raise CodeMismatch(f"{channel.value} code mismatch")
        if not self.store.consume(account, challenge):
            # Another request consumed (or replaced) it between get and consume.
            raise ChallengeNotFound(f"{channel.value} challenge already used")
        logger.info("Verified %s challenge for account %s", channel.value, account.id)

    def verify_code(
        self,
        account: Account,
        channel: Channel,
        submitted: str,
        purpose: CodePurpose = CodePurpose.VERIFICATION,
    ) -> bool:
        try:
            self.check_code(account, channel, submitted, purpose)
        except InvalidCode:
            return False
        return True

    # ------------------------------------------------------------------
    # Authenticator app (TOTP)
    # ------------------------------------------------------------------

    def setup_authenticator_app(self, account: Account) -> ProvisioningPayload:
        """Generate a fresh TOTP secret on the account and return its provisioning payload.

        The secret is unconfirmed: this does not enable 2FA. The caller persists
        the account and enables 2FA only after a successful verify_totp().
        """
        account.totp_secret = pyotp.random_base32()
        logger.info("Provisioned new TOTP secret for account %s", account.id)
        return self.provisioning_payload(account)

    def provisioning_payload(self, account: Account) -> ProvisioningPayload:
        if not account.totp_secret:
            raise ChallengeNotFound("account has no TOTP secret")
        uri = pyotp.TOTP(account.totp_secret).provisioning_uri(name=account.email, issuer_name=self.totp_issuer)
        return ProvisioningPayload(provisioning_uri=uri, qr_code=_qr_data_uri(uri))

    def check_totp(self, account: Account, submitted: str) -> None:
        if not account.totp_secret:
            raise ChallengeNotFound("account has no TOTP secret")
        totp = pyotp.TOTP(account.totp_secret)
        if not totp.verify((submitted or "").strip(), for_time=self._clock(), valid_window=self.totp_valid_window):
            raise CodeMismatch("totp code outside tolerance window")

    def verify_totp(self, account: Account, submitted: str) -> bool:
        try:
            self.check_totp(account, submitted)
        except InvalidCode:
            return False
        return True

    def begin_totp_login(self, account: Account) -> None:
        """Record that a login for this account passed the password step.

        No code is generated or delivered; the marker only makes login-complete
        for authenticator-app accounts depend on a prior login-initiate.
        """
        marker = Challenge(
            code="",
            expires_at=self._clock() + self.ttls[CodePurpose.LOGIN],
            channel=Channel.TOTP,
            purpose=CodePurpose.LOGIN,
        )
        self.store.put(account, marker)

    def check_totp_login(self, account: Account, submitted: str) -> None:
        marker = self.store.get(account, Channel.TOTP, CodePurpose.LOGIN)
        if marker is None:
            raise ChallengeNotFound("no pending authenticator-app login")
        if self._clock() >= marker.expires_at:
            self.store.consume(account, marker)
            raise ChallengeExpired("pending authenticator-app login expired")
        self.check_totp(account, submitted)
        if not self.store.consume(account, marker):
            raise ChallengeNotFound("pending authenticator-app login already completed")


def _qr_data_uri(data: str) -> str:
    """Render data as an SVG QR code and return it as a base64 data: URI."""
    qr = qrcode.QRCode(border=2)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(image_factory=qrcode.image.svg.SvgPathImage)
    return "data:image/svg+xml;base64," + base64.b64encode(img.to_string()).decode("ascii")


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class ChallengeStrategy(Protocol):
    method: TwoFactorMethod

    def issue(self, account: Account, purpose: CodePurpose) -> None: ...

    def verify(self, account: Account, code: str) -> None: ...


class EmailChallenge:
    method = TwoFactorMethod.EMAIL

    def __init__(self, manager: ChallengeManager) -> None:
        self._manager = manager

    def issue(self, account: Account, purpose: CodePurpose) -> None:
        self._manager.issue_email_code(account, purpose)

    def verify(self, account: Account, code: str) -> None:
        self._manager.check_code(account, Channel.EMAIL, code, CodePurpose.LOGIN)


class SmsChallenge:
    method = TwoFactorMethod.SMS

    def __init__(self, manager: ChallengeManager) -> None:
        self._manager = manager

    def issue(self, account: Account, purpose: CodePurpose) -> None:
        self._manager.issue_sms_code(account, purpose)

    def verify(self, account: Account, code: str) -> None:
        self._manager.check_code(account, Channel.SMS, code, CodePurpose.LOGIN)


class TotpChallenge:
    method = TwoFactorMethod.AUTHENTICATOR_APP

    def __init__(self, manager: ChallengeManager) -> None:
        self._manager = manager

    def issue(self, account: Account, purpose: CodePurpose) -> None:
        self._manager.begin_totp_login(account)

    def verify(self, account: Account, code: str) -> None:
        self._manager.check_totp_login(account, code)


def strategy_for(manager: ChallengeManager, method: TwoFactorMethod) -> ChallengeStrategy:
    """Return the strategy for an enabled two-factor method."""
    if method == TwoFactorMethod.EMAIL:
        return EmailChallenge(manager)
    if method == TwoFactorMethod.SMS:
        return SmsChallenge(manager)
    if method == TwoFactorMethod.AUTHENTICATOR_APP:
        return TotpChallenge(manager)
    raise ValueError(f"No challenge strategy for two-factor method {method!r}")
