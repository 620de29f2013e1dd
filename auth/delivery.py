"""
auth/delivery.py -- Email and SMS transports for one-time codes.

Both adapters share one contract, deliver(destination, code, purpose), and
both raise DeliveryFailure when the transport fails. They never swallow a
failure: the challenge manager must know the code did not go out so it can
leave the previous challenge in place and report a retryable error.

Dev mode: when SMTP_HOST (email) or SMS_GATEWAY_URL (SMS) is empty the adapter
does not send. It logs the unsent notice at INFO with the destination redacted,
and the rendered message, code included, at DEBUG only. The API raises the
"authgate" loggers to DEBUG when DEBUG=true, so local signups can be verified
from the console without real transports.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Protocol

import requests

from auth.errors import DeliveryFailure
from auth.models import CodePurpose

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("authgate.auth.delivery")

_EMAIL_SUBJECTS = {
    CodePurpose.VERIFICATION: "Email Verification Code",
    CodePurpose.LOGIN: "Two-Factor Authentication Code",
}

_EMAIL_BODIES = {
    CodePurpose.VERIFICATION: (
        "Your verification code is: {code}\n\n"
        "This code will expire in {minutes} minutes.\n\n"
        "If you didn't request this code, please ignore this email."
    ),
    CodePurpose.LOGIN: (
        "Your two-factor authentication code is: {code}\n\n"
        "This code will expire in {minutes} minutes.\n\n"
        "If you didn't request this code, please contact support immediately."
    ),
}

_SMS_BODIES = {
    CodePurpose.VERIFICATION: "Your verification code is: {code}. This code will expire in {minutes} minutes.",
    CodePurpose.LOGIN: "Your two-factor authentication code is: {code}. This code will expire in {minutes} minutes.",
}


class CodeDelivery(Protocol):
    def deliver(self, destination: str, code: str, purpose: CodePurpose) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def redact_phone(phone: str) -> str:
    return f"***{phone[-4:]}" if len(phone) > 4 else "***"


class EmailCodeDelivery:
    """Sends codes over SMTP (STARTTLS by default)."""

    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        mail_from: str = "",
        ttl_minutes: dict[CodePurpose, int] | None = None,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.mail_from = mail_from or smtp_user
        self.ttl_minutes = ttl_minutes or {CodePurpose.VERIFICATION: 10, CodePurpose.LOGIN: 5}

    @classmethod
    def from_settings(cls, settings: Settings) -> EmailCodeDelivery:
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            mail_from=settings.mail_from,
            ttl_minutes=_ttl_minutes(settings),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.mail_from)

    def deliver(self, destination: str, code: str, purpose: CodePurpose) -> None:
        text = _EMAIL_BODIES[purpose].format(code=code, minutes=self.ttl_minutes[purpose])
        if not self.is_configured:
            logger.info("SMTP not configured; %s code for %s not sent", purpose.value, redact_email(destination))
            logger.debug("Unsent email to %s: %s | %s", redact_email(destination), _EMAIL_SUBJECTS[purpose], text)
            return

        msg = MIMEText(text)
        msg["Subject"] = _EMAIL_SUBJECTS[purpose]
        msg["From"] = self.mail_from
        msg["To"] = destination
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                if self.smtp_use_tls:
                    server.starttls(context=ssl.create_default_context())
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.mail_from, [destination], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("Email delivery to %s failed: %s", redact_email(destination), exc)
            raise DeliveryFailure(f"smtp: {exc}") from exc
        logger.info("Sent %s code to %s", purpose.value, redact_email(destination))


class SmsCodeDelivery:
    """Sends codes through an HTTP SMS gateway (JSON POST, bearer token)."""

    def __init__(
        self,
        *,
        gateway_url: str = "",
        gateway_token: str = "",
        sender: str = "AuthGate",
        ttl_minutes: dict[CodePurpose, int] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.gateway_url = gateway_url
        self.gateway_token = gateway_token
        self.sender = sender
        self.ttl_minutes = ttl_minutes or {CodePurpose.VERIFICATION: 10, CodePurpose.LOGIN: 5}
        self._session = session or requests.Session()
        # Known gateway endpoint -- no reason to follow long redirect chains.
        self._session.max_redirects = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> SmsCodeDelivery:
        return cls(
            gateway_url=settings.sms_gateway_url,
            gateway_token=settings.sms_gateway_token,
            sender=settings.sms_sender,
            ttl_minutes=_ttl_minutes(settings),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.gateway_url)

    def deliver(self, destination: str, code: str, purpose: CodePurpose) -> None:
        text = _SMS_BODIES[purpose].format(code=code, minutes=self.ttl_minutes[purpose])
        if not self.is_configured:
            logger.info("SMS gateway not configured; %s code for %s not sent", purpose.value, redact_phone(destination))
            logger.debug("Unsent SMS to %s: %s", redact_phone(destination), text)
            return

        headers = {"Authorization": f"Bearer {self.gateway_token}"} if self.gateway_token else {}
        body = {
            "to": destination,
            "from": self.sender,
            "text": text,
        }
        try:
            resp = self._session.post(self.gateway_url, json=body, headers=headers, timeout=10)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("SMS delivery to %s failed: %s", redact_phone(destination), exc)
            raise DeliveryFailure(f"sms gateway: {exc}") from exc
        logger.info("Sent %s code to %s", purpose.value, redact_phone(destination))


def _ttl_minutes(settings: Settings) -> dict[CodePurpose, int]:
    return {
        CodePurpose.VERIFICATION: max(1, settings.verification_code_ttl_seconds // 60),
        CodePurpose.LOGIN: max(1, settings.login_code_ttl_seconds // 60),
    }
