"""
auth/tokens.py -- Stateless session tokens (JWT).

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (email), user_id, iat, exp and a random jti. Verification returns
       None on any failure -- the route layer turns that into a 401.

  jti: two tokens minted for the same account in the same second would
       otherwise be byte-identical, and revoking one would revoke the other.

  Revocation: TokenService knows nothing about the revocation
       store. validate() is a pure function of signature, claims and the
       clock, so the service holds no mutable shared state. Callers that
       authorize requests check TokenRevocationStore first (see
       AuthOrchestrator.resolve and auth/dependencies.py).

  Key rotation: the signing key is process-wide configuration loaded once at
       startup. Changing it invalidates every previously issued token. That
       is accepted behaviour, not something this module smooths over.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.models import Claims

if TYPE_CHECKING:
    from auth.models import Account
    from core.config import Settings

logger = logging.getLogger("authgate.auth.tokens")

_ALGORITHM = "HS256"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Mints and validates signed session tokens.

    Usage:
        tokens = TokenService(secret_key=settings.secret_key, expire_seconds=3600)
        token = tokens.issue(account)
        claims = tokens.validate(token)   # Claims or None
    """

    def __init__(
        self,
        secret_key: str,
        expire_seconds: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenService:
        return cls(secret_key=settings.secret_key, expire_seconds=settings.token_expire_seconds)

    def issue(self, account: Account) -> str:
        """Encode a signed JWT for the account. Raises ValueError for an unsaved account."""
        if account.id is None:
            raise ValueError("Cannot issue a token for an account without an id.")
        now = self._clock()
        payload = {
            "sub": account.email,
            "user_id": account.id,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.expire_seconds)).timestamp()),
            "jti": secrets.token_hex(16),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def validate(self, token: str | None) -> Claims | None:
        """Verify signature and expiry. Returns Claims or None on any failure.

        Expiry is checked by python-jose against the wall clock. Returning None
        (rather than raising) keeps callers simple: any invalid token is
        treated as unauthenticated.
        """
        if not token:
            return None
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            return None
        try:
            return Claims(
                subject=payload["sub"],
                user_id=int(payload["user_id"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                token_id=payload.get("jti", ""),
            )
        except (KeyError, TypeError, ValueError):
            logger.debug("Token rejected: missing or malformed claims")
            return None
