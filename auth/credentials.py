"""
auth/credentials.py -- Password hashing and the credential verifier.

Passwords: bcrypt directly (no passlib wrapper). Bcrypt's cost factor makes
       brute-force of low-entropy secrets expensive, and checkpw() compares
       hashes rather than plaintext.

Enumeration resistance [C1]:
  verify() raises the same InvalidCredentials for an unknown email and for a
  wrong password. It also equalizes timing: when the account does not exist
  the password is still checked against _DUMMY_HASH, so response time does not
  reveal whether the email is registered.

The verifier is read-only. It does not check account status -- that is the
orchestrator's job, so a correct password on a suspended account can be
reported as AccountDisabled internally.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import bcrypt

from auth.errors import InvalidCredentials

if TYPE_CHECKING:
    from auth.models import Account
    from auth.store import AccountStore

logger = logging.getLogger("authgate.auth.credentials")


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
    password length well below that (Pydantic max_length).
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash -- treat as a mismatch, never as a match.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("authgate_timing_dummy")


class CredentialVerifier:
    """Checks an email + password pair against the account store."""

    def __init__(self, store: AccountStore) -> None:
        self._store = store

    def verify(self, identifier: str, secret: str) -> Account:
        """Return the matching Account or raise InvalidCredentials.

        Always runs bcrypt whether or not the account exists [C1].
        """
        account = self._store.find_by_identifier(identifier)
        if account is None:
            verify_password(secret, _DUMMY_HASH)
            logger.debug("Credential check failed: unknown identifier")
            raise InvalidCredentials("unknown identifier")
        if not verify_password(secret, account.hashed_password):
            logger.debug("Credential check failed: password mismatch for account %s", account.id)
            raise InvalidCredentials("password mismatch")
        return account

    def check_password(self, account: Account, secret: str) -> None:
        """Re-confirm the password of an already-resolved account.

        Used by change-password and change-2fa, which act on the bearer's own
        account but still demand the current password.
        """
        if not verify_password(secret, account.hashed_password):
            raise InvalidCredentials("password mismatch")
