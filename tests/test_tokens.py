"""
tests/test_tokens.py -- TokenService issue/validate and its relation to revocation.

Covers:
  - Issued tokens validate and carry the account's claims
  - Tampered, foreign-key, expired and garbage tokens validate to None
  - Unsaved accounts cannot be issued a token
  - TokenService.validate ignores revocation; AuthOrchestrator.validate_token does not
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.models import Account
from auth.revocation import TokenRevocationStore
from auth.session import AuthOrchestrator
from auth.tokens import TokenService
from conftest import TEST_SECRET_KEY


@pytest.fixture()
def account() -> Account:
    return Account(id=42, email="carol@example.com", hashed_password="x")


class TestIssueAndValidate:
    def test_valid_token_round_trip(self, token_service: TokenService, account: Account) -> None:
        claims = token_service.validate(token_service.issue(account))
        assert claims is not None
        assert claims.subject == "carol@example.com"
        assert claims.user_id == 42
        assert claims.expires_at - claims.issued_at == timedelta(seconds=3600)
        assert claims.token_id

    def test_tokens_for_same_account_are_distinct(self, token_service: TokenService, account: Account) -> None:
        assert token_service.issue(account) != token_service.issue(account)

    def test_unsaved_account_rejected(self, token_service: TokenService) -> None:
        with pytest.raises(ValueError):
            token_service.issue(Account(email="new@example.com", hashed_password="x"))

    @pytest.mark.parametrize("token", [None, "", "not-a-jwt", "a.b.c"])
    def test_garbage_is_invalid(self, token_service: TokenService, token) -> None:
        assert token_service.validate(token) is None

    def test_tampered_signature_invalid(self, token_service: TokenService, account: Account) -> None:
        token = token_service.issue(account)
        header, payload, signature = token.split(".")
        flipped = ("A" if signature[0] != "A" else "B") + signature[1:]
        assert token_service.validate(f"{header}.{payload}.{flipped}") is None

    def test_foreign_key_invalid(self, token_service: TokenService, account: Account) -> None:
        other = TokenService(secret_key="another-secret-key-that-is-32-chars-long")
        assert token_service.validate(other.issue(account)) is None

    def test_expired_token_invalid(self, account: Account) -> None:
        two_hours_ago = datetime.now(timezone.utc) - timedelta(hours=2)
        issuer = TokenService(secret_key=TEST_SECRET_KEY, expire_seconds=3600, clock=lambda: two_hours_ago)
        validator = TokenService(secret_key=TEST_SECRET_KEY)
        assert validator.validate(issuer.issue(account)) is None

    def test_missing_claims_invalid(self, token_service: TokenService) -> None:
        exp = int((datetime.now(timezone.utc) + timedelta(hours=1)).timestamp())
        token = jwt.encode({"sub": "carol@example.com", "exp": exp}, TEST_SECRET_KEY, algorithm="HS256")
        assert token_service.validate(token) is None


class TestRevocationInteraction:
    def test_bare_validate_ignores_revocation(
        self, token_service: TokenService, revocations: TokenRevocationStore, account: Account
    ) -> None:
        token = token_service.issue(account)
        revocations.revoke(token)
        assert token_service.validate(token) is not None

    def test_orchestrator_checks_revocation_first(
        self, orchestrator: AuthOrchestrator, token_service: TokenService, account: Account
    ) -> None:
        token = token_service.issue(account)
        assert orchestrator.validate_token(token) is not None
        orchestrator.logout(token)
        assert orchestrator.validate_token(token) is None
