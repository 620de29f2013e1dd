"""
tests/test_store.py -- AccountStore repository round trips.

Covers:
  - save() inserts, assigns id and timestamps; second save() updates
  - Email normalization on write and lookup
  - UNIQUE email enforced at the DB level
  - Enum and boolean columns map back to domain types
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import Account, AccountStatus, TwoFactorMethod
from auth.store import AccountStore


def test_save_inserts_and_assigns_id(account_store: AccountStore) -> None:
    account = account_store.save(Account(email="Erin@Example.com ", hashed_password="h"))
    assert account.id is not None
    assert account.email == "erin@example.com"
    assert account.created_at is not None
    assert account.updated_at is not None


def test_find_by_identifier_and_id(account_store: AccountStore) -> None:
    saved = account_store.save(Account(email="erin@example.com", hashed_password="h"))
    assert account_store.find_by_identifier("ERIN@example.com").id == saved.id
    assert account_store.find_by_id(saved.id).email == "erin@example.com"
    assert account_store.find_by_identifier("nobody@example.com") is None
    assert account_store.find_by_id(9999) is None


def test_exists_by_identifier(account_store: AccountStore) -> None:
    assert account_store.exists_by_identifier("erin@example.com") is False
    account_store.save(Account(email="erin@example.com", hashed_password="h"))
    assert account_store.exists_by_identifier("Erin@example.com") is True


def test_update_round_trips_all_fields(account_store: AccountStore) -> None:
    account = account_store.save(Account(email="erin@example.com", hashed_password="h", phone_number="+1555"))
    created_at = account.created_at

    account.two_factor_method = TwoFactorMethod.AUTHENTICATOR_APP
    account.two_factor_enabled = True
    account.totp_secret = "JBSWY3DPEHPK3PXP"
    account.email_verified = True
    account.phone_verified = True
    account.status = AccountStatus.SUSPENDED
    account.last_login = "2026-01-01T12:00:00+00:00"
    account_store.save(account)

    loaded = account_store.find_by_id(account.id)
    assert loaded.two_factor_method is TwoFactorMethod.AUTHENTICATOR_APP
    assert loaded.two_factor_enabled is True
    assert loaded.totp_secret == "JBSWY3DPEHPK3PXP"
    assert loaded.email_verified is True
    assert loaded.phone_verified is True
    assert loaded.status is AccountStatus.SUSPENDED
    assert loaded.last_login == "2026-01-01T12:00:00+00:00"
    assert loaded.created_at == created_at
    assert loaded.is_enabled is False


def test_duplicate_email_raises_integrity_error(account_store: AccountStore) -> None:
    account_store.save(Account(email="erin@example.com", hashed_password="h"))
    with pytest.raises(IntegrityError):
        account_store.save(Account(email="ERIN@example.com", hashed_password="h2"))
