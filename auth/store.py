"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account / _account_to_values are the mappers. Service and route code
never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Emails are normalized to lower case on write and lookup, so the UNIQUE
  constraint cannot be sidestepped with "A@x.com" vs "a@x.com".

Only accounts are durable. Verification challenges and revocation entries are
volatile and live in auth/challenges.py and auth/revocation.py.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import Account, AccountStatus, TwoFactorMethod

_DEFAULT_DB_URL = "sqlite:///authgate.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("phone_number", String(32)),
    Column("two_factor_method", String(20), nullable=False, server_default="NONE"),
    Column("two_factor_enabled", Boolean, nullable=False, server_default="0"),
    Column("totp_secret", String(64)),  # base32, set only for AUTHENTICATOR_APP
    Column("email_verified", Boolean, nullable=False, server_default="0"),
    Column("phone_verified", Boolean, nullable=False, server_default="0"),
    Column("status", String(20), nullable=False, server_default="ACTIVE"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
    Column("last_login", String(32)),  # ISO 8601 timestamp of last successful login
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        account = store.save(Account(email="a@x.com", hashed_password=hash_password("secret1")))
        store.find_by_identifier("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_identifier(self, identifier: str) -> Account | None:
        """Look up an account by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == normalize_email(identifier))).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_id(self, account_id: int) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def exists_by_identifier(self, identifier: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().with_only_columns(_accounts.c.id).where(
                    _accounts.c.email == normalize_email(identifier)
                )
            ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, account: Account) -> Account:
        """Insert a new account (id is None) or update an existing one.

        Returns the stored account with id and timestamps filled in. Raises
        sqlalchemy.exc.IntegrityError if a new account's email is taken --
        callers treat that as a concurrent signup that won the race.
        """
        now = _now_iso()
        account.email = normalize_email(account.email)
        account.updated_at = now
        values = _account_to_values(account)
        with self.engine.connect() as conn:
            if account.id is None:
                account.created_at = account.created_at or now
                values["created_at"] = account.created_at
                result = conn.execute(_accounts.insert().values(**values))
                account.id = result.inserted_primary_key[0]
            else:
                conn.execute(_accounts.update().where(_accounts.c.id == account.id).values(**values))
            conn.commit()
        return account

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _account_to_values(account: Account) -> dict:
    return {
        "email": account.email,
        "hashed_password": account.hashed_password,
        "first_name": account.first_name,
        "last_name": account.last_name,
        "phone_number": account.phone_number,
        "two_factor_method": account.two_factor_method.value,
        "two_factor_enabled": account.two_factor_enabled,
        "totp_secret": account.totp_secret,
        "email_verified": account.email_verified,
        "phone_verified": account.phone_verified,
        "status": account.status.value,
        "updated_at": account.updated_at,
        "last_login": account.last_login,
    }


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        phone_number=row.phone_number,
        two_factor_method=TwoFactorMethod(row.two_factor_method),
        two_factor_enabled=bool(row.two_factor_enabled),
        totp_secret=row.totp_secret,
        email_verified=bool(row.email_verified),
        phone_verified=bool(row.phone_verified),
        status=AccountStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )
