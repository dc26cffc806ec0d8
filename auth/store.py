"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account is the mapper.
Route and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email) is the authoritative guard against duplicate accounts. Two
  concurrent registrations for the same email can both pass the service's
  existence check; the second INSERT fails with IntegrityError and the
  service reports a conflict.

  The store performs no hashing. Digests arrive already computed.

Conditional writes:
  set_otp, mark_verified and delete_unverified all carry
  "AND is_email_verified = 0" in their WHERE clause. That makes the
  compensating delete after a failed OTP email safe against a verification
  racing it: whichever statement lands second matches zero rows.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.models import Account

_DEFAULT_DB_URL = "sqlite:///./verifyhub.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # lower-cased
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(50), nullable=False),
    Column("last_name", String(50), nullable=False),
    Column("profession", String(30)),
    Column("primary_specialty", String(255)),
    Column("institution", String(255)),
    Column("department", String(255)),
    Column("phone_code", String(10)),
    Column("mobile_number", String(20)),
    Column("address", Text),  # JSON object
    Column("terms_accepted", Integer, nullable=False, server_default="0"),
    Column("role", String(30), nullable=False, server_default="USER"),
    Column("status", String(20), nullable=False, server_default="ACTIVE"),
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("email_otp", String(6)),
    Column("email_otp_expires_at", String(32)),  # ISO 8601 UTC
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Columns update_account() accepts. Lifecycle columns (verification flag,
# OTP fields) have dedicated methods so they cannot be set by accident.
_UPDATABLE_COLUMNS: frozenset[str] = frozenset(
    {
        "hashed_password",
        "first_name",
        "last_name",
        "profession",
        "primary_specialty",
        "institution",
        "department",
        "phone_code",
        "mobile_number",
        "address",
        "role",
        "status",
    }
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


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore("sqlite:///./verifyhub.db")
        account_id = store.create_account(Account(email="a@x.com", hashed_password=digest))
        account = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by email (normalized before comparison). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == _normalize_email(email))).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: int) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        AccountService catches that and reports a conflict.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    email=_normalize_email(account.email),
                    hashed_password=account.hashed_password,
                    first_name=account.first_name,
                    last_name=account.last_name,
                    profession=account.profession,
                    primary_specialty=account.primary_specialty,
                    institution=account.institution,
                    department=account.department,
                    phone_code=account.phone_code,
                    mobile_number=account.mobile_number,
                    address=json.dumps(account.address or {}),
                    terms_accepted=1 if account.terms_accepted else 0,
                    role=account.role,
                    status=account.status,
                    is_email_verified=1 if account.is_email_verified else 0,
                    email_otp=account.email_otp,
                    email_otp_expires_at=_to_iso(account.email_otp_expires_at),
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_account(self, account_id: int, **fields) -> bool:
        """Update profile, access-control or password columns on an existing account.

        Accepted fields: see _UPDATABLE_COLUMNS. Unknown keys raise ValueError
        rather than being silently ignored -- filtering user input is the
        service's job, so an unknown key here is a programming error.

        Returns True if a row was updated, False if account_id was not found.
        """
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown account columns: {sorted(unknown)!r}")
        if "address" in fields:
            fields["address"] = json.dumps(fields["address"] or {})
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def set_otp(self, account_id: int, code: str, expires_at: datetime) -> bool:
        """Store a new OTP challenge, replacing any outstanding one.

        Only applies while the account is unverified. Returns False if the
        account is gone or already verified.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.is_email_verified == 0))
                .values(email_otp=code, email_otp_expires_at=_to_iso(expires_at), updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def mark_verified(self, account_id: int) -> bool:
        """Flip the verification flag and clear the OTP fields in one statement.

        Returns True only for the call that performed the transition; a second
        call (or a call racing a compensating delete) returns False.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.is_email_verified == 0))
                .values(is_email_verified=1, email_otp=None, email_otp_expires_at=None, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_unverified(self, account_id: int) -> bool:
        """Delete an account only if it is still unverified.

        Used as the compensating step when the registration OTP email cannot
        be delivered. Idempotent: deleting an already-deleted or meanwhile
        verified account is a no-op that returns False.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.delete().where((_accounts.c.id == account_id) & (_accounts.c.is_email_verified == 0))
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        profession=row.profession,
        primary_specialty=row.primary_specialty,
        institution=row.institution,
        department=row.department,
        phone_code=row.phone_code,
        mobile_number=row.mobile_number,
        address=json.loads(row.address) if row.address else {},
        terms_accepted=bool(row.terms_accepted),
        role=row.role,
        status=row.status,
        is_email_verified=bool(row.is_email_verified),
        email_otp=row.email_otp,
        email_otp_expires_at=_from_iso(row.email_otp_expires_at),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
