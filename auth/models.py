"""
auth/models.py -- Domain dataclasses and enums for accounts and credentials.

Pattern: Data class (pure data container, zero logic). The store maps rows to
these; AccountService does the work; api/models.py decides what leaves the
process. Account carries its secrets (hashed_password, email_otp) because the
lifecycle operations need them -- the public projection lives in
api/models.AccountResponse, which simply has no fields for them.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    EDITOR = "EDITOR"
    TECHNICAL_REVIEWER = "TECHNICAL_REVIEWER"
    REVIEWER = "REVIEWER"


DEFAULT_ROLE = Role.USER


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class Profession(str, Enum):
    DOCTOR = "DOCTOR"
    RESEARCHER = "RESEARCHER"
    STUDENT = "STUDENT"
    OTHER = "OTHER"


# Profile attributes a user may change about themselves. Anything not listed
# here (email, password, role, status, verification state, OTP fields) is
# silently dropped from a self-service patch.
PROFILE_FIELDS: frozenset[str] = frozenset(
    {
        "first_name",
        "last_name",
        "profession",
        "primary_specialty",
        "institution",
        "department",
        "phone_code",
        "mobile_number",
        "address",
    }
)

# Extra fields an administrator may set through the admin-scoped update path.
PRIVILEGED_FIELDS: frozenset[str] = frozenset({"role", "status"})


@dataclass
class Account:
    """A registered identity, verified or not.

    email is always stored trimmed and lower-cased; the store enforces
    uniqueness. address is an opaque dict (street, city, state, country,
    postalCode) that the core passes through untouched.

    Lifecycle invariants:
      - is_email_verified flips False -> True exactly once (AccountStore.mark_verified).
      - when is_email_verified is True, email_otp and email_otp_expires_at are None.

    id is None before the record is written to the database.
    """

    email: str
    first_name: str = ""
    last_name: str = ""
    hashed_password: Optional[str] = None
    profession: Optional[str] = None
    primary_specialty: Optional[str] = None
    institution: Optional[str] = None
    department: Optional[str] = None
    phone_code: Optional[str] = None
    mobile_number: Optional[str] = None
    address: dict = field(default_factory=dict)
    terms_accepted: bool = False
    role: str = DEFAULT_ROLE.value
    status: str = AccountStatus.ACTIVE.value
    is_email_verified: bool = False
    email_otp: Optional[str] = None
    email_otp_expires_at: Optional[datetime] = None
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE.value


@dataclass(frozen=True)
class OtpChallenge:
    """A freshly issued one-time passcode and the instant it stops being valid."""

    code: str
    expires_at: datetime


@dataclass(frozen=True)
class Identity:
    """The decoded claims of a verified bearer token.

    Attached to request.state.identity by the authentication gate. Carries
    only what the token says -- no store lookup happens to build it.
    """

    account_id: int
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AuthResult:
    """Returned by login and OTP verification: a fresh token and its holder."""

    token: str
    account: Account
    expires_in: int
