"""
API request and response models for VerifyHub REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire format is camelCase (firstName, postalCode, errorCode); Python
attributes stay snake_case via the to_camel alias generator.

Request models are the declarative input-shape layer: by the time
AccountService runs, emails are trimmed and lower-cased, passwords are
confirmed and unknown fields are gone (extra="ignore" drops them silently).

AccountResponse is the only outward representation of an account. It has
no field for the password digest or the OTP, so they cannot leak.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from auth.models import Account, AccountStatus, Profession, Role
from auth.tokens import PASSWORD_MAX_BYTES, password_fits

MOBILE_PATTERN = r"^[0-9]{10}$"
OTP_PATTERN = r"^[0-9]{6}$"


class _RequestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class _ResponseModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


def _password_within_bcrypt_limit(v: str) -> str:
    if not password_fits(v):
        raise ValueError(f"Password must not exceed {PASSWORD_MAX_BYTES} bytes")
    return v


class _EmailMixin(_RequestModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.strip().lower()


# ---------------------------------------------------------------------------
# Request models -- onboarding
# ---------------------------------------------------------------------------


class AddressIn(_RequestModel):
    street: str = Field(min_length=1, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    country: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)


class RegisterRequest(_EmailMixin):
    """Request body for POST /api/v1/users/register."""

    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    password: str = Field(min_length=6, max_length=100)
    confirm_password: str
    profession: Profession
    primary_specialty: str = Field(min_length=1, max_length=255)
    institution: str = Field(min_length=1, max_length=255)
    department: Optional[str] = Field(default="", max_length=255)
    phone_code: str = Field(min_length=1, max_length=10)
    mobile_number: str = Field(pattern=MOBILE_PATTERN)
    address: AddressIn
    terms_accepted: bool

    @field_validator("password")
    @classmethod
    def password_within_bcrypt_limit(cls, v: str) -> str:
        return _password_within_bcrypt_limit(v)

    @field_validator("terms_accepted")
    @classmethod
    def terms_must_be_accepted(cls, v: bool) -> bool:
        if not v:
            raise ValueError("You must accept the terms and conditions to register")
        return v

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self

    def to_profile(self) -> dict[str, Any]:
        """Profile fields for AccountService.register(); excludes email and passwords."""
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "profession": self.profession.value,
            "primary_specialty": self.primary_specialty,
            "institution": self.institution,
            "department": self.department or "",
            "phone_code": self.phone_code,
            "mobile_number": self.mobile_number,
            "address": self.address.model_dump(by_alias=True),
            "terms_accepted": self.terms_accepted,
        }


class VerifyOtpRequest(_EmailMixin):
    """Request body for POST /api/v1/users/verify-otp."""

    otp: str = Field(pattern=OTP_PATTERN, description="Exactly 6 digits.")


class ResendOtpRequest(_EmailMixin):
    """Request body for POST /api/v1/users/resend-otp."""


class LoginRequest(_EmailMixin):
    """Request body for POST /api/v1/users/login."""

    password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Request models -- authenticated
# ---------------------------------------------------------------------------


class AddressPatch(_RequestModel):
    street: Optional[str] = Field(default=None, min_length=1, max_length=255)
    city: Optional[str] = Field(default=None, min_length=1, max_length=100)
    state: Optional[str] = Field(default=None, min_length=1, max_length=100)
    country: Optional[str] = Field(default=None, min_length=1, max_length=100)
    postal_code: Optional[str] = Field(default=None, min_length=1, max_length=20)


class ProfileUpdateRequest(_RequestModel):
    """Request body for PATCH /api/v1/users/me.

    email, password, role, status and isEmailVerified are not fields here,
    so extra="ignore" drops them before the service sees the patch.
    """

    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    profession: Optional[Profession] = None
    primary_specialty: Optional[str] = Field(default=None, min_length=1, max_length=255)
    institution: Optional[str] = Field(default=None, min_length=1, max_length=255)
    department: Optional[str] = Field(default=None, max_length=255)
    phone_code: Optional[str] = Field(default=None, min_length=1, max_length=10)
    mobile_number: Optional[str] = Field(default=None, pattern=MOBILE_PATTERN)
    address: Optional[AddressPatch] = None

    @model_validator(mode="after")
    def at_least_one_field(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        return self

    def to_patch(self) -> dict[str, Any]:
        """Return only the fields the client actually sent, with nulls dropped."""
        data = self.model_dump(mode="json", exclude_unset=True)
        if self.address is not None:
            data["address"] = self.address.model_dump(by_alias=True, exclude_unset=True)
        return {k: v for k, v in data.items() if v is not None}


class AdminUpdateRequest(ProfileUpdateRequest):
    """Request body for PATCH /api/v1/users/{id} (admin only)."""

    role: Optional[Role] = None
    status: Optional[AccountStatus] = None


class ChangePasswordRequest(_RequestModel):
    """Request body for POST /api/v1/users/change-password."""

    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=6, max_length=100)
    confirm_new_password: str

    @field_validator("new_password")
    @classmethod
    def new_password_within_bcrypt_limit(cls, v: str) -> str:
        return _password_within_bcrypt_limit(v)

    @model_validator(mode="after")
    def check_new_password(self) -> "ChangePasswordRequest":
        if self.new_password == self.current_password:
            raise ValueError("New password must be different from current password")
        if self.new_password != self.confirm_new_password:
            raise ValueError("Passwords do not match")
        return self


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(_ResponseModel):
    """Public projection of an account. No password digest, no OTP."""

    id: int
    email: str
    first_name: str
    last_name: str
    full_name: str
    profession: Optional[str]
    primary_specialty: Optional[str]
    institution: Optional[str]
    department: Optional[str]
    phone_code: Optional[str]
    mobile_number: Optional[str]
    address: dict[str, Any]
    terms_accepted: bool
    role: str
    status: str
    is_email_verified: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        """Build the public view from a domain Account (Factory Method)."""
        return cls(
            id=account.id,
            email=account.email,
            first_name=account.first_name,
            last_name=account.last_name,
            full_name=account.full_name,
            profession=account.profession,
            primary_specialty=account.primary_specialty,
            institution=account.institution,
            department=account.department,
            phone_code=account.phone_code,
            mobile_number=account.mobile_number,
            address=dict(account.address),
            terms_accepted=account.terms_accepted,
            role=account.role,
            status=account.status,
            is_email_verified=account.is_email_verified,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class AuthData(_ResponseModel):
    token: str
    user: AccountResponse


class RegisteredData(_ResponseModel):
    email: str


class EmailAvailabilityData(_ResponseModel):
    email: str
    available: bool
    is_verified: Optional[bool] = None


class SuccessResponse(_ResponseModel):
    """Envelope for every 2xx response."""

    success: bool = True
    message: str
    data: Any = None
    meta: Optional[dict[str, Any]] = None


class ErrorResponse(_ResponseModel):
    """Envelope for every 4xx/5xx response."""

    success: bool = False
    error_code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(_ResponseModel):
    """Response for GET /api/v1/health."""

    status: str
    version: str
    components: dict[str, str]
