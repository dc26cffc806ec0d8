"""
auth/accounts.py -- Account lifecycle: registration, OTP verification, login,
profile and password management.

State per account: {unverified, verified} x {ACTIVE, INACTIVE, SUSPENDED}.

  register      -> unverified, ACTIVE, OTP issued and mailed
  resend_otp    -> new OTP replaces the old one (unverified only)
  verify_otp    -> verified, OTP cleared, token issued
  login         -> token issued (verified + ACTIVE only)

Compensating delete [R1]:
  register() creates the row first and mails the OTP second. There is no
  transaction spanning the two. If the mail fails, the new row is removed
  with AccountStore.delete_unverified(), which is a no-op if a verification
  won the race in between. resend_otp() never deletes -- that account
  existed before the call.

Security-sensitive ambiguity (do not split these errors apart):
  [C1] unknown email and wrong password both raise InvalidCredentialsError,
       and an unknown email still pays for one bcrypt comparison against a
       dummy digest so response time does not reveal which case it was.
  [C2] wrong OTP and expired OTP both raise InvalidOtpError.

Self-service updates [C3]:
  update_profile() keeps only PROFILE_FIELDS. email, password, role, status
  and the verification flag are dropped without error. Role and status are
  reachable only through update_account_as_admin().

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError

from auth.mailer import Mailer, otp_email
from auth.models import (
    DEFAULT_ROLE,
    PRIVILEGED_FIELDS,
    PROFILE_FIELDS,
    Account,
    AccountStatus,
    AuthResult,
    Identity,
    Role,
)
from auth.otp import DEFAULT_OTP_LIFETIME_SECONDS, issue_otp, validate_otp
from auth.store import AccountStore
from auth.tokens import (
    DEFAULT_BCRYPT_ROUNDS,
    PASSWORD_MAX_BYTES,
    TokenIssuer,
    hash_password,
    password_fits,
    verify_password,
)
from core.errors import (
    AccountExistsError,
    AccountNotFoundError,
    AccountSuspendedError,
    AlreadyVerifiedError,
    EmailDeliveryError,
    EmailNotVerifiedError,
    IncorrectPasswordError,
    InvalidCredentialsError,
    InvalidOtpError,
    SelfLockoutError,
    ValidationFailedError,
)

logger = logging.getLogger("verifyhub.auth")

MSG_EMAIL_AVAILABLE = "Email is available."
MSG_EMAIL_TAKEN = "An account with this email already exists. Please login instead."
MSG_EMAIL_PENDING = "This email is registered but not verified. Please complete verification or request a new OTP."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class EmailAvailability:
    email: str
    available: bool
    is_verified: Optional[bool]
    message: str


class AccountService:
    """Orchestrates every account operation against the store, mailer and token issuer.

    Stateless apart from its collaborators: one instance serves all requests.
    Methods are synchronous (bcrypt is CPU-bound); FastAPI runs the sync
    route handlers that call them in its thread pool, so hashing for one
    request never blocks another and there is no shared lock.
    """

    def __init__(
        self,
        store: AccountStore,
        mailer: Mailer,
        tokens: TokenIssuer,
        otp_lifetime_seconds: int = DEFAULT_OTP_LIFETIME_SECONDS,
        bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._mailer = mailer
        self._tokens = tokens
        self._otp_lifetime = otp_lifetime_seconds
        self._rounds = bcrypt_rounds
        self._clock = clock
        # [C1] Computed once so the first failed login is not measurably slower.
        self._dummy_hash = hash_password("verifyhub_timing_dummy", rounds=bcrypt_rounds)

    # ------------------------------------------------------------------
    # Public onboarding flow
    # ------------------------------------------------------------------

    def check_email_availability(self, email: str) -> EmailAvailability:
        """Report whether an email can be used for a new registration.

        Both a verified and an unverified owner make the email unavailable;
        only the message differs.
        """
        email = normalize_email(email)
        account = self._store.get_by_email(email)
        if account is None:
            return EmailAvailability(email=email, available=True, is_verified=None, message=MSG_EMAIL_AVAILABLE)
        if account.is_email_verified:
            return EmailAvailability(email=email, available=False, is_verified=True, message=MSG_EMAIL_TAKEN)
        return EmailAvailability(email=email, available=False, is_verified=False, message=MSG_EMAIL_PENDING)

    def register(self, email: str, password: str, profile: Optional[dict[str, Any]] = None) -> str:
        """Step 1 of onboarding. Returns the normalized email, never the account or OTP.

        - verified owner exists   -> AccountExistsError
        - unverified owner exists -> treated as resend; no second row
        - otherwise               -> create unverified account, mail OTP,
                                     roll back the row if mailing fails [R1]
        """
        email = normalize_email(email)
        profile = profile or {}

        existing = self._store.get_by_email(email)
        if existing is not None:
            if existing.is_email_verified:
                raise AccountExistsError()
            logger.info("Registration retried for unverified account %s -- reissuing OTP", existing.id)
            self._reissue_otp(existing)
            return existing.email

        challenge = issue_otp(now=self._clock(), lifetime_seconds=self._otp_lifetime)
        account = Account(
            email=email,
            hashed_password=self._hash_new_password(password),
            terms_accepted=bool(profile.get("terms_accepted", False)),
            role=DEFAULT_ROLE.value,
            status=AccountStatus.ACTIVE.value,
            is_email_verified=False,
            email_otp=challenge.code,
            email_otp_expires_at=challenge.expires_at,
            **_pick(profile, PROFILE_FIELDS),
        )
        try:
            account.id = self._store.create_account(account)
        except IntegrityError as exc:
            # A concurrent registration for the same email got there first.
            raise AccountExistsError() from exc

        try:
            self._deliver_otp(account, challenge.code)
        except EmailDeliveryError:
            removed = self._store.delete_unverified(account.id)
            logger.warning(
                "OTP delivery failed for new account %s -- compensating delete (removed=%s)", account.id, removed
            )
            raise

        logger.info("Registered account %s (unverified)", account.id)
        return account.email

    def resend_otp(self, email: str) -> str:
        """Replace the outstanding OTP and mail it. Delivery failure does not delete the account."""
        account = self._store.get_by_email(normalize_email(email))
        if account is None:
            raise AccountNotFoundError()
        if account.is_email_verified:
            raise AlreadyVerifiedError()
        self._reissue_otp(account)
        return account.email

    def verify_otp(self, email: str, code: str) -> AuthResult:
        """Step 2 of onboarding. On success the account is verified and a token issued."""
        account = self._store.get_by_email(normalize_email(email))
        if account is None:
            raise AccountNotFoundError()
        if account.is_email_verified:
            raise AlreadyVerifiedError()
        if not validate_otp(code, account.email_otp, account.email_otp_expires_at, now=self._clock()):
            raise InvalidOtpError()  # [C2]
        if not self._store.mark_verified(account.id):
            self._raise_for_lost_race(account.id)

        verified = self._require(account.id)
        logger.info("Account %s verified its email", verified.id)
        return self._issue(verified)

    def login(self, email: str, password: str) -> AuthResult:
        """Authenticate with email and password.

        Always runs bcrypt whether or not the account exists [C1].
        """
        account = self._store.get_by_email(normalize_email(email))
        if account is None or not account.hashed_password:
            verify_password(password, self._dummy_hash)
            raise InvalidCredentialsError()
        if not verify_password(password, account.hashed_password):
            raise InvalidCredentialsError()
        if not account.is_email_verified:
            raise EmailNotVerifiedError()
        if not account.is_active:
            raise AccountSuspendedError()
        logger.info("Account %s logged in", account.id)
        return self._issue(account)

    # ------------------------------------------------------------------
    # Authenticated operations
    # ------------------------------------------------------------------

    def get_account(self, account_id: int) -> Account:
        return self._require(account_id)

    def update_profile(self, account_id: int, patch: dict[str, Any]) -> Account:
        """Self-service update. Only PROFILE_FIELDS survive the filter [C3]."""
        current = self._require(account_id)
        fields = _pick(patch, PROFILE_FIELDS)
        return self._apply(current, fields)

    def update_account_as_admin(self, actor: Identity, account_id: int, patch: dict[str, Any]) -> Account:
        """Admin update of any account, including role and status.

        The caller must already have passed the ADMIN role gate. An admin may
        not change their own role or status -- that is how the last admin
        locks everyone out.
        """
        current = self._require(account_id)
        fields = _pick(patch, PROFILE_FIELDS | PRIVILEGED_FIELDS)

        if "role" in fields:
            fields["role"] = _enum_value(Role, fields["role"], "role")
        if "status" in fields:
            fields["status"] = _enum_value(AccountStatus, fields["status"], "status")

        if actor.account_id == current.id:
            role_change = "role" in fields and fields["role"] != current.role
            status_change = "status" in fields and fields["status"] != current.status
            if role_change or status_change:
                raise SelfLockoutError()

        updated = self._apply(current, fields)
        if {"role", "status"} & fields.keys():
            logger.info(
                "Admin %s set account %s role=%s status=%s",
                actor.account_id,
                updated.id,
                updated.role,
                updated.status,
            )
        return updated

    def change_password(self, account_id: int, current_password: str, new_password: str) -> None:
        """Replace the password digest after re-authenticating with the current password.

        A wrong current password raises before anything is written.
        """
        account = self._require(account_id)
        if not account.hashed_password or not verify_password(current_password, account.hashed_password):
            raise IncorrectPasswordError()
        self._store.update_account(account_id, hashed_password=self._hash_new_password(new_password))
        logger.info("Account %s changed its password", account_id)

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def provision_admin(self, email: str, password: str, first_name: str, last_name: str) -> Account:
        """Create a verified ADMIN account. Used by `main.py create-admin` only.

        This is the one path that creates an account without an OTP round
        trip -- there is no administrator yet to grant the role otherwise.
        """
        account = Account(
            email=normalize_email(email),
            hashed_password=self._hash_new_password(password),
            first_name=first_name,
            last_name=last_name,
            terms_accepted=True,
            role=Role.ADMIN.value,
            status=AccountStatus.ACTIVE.value,
            is_email_verified=True,
        )
        try:
            account_id = self._store.create_account(account)
        except IntegrityError as exc:
            raise AccountExistsError() from exc
        logger.info("Provisioned admin account %s", account_id)
        return self._require(account_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, account_id: int) -> Account:
        account = self._store.get_by_id(account_id)
        if account is None:
            raise AccountNotFoundError()
        return account

    def _issue(self, account: Account) -> AuthResult:
        return AuthResult(
            token=self._tokens.issue(account, now=self._clock()),
            account=account,
            expires_in=self._tokens.expire_seconds,
        )

    def _reissue_otp(self, account: Account) -> None:
        challenge = issue_otp(now=self._clock(), lifetime_seconds=self._otp_lifetime)
        if not self._store.set_otp(account.id, challenge.code, challenge.expires_at):
            self._raise_for_lost_race(account.id)
        self._deliver_otp(account, challenge.code)

    def _deliver_otp(self, account: Account, code: str) -> None:
        minutes = max(1, self._otp_lifetime // 60)
        subject, text_body, html_body = otp_email(account.first_name, code, minutes)
        self._mailer.send(account.email, subject, text_body, html_body)

    def _hash_new_password(self, password: str) -> str:
        if not password_fits(password):
            raise ValidationFailedError(
                "Password is too long.",
                details={
                    "errors": [
                        {
                            "field": "body",
                            "message": f"Password must not exceed {PASSWORD_MAX_BYTES} bytes",
                            "path": "password",
                        }
                    ]
                },
            )
        return hash_password(password, rounds=self._rounds)

    def _raise_for_lost_race(self, account_id: int) -> None:
        """A conditional write matched nothing: the account was verified or removed meanwhile."""
        if self._store.get_by_id(account_id) is None:
            raise AccountNotFoundError()
        raise AlreadyVerifiedError()

    def _apply(self, current: Account, fields: dict[str, Any]) -> Account:
        if not fields:
            return current
        if "address" in fields:
            incoming = {k: v for k, v in (fields["address"] or {}).items() if v is not None}
            fields["address"] = {**current.address, **incoming}
        self._store.update_account(current.id, **fields)
        return self._require(current.id)


def _pick(source: dict[str, Any], allowed: frozenset[str]) -> dict[str, Any]:
    return {k: v for k, v in source.items() if k in allowed}


def _enum_value(enum_cls, value: Any, field_name: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError as exc:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationFailedError(
            f"Invalid {field_name}.",
            details={"errors": [{"field": "body", "message": f"{field_name} must be one of: {allowed}", "path": field_name}]},
        ) from exc
