"""
auth/tokens.py -- Password hashing and JWT bearer token utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (account id), role, iat and exp. Verification returns None on any
       failure -- malformed, badly signed and expired tokens are
       indistinguishable to the caller, and the gate turns None into a 401.
       Verification never touches the account store: the claims are the
       identity for the lifetime of the token.

  Passwords: bcrypt, used directly (no passlib wrapper). The work factor is
       fixed for the process lifetime (Settings.bcrypt_rounds) and embedded
       in each digest, so changing it later does not break existing hashes.
       bcrypt.checkpw compares in constant time.

  No module-level configuration: TokenIssuer receives its secret and lifetime
       from the caller, so tests and the app can run issuers side by side.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt
from jose.utils import base64url_decode, base64url_encode

from auth.models import Account, Identity, Role

logger = logging.getLogger("verifyhub.auth")

ALGORITHM = "HS256"
DEFAULT_BCRYPT_ROUNDS = 10

# bcrypt only reads the first 72 bytes of a password. Longer input is refused,
# never truncated: two passwords sharing a 72-byte prefix must not collide.
PASSWORD_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def password_fits(plain: str) -> bool:
    """True if bcrypt reads every byte of the password."""
    return len(plain.encode("utf-8")) <= PASSWORD_MAX_BYTES


def _encode_password(plain: str) -> bytes:
    encoded = plain.encode("utf-8")
    if len(encoded) > PASSWORD_MAX_BYTES:
        raise ValueError(f"password exceeds {PASSWORD_MAX_BYTES} bytes")
    return encoded


def hash_password(plain: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    """Return a salted bcrypt digest of the given plaintext password.

    Raises ValueError for passwords longer than PASSWORD_MAX_BYTES in UTF-8.
    """
    return bcrypt.hashpw(_encode_password(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt digest.

    A digest that is not a valid bcrypt string, or a password too long to
    have been hashed, yields False rather than an exception; callers treat
    it the same as a wrong password.
    """
    try:
        return bcrypt.checkpw(_encode_password(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _has_canonical_signature(token: str) -> bool:
    """True if the third segment re-encodes to exactly the same base64url text."""
    parts = token.split(".")
    if len(parts) != 3 or not parts[2]:
        return False
    signature = parts[2].encode("ascii", errors="replace")
    try:
        return base64url_encode(base64url_decode(signature)) == signature
    except ValueError:
        return False


class TokenIssuer:
    """Signs and verifies compact HS256 bearer tokens.

    Usage:
        issuer = TokenIssuer(settings.secret_key, settings.token_expire_seconds)
        token = issuer.issue(account)
        identity = issuer.verify(token)   # Identity or None
    """

    def __init__(self, secret_key: str, expire_seconds: int, algorithm: str = ALGORITHM) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.expire_seconds = expire_seconds

    def issue(self, account: Account, now: Optional[datetime] = None) -> str:
        """Encode a signed JWT for the account.

        The lifetime is the issuer's configured expire_seconds; callers cannot
        extend it. `now` exists so tests can mint tokens that are already
        expired.
        """
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(account.id),
            "role": Role(account.role).value,
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=self.expire_seconds),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: str) -> Identity | None:
        """Decode and verify a JWT. Returns the Identity or None on any failure.

        Checks the signature, that exp is in the future, and that sub and role
        are well-formed. The reason for a rejection is logged at DEBUG level
        only; callers get the same None for every kind of bad token.

        The signature segment must be canonical base64url. A lenient decoder
        ignores the padding bits of the final character, so several spellings
        of one signature would otherwise verify.
        """
        if not _has_canonical_signature(token):
            logger.debug("Rejected bearer token: non-canonical signature")
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"require_exp": True, "require_iat": True, "require_sub": True},
            )
            return Identity(
                account_id=int(payload["sub"]),
                role=Role(payload["role"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (JWTError, KeyError, TypeError, ValueError) as exc:
            logger.debug("Rejected bearer token: %s", type(exc).__name__)
            return None
