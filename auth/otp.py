"""
auth/otp.py -- One-time passcodes for email verification.

A challenge is a 6-digit decimal string drawn uniformly from 100000-999999
plus an absolute expiry timestamp. Issuing is pure: the caller writes the
challenge onto the account, which overwrites (and so invalidates) any code
issued before it.

The generator uses the secrets module, not random -- codes are credentials.
"""

from __future__ import annotations

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from auth.models import OtpChallenge

OTP_LENGTH = 6
DEFAULT_OTP_LIFETIME_SECONDS = 10 * 60

_OTP_MIN = 10 ** (OTP_LENGTH - 1)
_OTP_SPAN = 9 * _OTP_MIN  # 100000..999999 inclusive


def issue_otp(now: Optional[datetime] = None, lifetime_seconds: int = DEFAULT_OTP_LIFETIME_SECONDS) -> OtpChallenge:
    """Return a new challenge expiring lifetime_seconds after `now`."""
    issued_at = now or datetime.now(timezone.utc)
    code = str(_OTP_MIN + secrets.randbelow(_OTP_SPAN))
    return OtpChallenge(code=code, expires_at=issued_at + timedelta(seconds=lifetime_seconds))


def validate_otp(
    submitted: str,
    stored: Optional[str],
    expires_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> bool:
    """Return True iff submitted equals stored and now is strictly before expires_at.

    Both checks always run. A matching but expired code is a plain failure,
    never a partial success. Validation does not clear anything; that is the
    caller's job once it has acted on a True result.
    """
    if not stored or expires_at is None:
        return False
    current = now or datetime.now(timezone.utc)
    matches = hmac.compare_digest(submitted.encode("utf-8"), stored.encode("utf-8"))
    not_expired = current < expires_at
    return matches and not_expired
