"""
tests/test_otp.py -- Unit tests for OTP issuing and validation.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from auth.otp import OTP_LENGTH, issue_otp, validate_otp

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestIssueOtp:
    def test_code_is_six_digits_in_range(self) -> None:
        for _ in range(200):
            code = issue_otp(now=NOW).code
            assert len(code) == OTP_LENGTH
            assert code.isdigit()
            assert 100000 <= int(code) <= 999999

    def test_expiry_is_now_plus_lifetime(self) -> None:
        challenge = issue_otp(now=NOW, lifetime_seconds=600)
        assert challenge.expires_at == NOW + timedelta(minutes=10)

    def test_codes_vary(self) -> None:
        assert len({issue_otp(now=NOW).code for _ in range(50)}) > 1


class TestValidateOtp:
    def test_matching_unexpired_code_accepted(self) -> None:
        assert validate_otp("123456", "123456", NOW + timedelta(minutes=5), now=NOW)

    def test_wrong_code_rejected(self) -> None:
        assert not validate_otp("654321", "123456", NOW + timedelta(minutes=5), now=NOW)

    def test_expired_code_rejected(self) -> None:
        assert not validate_otp("123456", "123456", NOW - timedelta(seconds=1), now=NOW)

    def test_code_rejected_at_exact_expiry(self) -> None:
        """Validity requires now strictly before expires_at."""
        assert not validate_otp("123456", "123456", NOW, now=NOW)

    def test_no_outstanding_challenge_rejected(self) -> None:
        assert not validate_otp("123456", None, None, now=NOW)
        assert not validate_otp("123456", "123456", None, now=NOW)
        assert not validate_otp("", "", NOW + timedelta(minutes=5), now=NOW)
