"""
tests/test_tokens.py -- Unit tests for password hashing and bearer tokens.

Covers:
  - bcrypt digests verify for the right password only, and are salted
  - malformed digests do not raise; passwords over 72 bytes are refused,
    so a shared 72-byte prefix never verifies
  - TokenIssuer round-trip: sub, role, iat and exp come back as an Identity
  - every kind of bad token (tampered anywhere in the signature, wrong key,
    expired, garbage, missing claims, unknown role) yields None
"""

from __future__ import annotations

import string
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.models import Account, Role
from auth.tokens import ALGORITHM, TokenIssuer, hash_password, password_fits, verify_password

SECRET = "unit-test-secret-key-0123456789abcdef"
BASE64URL_ALPHABET = string.ascii_letters + string.digits + "-_"


def _account(**overrides) -> Account:
    defaults = {"email": "grace@example.com", "id": 7, "role": "USER"}
    defaults.update(overrides)
    return Account(**defaults)


class TestPasswordHashing:
    def test_hash_verifies_with_original_password(self) -> None:
        digest = hash_password("correct horse", rounds=4)
        assert verify_password("correct horse", digest)

    def test_wrong_password_rejected(self) -> None:
        digest = hash_password("correct horse", rounds=4)
        assert not verify_password("battery staple", digest)

    def test_digest_is_not_plaintext_and_salted(self) -> None:
        first = hash_password("same-password", rounds=4)
        second = hash_password("same-password", rounds=4)
        assert "same-password" not in first
        assert first != second
        assert first.startswith("$2")

    def test_rounds_embedded_in_digest(self) -> None:
        assert hash_password("pw123456", rounds=5).split("$")[2] == "05"

    def test_malformed_digest_returns_false(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-digest") is False

    def test_password_over_72_bytes_refused(self) -> None:
        """bcrypt reads 72 bytes; longer input is refused rather than truncated."""
        with pytest.raises(ValueError):
            hash_password("x" * 73, rounds=4)
        assert password_fits("x" * 72)
        assert not password_fits("é" * 37)

    def test_shared_72_byte_prefix_does_not_verify(self) -> None:
        digest = hash_password("a" * 72, rounds=4)
        assert verify_password("a" * 72, digest)
        assert verify_password("a" * 72 + "SECRET-TAIL", digest) is False
        assert verify_password("a" * 72 + "totally-different", digest) is False


class TestTokenIssuer:
    def test_round_trip_returns_identity(self) -> None:
        issuer = TokenIssuer(SECRET, 3600)
        identity = issuer.verify(issuer.issue(_account(id=42, role="ADMIN")))
        assert identity is not None
        assert identity.account_id == 42
        assert identity.role is Role.ADMIN

    def test_expiry_matches_configured_lifetime(self) -> None:
        issuer = TokenIssuer(SECRET, 86400)
        identity = issuer.verify(issuer.issue(_account()))
        assert identity is not None
        assert identity.expires_at - identity.issued_at == timedelta(seconds=86400)

    def test_token_has_three_segments(self) -> None:
        token = TokenIssuer(SECRET, 3600).issue(_account())
        assert token.count(".") == 2

    def test_tampered_token_rejected(self) -> None:
        issuer = TokenIssuer(SECRET, 3600)
        header, payload, signature = issuer.issue(_account()).split(".")
        flipped = ("A" if signature[0] != "A" else "B") + signature[1:]
        assert issuer.verify(f"{header}.{payload}.{flipped}") is None

    def test_every_change_to_last_signature_char_rejected(self) -> None:
        """The final character carries unused padding bits; no alternative spelling may verify."""
        issuer = TokenIssuer(SECRET, 3600)
        header, payload, signature = issuer.issue(_account()).split(".")
        accepted = [
            c
            for c in BASE64URL_ALPHABET
            if c != signature[-1] and issuer.verify(f"{header}.{payload}.{signature[:-1]}{c}") is not None
        ]
        assert accepted == []

    def test_untouched_token_still_verifies_after_canonical_check(self) -> None:
        issuer = TokenIssuer(SECRET, 3600)
        for account_id in range(1, 20):
            assert issuer.verify(issuer.issue(_account(id=account_id))) is not None

    def test_payload_tamper_rejected(self) -> None:
        issuer = TokenIssuer(SECRET, 3600)
        header, _, signature = issuer.issue(_account(role="USER")).split(".")
        forged = jwt.encode({"sub": "7", "role": "ADMIN"}, "x" * 32, algorithm=ALGORITHM).split(".")[1]
        assert issuer.verify(f"{header}.{forged}.{signature}") is None

    def test_token_from_other_key_rejected(self) -> None:
        token = TokenIssuer("another-secret-key-0123456789abcdef", 3600).issue(_account())
        assert TokenIssuer(SECRET, 3600).verify(token) is None

    def test_expired_token_rejected(self) -> None:
        issuer = TokenIssuer(SECRET, 3600)
        two_hours_ago = datetime.now(timezone.utc) - timedelta(hours=2)
        assert issuer.verify(issuer.issue(_account(), now=two_hours_ago)) is None

    def test_garbage_rejected(self) -> None:
        issuer = TokenIssuer(SECRET, 3600)
        assert issuer.verify("not.a.jwt") is None
        assert issuer.verify("") is None

    def test_missing_role_claim_rejected(self) -> None:
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "1", "iat": now, "exp": now + timedelta(hours=1)},
            SECRET,
            algorithm=ALGORITHM,
        )
        assert TokenIssuer(SECRET, 3600).verify(token) is None

    def test_unknown_role_rejected(self) -> None:
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "1", "role": "SUPERUSER", "iat": now, "exp": now + timedelta(hours=1)},
            SECRET,
            algorithm=ALGORITHM,
        )
        assert TokenIssuer(SECRET, 3600).verify(token) is None

    def test_missing_exp_rejected(self) -> None:
        now = datetime.now(timezone.utc)
        token = jwt.encode({"sub": "1", "role": "USER", "iat": now}, SECRET, algorithm=ALGORITHM)
        assert TokenIssuer(SECRET, 3600).verify(token) is None
