"""Unit tests for session tokens and password hashing in auth/tokens.py.

Covers:
- Full token round-trip yields the principal (id, role, email)
- Partial tokens carry no role and are rejected where a session is required
- Expired tokens -> TokenExpired; other key / algorithm / tampering -> TokenInvalid
- bcrypt hashing, verification and the dummy-hash path (also taken past 72 bytes)
"""

import base64
import json

import pytest
from jose import jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.models import Principal, Role, TokenKind
from auth.tokens import ALGORITHM, PasswordHasher, TokenIssuer

KEY = "k" * 48
OTHER_KEY = "z" * 48


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(KEY, full_ttl_seconds=3600, partial_ttl_seconds=300)


# ---------------------------------------------------------------------------
# Full tokens
# ---------------------------------------------------------------------------


def test_full_token_round_trip(issuer):
    token = issuer.issue_full(7, Role.staff, "alice@example.com")
    assert issuer.verify_full(token) == Principal(id=7, role=Role.staff, email="alice@example.com")


def test_full_token_claims(issuer):
    claims = jwt.get_unverified_claims(issuer.issue_full(3, Role.admin, "a@example.com"))
    assert claims["sub"] == "3"
    assert claims["role"] == "admin"
    assert claims["exp"] - claims["iat"] == 3600
    assert "mfaPending" not in claims


def test_expired_token_raises_token_expired():
    expired = TokenIssuer(KEY, full_ttl_seconds=-10)
    token = expired.issue_full(1, Role.viewer, "v@example.com")
    with pytest.raises(TokenExpired):
        expired.verify(token)


def test_token_signed_with_other_key_is_invalid(issuer):
    token = TokenIssuer(OTHER_KEY).issue_full(1, Role.staff, "s@example.com")
    with pytest.raises(TokenInvalid):
        issuer.verify(token)


def test_token_with_other_algorithm_is_invalid(issuer):
    token = jwt.encode(
        {"sub": "1", "role": "admin", "email": "x@example.com", "typ": "access", "exp": 9999999999},
        KEY,
        algorithm="HS512",
    )
    assert ALGORITHM == "HS256"
    with pytest.raises(TokenInvalid):
        issuer.verify(token)


def test_tampered_payload_is_invalid(issuer):
    header, payload, signature = issuer.issue_full(2, Role.viewer, "v@example.com").split(".")
    claims = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))
    claims["role"] = "admin"
    forged = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    with pytest.raises(TokenInvalid):
        issuer.verify(f"{header}.{forged}.{signature}")


@pytest.mark.parametrize("token", ["", "not-a-token", "a.b.c"])
def test_malformed_token_is_invalid(issuer, token):
    with pytest.raises(TokenInvalid):
        issuer.verify(token)


def test_signed_token_with_unknown_shape_is_invalid(issuer):
    token = jwt.encode({"sub": "1", "exp": 9999999999}, KEY, algorithm=ALGORITHM)
    with pytest.raises(TokenInvalid):
        issuer.verify(token)


# ---------------------------------------------------------------------------
# Partial tokens
# ---------------------------------------------------------------------------


def test_partial_token_carries_only_subject(issuer):
    token = issuer.issue_partial(9)
    claims = issuer.verify(token)
    assert claims.kind is TokenKind.partial
    assert claims.mfa_pending
    assert claims.role is None
    assert "role" not in jwt.get_unverified_claims(token)
    assert issuer.verify_partial(token) == 9


def test_partial_token_is_not_a_session(issuer):
    with pytest.raises(TokenInvalid):
        issuer.verify_full(issuer.issue_partial(9))


def test_full_token_is_not_accepted_as_partial(issuer):
    with pytest.raises(TokenInvalid):
        issuer.verify_partial(issuer.issue_full(9, Role.staff, "s@example.com"))


def test_partial_token_lifetime(issuer):
    claims = jwt.get_unverified_claims(issuer.issue_partial(4))
    assert claims["exp"] - claims["iat"] == 300


def test_issuer_requires_key():
    with pytest.raises(ValueError):
        TokenIssuer("")


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


def test_hash_and_verify(hasher):
    hashed = hasher.hash("Correct-Horse-9-Battery")
    assert hashed != "Correct-Horse-9-Battery"
    assert hashed.startswith("$2b$04$")
    assert hasher.verify("Correct-Horse-9-Battery", hashed)
    assert not hasher.verify("correct-horse-9-battery", hashed)


def test_verify_without_hash_is_false(hasher):
    assert hasher.verify("anything", None) is False


def test_verify_with_unreadable_hash_is_false(hasher):
    assert hasher.verify("anything", "not-a-bcrypt-hash") is False


def test_verify_password_over_72_bytes_is_false(hasher):
    long_password = "Correct-Horse-9-Battery" * 4
    hashed = hasher.hash("Correct-Horse-9-Battery")
    assert hasher.verify(long_password, None) is False
    assert hasher.verify(long_password, hashed) is False


def test_hash_refuses_password_over_72_bytes(hasher):
    with pytest.raises(ValueError):
        hasher.hash("é" * 37)
