"""
auth/tokens.py -- Session tokens and password hashing.

Security design decisions:
  JWT: python-jose with HS256, pinned. decode() is always called with
       algorithms=[HS256], so a token whose header names another algorithm
       (including "none" or an asymmetric one presented with our HMAC key) is
       rejected before its claims are looked at.

       Two token classes, told apart by claim shape:
         full    {sub, role, email, typ="access", iat, exp}   8 hours
         partial {sub, mfaPending=true, typ="mfa", iat, exp}  5 minutes
       A partial token never carries a role, so nothing downstream can mistake
       it for a session.

       Expiry is checked by jose against server time at verification. Expired
       signatures raise TokenExpired; every other failure (bad signature,
       malformed, tampered payload, unknown shape) raises TokenInvalid.

  Passwords: bcrypt with a fixed work factor from Settings.bcrypt_rounds.
       The dummy hash enables timing equalization in the login path so
       response time does not reveal whether an email exists.

  Signing key: process-wide, loaded once from Settings at startup and handed
       to TokenIssuer by the application lifespan.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.models import Principal, Role, TokenClaims, TokenKind
from core.config import Settings

logger = logging.getLogger("lablive.auth")

ALGORITHM = "HS256"

# bcrypt ignores or rejects input past this many bytes.
BCRYPT_MAX_BYTES = 72

_TYP_FULL = "access"
_TYP_PARTIAL = "mfa"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


class PasswordHasher:
    """bcrypt hashing with a fixed cost factor.

    bcrypt reads at most BCRYPT_MAX_BYTES of input. PasswordPolicy rejects
    longer passwords before anything is hashed, so no stored hash belongs to
    one; verify() answers False for them at the cost of any other miss.
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Computed once so the first failed login is not measurably slower
        # than later ones.
        self._dummy_hash = self.hash("lablive_timing_dummy")

    def hash(self, plain: str) -> str:
        secret = plain.encode("utf-8")
        if len(secret) > BCRYPT_MAX_BYTES:
            raise ValueError(f"password exceeds {BCRYPT_MAX_BYTES} bytes")
        return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if plain matches hashed.

        A missing hash, or a password too long to have been hashed, still
        costs one bcrypt comparison against the dummy hash, then returns False.
        """
        secret = plain.encode("utf-8")
        if not hashed or len(secret) > BCRYPT_MAX_BYTES:
            bcrypt.checkpw(secret[:BCRYPT_MAX_BYTES], self._dummy_hash.encode("utf-8"))
            return False
        try:
            return bcrypt.checkpw(secret, hashed.encode("utf-8"))
        except ValueError:
            # Stored value is not a bcrypt hash.
            logger.error("Unreadable password hash encountered")
            return False


# ---------------------------------------------------------------------------
# JWT issue / verify
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Signs and verifies full and partial session tokens.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        token = issuer.issue_full(user.id, user.role, user.email)
        principal = issuer.verify_full(token)
    """

    def __init__(self, secret_key: str, full_ttl_seconds: int = 8 * 3600, partial_ttl_seconds: int = 300) -> None:
        if not secret_key:
            raise ValueError("TokenIssuer requires a signing key")
        self._secret_key = secret_key
        self.full_ttl_seconds = full_ttl_seconds
        self.partial_ttl_seconds = partial_ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenIssuer:
        return cls(
            settings.secret_key,
            full_ttl_seconds=settings.session_token_ttl_seconds,
            partial_ttl_seconds=settings.mfa_token_ttl_seconds,
        )

    def issue_full(self, user_id: int, role: Role, email: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "role": Role(role).value,
            "email": email,
            "typ": _TYP_FULL,
            "iat": now,
            "exp": now + timedelta(seconds=self.full_ttl_seconds),
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def issue_partial(self, user_id: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "mfaPending": True,
            "typ": _TYP_PARTIAL,
            "iat": now,
            "exp": now + timedelta(seconds=self.partial_ttl_seconds),
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """Decode and verify a token of either class.

        Raises TokenExpired or TokenInvalid. Never returns a partially
        validated result.
        """
        if not token:
            raise TokenInvalid()
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            raise TokenInvalid() from exc
        return _claims_from_payload(payload)

    def verify_full(self, token: str) -> Principal:
        """Verify a token and require the full (session) class."""
        claims = self.verify(token)
        if claims.mfa_pending:
            raise TokenInvalid("MFA verification is required before using this token.")
        return claims.principal()

    def verify_partial(self, token: str) -> int:
        """Verify a token and require the partial (MFA-pending) class. Returns the user id."""
        claims = self.verify(token)
        if not claims.mfa_pending:
            raise TokenInvalid("An MFA-pending token is required for this step.")
        return claims.subject


def _claims_from_payload(payload: dict) -> TokenClaims:
    try:
        subject = int(payload["sub"])
        expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        typ = payload.get("typ")
        if typ == _TYP_PARTIAL and payload.get("mfaPending") is True and "role" not in payload:
            return TokenClaims(subject=subject, kind=TokenKind.partial, expires_at=expires_at)
        if typ == _TYP_FULL and "mfaPending" not in payload:
            return TokenClaims(
                subject=subject,
                kind=TokenKind.full,
                expires_at=expires_at,
                role=Role(payload["role"]),
                email=str(payload["email"]),
            )
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalid() from exc
    raise TokenInvalid()
