"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. Dataclasses own domain shape; stores and services do the
work. The two exceptions are MfaState and LoginCode, whose transition helpers
live here because they are what keeps illegal states unrepresentable:

  MfaState  disabled -> pending (pending_secret set)
                     -> enabled (secret set, pending_secret cleared)
            __post_init__ rejects every other combination, e.g. enabled with
            no secret, or a secret on a disabled account.

  LoginCode the transient email one-time code. Independent of MfaState.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Role(str, Enum):
    admin = "admin"
    staff = "staff"
    viewer = "viewer"
    operator = "operator"  # legacy default of early accounts, treated like staff


class MfaStatus(str, Enum):
    disabled = "disabled"
    pending = "pending"
    enabled = "enabled"


@dataclass(frozen=True)
class MfaState:
    """TOTP enrollment state for one account (one shared secret, no devices)."""

    status: MfaStatus = MfaStatus.disabled
    secret: str | None = None
    pending_secret: str | None = None

    def __post_init__(self) -> None:
        if self.status is MfaStatus.disabled and (self.secret or self.pending_secret):
            raise ValueError("disabled MFA state carries no secrets")
        if self.status is MfaStatus.pending and (self.secret or not self.pending_secret):
            raise ValueError("pending MFA state requires pending_secret only")
        if self.status is MfaStatus.enabled and (not self.secret or self.pending_secret):
            raise ValueError("enabled MFA state requires secret only")

    @property
    def enabled(self) -> bool:
        return self.status is MfaStatus.enabled

    def begin(self, pending_secret: str) -> MfaState:
        if self.enabled:
            raise ValueError("MFA is already enabled")
        return MfaState(status=MfaStatus.pending, pending_secret=pending_secret)

    def confirm(self) -> MfaState:
        if self.status is not MfaStatus.pending:
            raise ValueError("no enrollment in progress")
        return MfaState(status=MfaStatus.enabled, secret=self.pending_secret)

    def abandon(self) -> MfaState:
        if self.status is not MfaStatus.pending:
            return self
        return MfaState()


@dataclass(frozen=True)
class LoginCode:
    """Single-use numeric code mailed for passwordless login."""

    code: str
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at


@dataclass
class User:
    """Represents an identity in LabLive.

    email is stored lower-cased; the store normalizes on every write and
    lookup so the UNIQUE index on email is effectively case-insensitive.

    hashed_password is None only for records created outside the normal
    registration path (never for self-registered accounts).
    """

    email: str
    name: str
    role: Role = Role.staff
    id: int | None = None
    hashed_password: str | None = None
    is_active: bool = True
    mfa: MfaState = field(default_factory=MfaState)
    login_code: LoginCode | None = None
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def public(self) -> dict:
        """Fields safe to return over the wire -- never the hash or secrets."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "is_active": self.is_active,
            "mfa_enabled": self.mfa.enabled,
        }


@dataclass(frozen=True)
class Principal:
    """Resolved identity attached to a request after full-token verification."""

    id: int
    role: Role
    email: str


class TokenKind(str, Enum):
    full = "full"
    partial = "partial"


@dataclass(frozen=True)
class TokenClaims:
    """Decoded session token.

    Full tokens carry role and email; partial (MFA-pending) tokens carry only
    the subject and are good for nothing but the MFA step.
    """

    subject: int
    kind: TokenKind
    expires_at: datetime
    role: Role | None = None
    email: str | None = None

    @property
    def mfa_pending(self) -> bool:
        return self.kind is TokenKind.partial

    def principal(self) -> Principal:
        if self.kind is not TokenKind.full or self.role is None or self.email is None:
            raise ValueError("partial tokens do not resolve to a principal")
        return Principal(id=self.subject, role=self.role, email=self.email)


@dataclass
class PasswordResetToken:
    """Capability record for one password reset. Deleted when consumed or expired."""

    token: str
    user_id: int
    expires_at: datetime
    id: int | None = None
    created_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at
