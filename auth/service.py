"""
auth/service.py -- Registration and login orchestration.

AuthService composes the identity components; route handlers call one method
per endpoint and let AuthError subclasses propagate to the API's handler.

Login ordering (uniform error first):
  1. unknown email      -> bcrypt against the dummy hash, InvalidCredentials
  2. wrong password     -> InvalidCredentials
  3. inactive account   -> AccountDisabled (only reachable with the right password)
  4. MFA enabled        -> partial token, no session
  5. otherwise          -> full token, lastLogin stamped

No path issues a full token for an MFA-enabled account without a successful
MfaEngine.challenge().
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from auth.errors import AccountDisabled, Conflict, InvalidCredentials, TokenExpired, TokenInvalid
from auth.mailer import Mailer
from auth.mfa import MfaEngine, normalize_code
from auth.models import LoginCode, Role, User
from auth.policy import PasswordPolicy
from auth.store import UserStore
from auth.tokens import PasswordHasher, TokenIssuer
from core.config import Settings

logger = logging.getLogger("lablive.auth")

LOGIN_CODE_DIGITS = 6


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a primary authentication step.

    Exactly one of token / temp_token is set. mfa_pending=True means the
    caller holds only a partial token and must pass /mfa/challenge.
    """

    user: User
    token: str | None = None
    temp_token: str | None = None

    @property
    def mfa_pending(self) -> bool:
        return self.temp_token is not None


class AuthService:
    def __init__(
        self,
        users: UserStore,
        hasher: PasswordHasher,
        tokens: TokenIssuer,
        policy: PasswordPolicy,
        mfa: MfaEngine,
        mailer: Mailer,
        login_code_ttl_seconds: int = 300,
    ) -> None:
        self.users = users
        self.hasher = hasher
        self.tokens = tokens
        self.policy = policy
        self.mfa = mfa
        self.mailer = mailer
        self.login_code_ttl_seconds = login_code_ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings, users: UserStore, mailer: Mailer | None = None) -> AuthService:
        return cls(
            users=users,
            hasher=PasswordHasher(settings.bcrypt_rounds),
            tokens=TokenIssuer.from_settings(settings),
            policy=PasswordPolicy.from_settings(settings),
            mfa=MfaEngine(users, issuer=settings.mfa_issuer, valid_window=settings.mfa_valid_window),
            mailer=mailer or Mailer.from_settings(settings),
            login_code_ttl_seconds=settings.login_code_ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str, role: Role = Role.staff) -> LoginResult:
        self.policy.enforce(password)
        if self.users.get_by_email(email) is not None:
            raise Conflict()
        hashed = self.hasher.hash(password)
        # create_user() raises Conflict if a concurrent registration won the race.
        user_id = self.users.create_user(User(email=email, name=name, role=role, hashed_password=hashed))
        user = self.users.require(user_id)
        logger.info("Registered user %s (role=%s)", user.id, user.role.value)
        return LoginResult(user=user, token=self.tokens.issue_full(user.id, user.role, user.email))

    def create_admin(self, name: str, email: str, password: str) -> tuple[User, bool]:
        """Bootstrap an admin account. Returns (user, created); existing emails are left untouched."""
        self.policy.enforce(password)
        existing = self.users.get_by_email(email)
        if existing is not None:
            return existing, False
        user_id = self.users.create_user(
            User(email=email, name=name, role=Role.admin, hashed_password=self.hasher.hash(password))
        )
        return self.users.require(user_id), True

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> LoginResult:
        user = self.users.get_by_email(email)
        if user is None:
            self.hasher.verify(password, None)
            logger.info("Failed login for unknown email")
            raise InvalidCredentials()
        if not self.hasher.verify(password, user.hashed_password):
            logger.warning("Failed login for user %s", user.id)
            raise InvalidCredentials()
        if not user.is_active:
            logger.warning("Login attempt on disabled account %s", user.id)
            raise AccountDisabled()
        return self._complete_primary(user)

    def complete_mfa_login(self, temp_token: str, code: str) -> LoginResult:
        user_id = self.tokens.verify_partial(temp_token)
        user = self.users.get_by_id(user_id)
        if user is None:
            raise TokenInvalid()
        if not user.is_active:
            raise AccountDisabled()
        self.mfa.challenge(user_id, code)
        return self._issue_session(user)

    # ------------------------------------------------------------------
    # Email one-time login code
    # ------------------------------------------------------------------

    def request_login_code(self, email: str) -> None:
        user = self.users.get_by_email(email)
        if user is None or not user.is_active:
            return
        code = f"{secrets.randbelow(10**LOGIN_CODE_DIGITS):0{LOGIN_CODE_DIGITS}d}"
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.login_code_ttl_seconds)
        self.users.set_login_code(user.id, LoginCode(code=code, expires_at=expires_at))
        self.mailer.send_login_code(user.email, code, valid_minutes=max(1, self.login_code_ttl_seconds // 60))
        logger.info("Login code issued for user %s", user.id)

    def verify_login_code(self, email: str, code: str) -> LoginResult:
        user = self.users.get_by_email(email)
        if user is None or user.login_code is None:
            raise InvalidCredentials("Invalid or expired code.")
        stored = user.login_code
        if stored.is_expired():
            self.users.set_login_code(user.id, None)
            raise TokenExpired("Sign-in code has expired.")
        if not hmac.compare_digest(stored.code, normalize_code(code)):
            raise InvalidCredentials("Invalid or expired code.")
        if not self.users.consume_login_code(user.id, stored.code):
            raise InvalidCredentials("Invalid or expired code.")
        if not user.is_active:
            raise AccountDisabled()
        return self._complete_primary(user)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _complete_primary(self, user: User) -> LoginResult:
        if user.mfa.enabled:
            logger.info("Primary factor accepted for user %s; MFA pending", user.id)
            return LoginResult(user=user, temp_token=self.tokens.issue_partial(user.id))
        return self._issue_session(user)

    def _issue_session(self, user: User) -> LoginResult:
        self.users.update_last_login(user.id)
        logger.info("User %s logged in", user.id)
        return LoginResult(user=user, token=self.tokens.issue_full(user.id, user.role, user.email))
