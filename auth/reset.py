"""
auth/reset.py -- Password-reset token lifecycle.

request(email)
    Unknown email: returns normally, creates nothing, sends nothing. The
    caller answers {"ok": true} either way, so the endpoint is not an
    account-enumeration oracle.
    Known email: 32 random bytes, URL-safe encoded, stored with a one-hour
    expiry and mailed inside a reset link. The link is never logged.

confirm(token, new_password)
    absent token            -> TokenInvalid
    expired token           -> deleted, then TokenExpired
    policy violation        -> ValidationFailed (token kept, user may retry)
    otherwise               -> token deleted, new hash stored

Single use is decided by ResetTokenStore.consume(): of two concurrent
confirmations with the same token exactly one deletes the row; the other
sees TokenInvalid and never touches the password.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from auth.errors import TokenExpired, TokenInvalid
from auth.mailer import Mailer
from auth.models import PasswordResetToken
from auth.policy import PasswordPolicy
from auth.store import ResetTokenStore, UserStore
from auth.tokens import PasswordHasher

logger = logging.getLogger("lablive.auth.reset")

TOKEN_BYTES = 32


class PasswordResetLifecycle:
    def __init__(
        self,
        users: UserStore,
        tokens: ResetTokenStore,
        hasher: PasswordHasher,
        policy: PasswordPolicy,
        mailer: Mailer,
        frontend_url: str,
        ttl_seconds: int = 3600,
    ) -> None:
        self._users = users
        self._tokens = tokens
        self._hasher = hasher
        self._policy = policy
        self._mailer = mailer
        self._frontend_url = frontend_url.rstrip("/")
        self.ttl_seconds = ttl_seconds

    def reset_link(self, token: str) -> str:
        return f"{self._frontend_url}/reset-password?{urlencode({'token': token})}"

    def request(self, email: str) -> None:
        user = self._users.get_by_email(email)
        if user is None:
            logger.info("Password reset requested for an unknown email")
            return

        now = datetime.now(timezone.utc)
        token = secrets.token_urlsafe(TOKEN_BYTES)
        self._tokens.create(
            PasswordResetToken(
                token=token,
                user_id=user.id,
                created_at=now,
                expires_at=now + timedelta(seconds=self.ttl_seconds),
            )
        )
        self._mailer.send_password_reset(user.email, self.reset_link(token))
        logger.info("Password reset token issued for user %s", user.id)

    def confirm(self, token: str, new_password: str, now: datetime | None = None) -> None:
        record = self._tokens.get(token)
        if record is None:
            raise TokenInvalid("Invalid or expired reset token.")
        if record.is_expired(now):
            self._tokens.consume(token)
            raise TokenExpired("Reset token has expired.")

        self._policy.enforce(new_password)
        hashed = self._hasher.hash(new_password)
        if not self._tokens.consume(token):
            raise TokenInvalid("Invalid or expired reset token.")
        if not self._users.set_password(record.user_id, hashed):
            raise TokenInvalid("Invalid or expired reset token.")
        logger.info("Password reset completed for user %s", record.user_id)
