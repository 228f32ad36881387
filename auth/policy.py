"""
auth/policy.py -- Password policy engine.

A pure predicate over a candidate password. check() returns the names of the
rules that failed (empty list = compliant) so callers can report actionable
errors; enforce() raises ValidationFailed carrying the same list.

Rule names are stable and appear in API error details:
  length, too_long, uppercase, lowercase, digit, symbol

too_long fails when the UTF-8 encoding exceeds bcrypt's 72-byte input limit.

The same PasswordPolicy instance (built from Settings) backs registration,
password reset and the create-admin CLI.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from auth.errors import ValidationFailed
from auth.tokens import BCRYPT_MAX_BYTES
from core.config import Settings

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"[0-9]")
_SYMBOL = re.compile(r"[^A-Za-z0-9]")


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int = 12
    require_upper: bool = True
    require_lower: bool = True
    require_digit: bool = True
    require_symbol: bool = True
    max_bytes: int = BCRYPT_MAX_BYTES

    @classmethod
    def from_settings(cls, settings: Settings) -> PasswordPolicy:
        return cls(
            min_length=settings.password_min_length,
            require_upper=settings.password_require_upper,
            require_lower=settings.password_require_lower,
            require_digit=settings.password_require_digit,
            require_symbol=settings.password_require_symbol,
        )

    def check(self, password: str) -> list[str]:
        """Return the list of failed rule names, in a fixed order."""
        failed: list[str] = []
        if len(password) < self.min_length:
            failed.append("length")
        if len(password.encode("utf-8")) > self.max_bytes:
            failed.append("too_long")
        if self.require_upper and not _UPPER.search(password):
            failed.append("uppercase")
        if self.require_lower and not _LOWER.search(password):
            failed.append("lowercase")
        if self.require_digit and not _DIGIT.search(password):
            failed.append("digit")
        if self.require_symbol and not _SYMBOL.search(password):
            failed.append("symbol")
        return failed

    def enforce(self, password: str) -> None:
        failed = self.check(password)
        if failed:
            raise ValidationFailed(
                f"Password must be at least {self.min_length} characters and include "
                "an uppercase letter, a lowercase letter, a digit and a symbol, "
                f"and fit in {self.max_bytes} bytes.",
                failed_rules=failed,
            )
