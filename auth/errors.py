"""
auth/errors.py -- Categorized failures raised by the identity core.

Every operation in auth/ either completes or raises exactly one AuthError
subclass. Each class carries a stable machine-readable code and the HTTP
status the API layer renders it with, so api/main.py needs a single handler
instead of per-route try/except ladders.

InvalidCredentials and AccountDisabled share a status (401) so that, on the
wire, a disabled account is only distinguishable by someone who already
supplied the right password.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. Subclasses override code, status_code and message."""

    code = "auth_error"
    status_code = 400
    message = "Request could not be completed."

    def __init__(
        self,
        message: str | None = None,
        *,
        detail: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class ValidationFailed(AuthError):
    """Malformed input or a password that violates the policy.

    failed_rules lists the individual policy rules that did not hold so the
    caller can report them one by one.
    """

    code = "validation_failed"
    status_code = 400
    message = "Validation failed."

    def __init__(
        self,
        message: str | None = None,
        *,
        failed_rules: list[str] | None = None,
        detail: str | None = None,
    ) -> None:
        self.failed_rules = list(failed_rules or [])
        if detail is None and self.failed_rules:
            detail = ", ".join(self.failed_rules)
        super().__init__(message, detail=detail)


class Conflict(AuthError):
    code = "conflict"
    status_code = 409
    message = "A user with that email already exists."


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    status_code = 401
    message = "Invalid email or password."


class AccountDisabled(AuthError):
    code = "account_disabled"
    status_code = 401
    message = "This account has been disabled."


class MissingCredentials(AuthError):
    code = "missing_credentials"
    status_code = 401
    message = "Authentication required."


class TokenInvalid(AuthError):
    code = "token_invalid"
    status_code = 401
    message = "Invalid token."


class TokenExpired(AuthError):
    code = "token_expired"
    status_code = 401
    message = "Token has expired."


class MfaInvalidCode(AuthError):
    code = "mfa_invalid_code"
    status_code = 401
    message = "Invalid verification code."


class Forbidden(AuthError):
    code = "forbidden"
    status_code = 403
    message = "You do not have permission to perform this action."


class NotFound(AuthError):
    code = "not_found"
    status_code = 404
    message = "Not found."


class RateLimited(AuthError):
    code = "rate_limited"
    status_code = 429
    message = "Too many requests."

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after
