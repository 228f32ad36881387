"""
auth/mfa.py -- TOTP multi-factor enrollment and verification.

Implements RFC 6238 TOTP (30-second steps, 6 digits) with pyotp, compatible
with Google Authenticator, Authy and other authenticator apps. Enrollment
codes are rendered as PNG data URIs with qrcode.

State machine per user (see auth.models.MfaState):

    disabled --begin_setup--> pending --confirm_setup--> enabled
                 pending --abandon_setup--> disabled
                 pending --begin_setup--> pending (fresh secret)

enabled is terminal: no disable path exists yet, and begin_setup on an
enabled account raises Conflict instead of silently replacing the secret.

Codes are accepted within +/- valid_window steps of the verification time
(default 2 steps, roughly 60 seconds of clock skew either way).

The confirmed secret is never returned by any method after enrollment.
"""

from __future__ import annotations

import base64
import io
import logging
import string
from dataclasses import dataclass
from datetime import datetime

import pyotp
import qrcode

from auth.errors import Conflict, MfaInvalidCode, ValidationFailed
from auth.models import MfaStatus
from auth.store import UserStore

logger = logging.getLogger("lablive.auth.mfa")

CODE_DIGITS = 6


@dataclass(frozen=True)
class Enrollment:
    """Returned once, by begin_setup(), for rendering to the enrolling user."""

    secret: str
    uri: str
    qr_code: str  # data:image/png;base64,...


def generate_qr_code_base64(uri: str) -> str:
    """Render an otpauth:// URI as a PNG data URI for embedding in HTML."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(uri)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    b64 = base64.b64encode(buffer.getvalue()).decode("utf-8")
    return f"data:image/png;base64,{b64}"


def normalize_code(code: str) -> str:
    """Keep only ASCII digits, dropping the separators users type between groups."""
    return "".join(ch for ch in str(code) if ch in string.digits)


class MfaEngine:
    """TOTP enrollment and challenge against the secrets held in UserStore."""

    def __init__(self, store: UserStore, issuer: str = "LabLive", valid_window: int = 2) -> None:
        self._store = store
        self.issuer = issuer
        self.valid_window = valid_window

    def verify_code(self, secret: str, code: str, at: datetime | int | None = None) -> bool:
        """Check a code against secret at time at (default: now)."""
        code = normalize_code(code)
        if not secret or len(code) != CODE_DIGITS:
            return False
        return pyotp.TOTP(secret).verify(code, for_time=at, valid_window=self.valid_window)

    def begin_setup(self, user_id: int) -> Enrollment:
        """Start (or restart) enrollment with a fresh secret.

        Raises NotFound if the user does not exist, Conflict if MFA is
        already enabled.
        """
        user = self._store.require(user_id)
        if user.mfa.enabled:
            raise Conflict("MFA is already enabled for this account.")

        secret = pyotp.random_base32()
        self._store.save_mfa(user_id, user.mfa.begin(secret))
        uri = pyotp.TOTP(secret).provisioning_uri(name=user.email, issuer_name=self.issuer)
        logger.info("MFA enrollment started for user %s", user_id)
        return Enrollment(secret=secret, uri=uri, qr_code=generate_qr_code_base64(uri))

    def confirm_setup(self, user_id: int, code: str, at: datetime | int | None = None) -> None:
        """Promote the pending secret to the active one if code matches it.

        On a wrong code nothing changes and MfaInvalidCode is raised.
        """
        user = self._store.require(user_id)
        if user.mfa.status is not MfaStatus.pending:
            raise ValidationFailed("No MFA enrollment is in progress.")

        pending = user.mfa.pending_secret
        if not self.verify_code(pending, code, at):
            raise MfaInvalidCode()
        # Enrollment restarted since we read it: the code matched a stale secret.
        if not self._store.save_mfa(user_id, user.mfa.confirm(), expected_pending=pending):
            raise MfaInvalidCode()
        logger.info("MFA enabled for user %s", user_id)

    def abandon_setup(self, user_id: int) -> None:
        user = self._store.require(user_id)
        if user.mfa.status is MfaStatus.pending:
            self._store.save_mfa(user_id, user.mfa.abandon())
            logger.info("MFA enrollment abandoned for user %s", user_id)

    def challenge(self, user_id: int, code: str, at: datetime | int | None = None) -> None:
        """Verify a login-time code against the enabled secret. Never mutates state."""
        user = self._store.require(user_id)
        if not user.mfa.enabled or not self.verify_code(user.mfa.secret, code, at):
            raise MfaInvalidCode()
