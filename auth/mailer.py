"""
auth/mailer.py -- Outbound email for password reset links and login codes.

SMTP via the standard library. When SMTP_HOST is not configured the message is
dropped with a warning; unlike a console fallback, nothing secret is written
anywhere -- reset links and codes are capabilities and must never reach logs.

SMTP failures propagate to the caller. The API's generic handler records them
for operators and returns a plain 500.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from core.config import Settings

logger = logging.getLogger("lablive.mail")


class Mailer:
    """SMTP sender for account emails."""

    def __init__(
        self,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        from_email: str = "no-reply@lablive.local",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._smtp_user = smtp_user
        self._smtp_password = smtp_password
        self._from_email = from_email
        self._use_tls = use_tls
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> Mailer:
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            from_email=settings.email_from,
            use_tls=settings.smtp_use_tls,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._smtp_host and self._from_email)

    def send_password_reset(self, to: str, link: str) -> None:
        text = f"""A password reset was requested for your LabLive account.

Open this link within one hour to choose a new password:
{link}

If you didn't request this, you can safely ignore this email.
"""
        html = f"""<p>A password reset was requested for your LabLive account.</p>
<p><a href="{link}">Reset your password</a> (valid for one hour)</p>
<p>If you didn't request this, you can safely ignore this email.</p>
"""
        self._send(to, "Password Reset", text, html)

    def send_login_code(self, to: str, code: str, valid_minutes: int = 5) -> None:
        text = f"Your LabLive sign-in code is: {code}\n\nIt is valid for {valid_minutes} minutes.\n"
        self._send(to, "Your sign-in code", text)

    def _send(self, to: str, subject: str, text: str, html: str | None = None) -> None:
        if not self.is_configured:
            logger.warning("SMTP not configured; '%s' email to user was not delivered", subject)
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._from_email
        msg["To"] = to
        msg.attach(MIMEText(text, "plain"))
        if html is not None:
            msg.attach(MIMEText(html, "html"))

        with smtplib.SMTP(self._smtp_host, self._smtp_port, timeout=self._timeout) as server:
            if self._use_tls:
                server.starttls()
            if self._smtp_user and self._smtp_password:
                server.login(self._smtp_user, self._smtp_password)
            server.sendmail(self._from_email, to, msg.as_string())
        logger.info("Sent '%s' email", subject)
