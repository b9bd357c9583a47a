"""
auth/mailer.py -- Outbound email over SMTP.

SmtpEmailSender implements the EmailSender port with the standard library
smtplib. Every failure (connection refused, timeout, auth rejected, recipient
refused) is raised as EmailDispatchError so the caller can tell "the code was
stored but not delivered" apart from a storage failure.

The connection timeout bounds how long a request can wait on the mail server.

Message bodies may carry a confirmation code. They are never logged.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from auth.errors import EmailDispatchError

logger = logging.getLogger("identity.mailer")


class SmtpEmailSender:
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, to_email: str, subject: str, body: str) -> None:
        if not self.host:
            raise EmailDispatchError("email delivery is not configured (SMTP_HOST is empty)")

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to_email
        msg.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP delivery via %s:%d failed: %s", self.host, self.port, exc.__class__.__name__)
            raise EmailDispatchError("failed to send email") from exc
        logger.info("Sent '%s' email via %s:%d", subject, self.host, self.port)
