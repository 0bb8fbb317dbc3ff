# File: src/rolemailer/infrastructure/notify/email.py
"""
SMTP transport for rendered messages.

Sends HTML mail with the event's from address as Reply-To. Connection-level
failures are retried a bounded number of times; recipient refusals are not.
"""

import logging
import smtplib
import time
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Optional

from rolemailer.config import settings
from rolemailer.domain.errors import TransportError

log = logging.getLogger(__name__)


class SmtpTransport:
    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: Optional[bool] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        sender: Optional[str] = None,
    ):
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.username = username if username is not None else settings.SMTP_USERNAME
        self.password = password if password is not None else settings.SMTP_PASSWORD
        self.use_tls = settings.SMTP_USE_TLS if use_tls is None else use_tls
        self.timeout = timeout or settings.SMTP_TIMEOUT_SECONDS
        self.retries = settings.SMTP_RETRIES if retries is None else retries
        self.sender = sender

    def build_message(self, recipient: str, subject: str, body: str, reply_to: Optional[str] = None) -> EmailMessage:
        message = EmailMessage()
        message["To"] = recipient
        message["Subject"] = subject
        message["From"] = self.sender or reply_to or formataddr(("", f"noreply@{self.host}"))
        if reply_to:
            message["Reply-To"] = f"<{reply_to}>"
        message["Message-ID"] = make_msgid()
        message.set_content(body, subtype="html", charset="utf-8")
        return message

    def send(self, recipient: str, subject: str, body: str, reply_to: Optional[str] = None) -> None:
        message = self.build_message(recipient, subject, body, reply_to)
        attempt = 0
        while True:
            try:
                self._deliver(message)
                return
            except smtplib.SMTPRecipientsRefused as e:
                raise TransportError(recipient, f"recipient refused: {e.recipients}") from e
            except OSError as e:
                # SMTPException is an OSError too; only connection trouble is retried.
                retryable = isinstance(e, (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError)) \
                    or not isinstance(e, smtplib.SMTPException)
                if retryable and attempt < self.retries:
                    attempt += 1
                    log.warning(f"SMTP delivery to {recipient} failed ({e}); retry {attempt}/{self.retries}.")
                    time.sleep(min(2 ** attempt, 10))
                    continue
                raise TransportError(recipient, str(e)) from e

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)
