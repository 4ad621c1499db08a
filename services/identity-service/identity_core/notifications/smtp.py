"""SMTP mail transport for account notifications."""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from ..config import Settings

logger = logging.getLogger(__name__)


class SmtpDispatcher:
    """Sends one message per call over a fresh SMTP connection."""

    def __init__(self, settings: Settings) -> None:
        self._host = settings.smtp_host
        self._port = settings.smtp_port
        self._user = settings.smtp_user
        self._password = settings.smtp_password
        self._from = settings.smtp_from or settings.smtp_user
        self._display_name = settings.email_application_name
        self._use_tls = settings.smtp_use_tls
        self._timeout = settings.dispatch_timeout_seconds

    def is_configured(self) -> bool:
        return bool(self._host and self._from)

    def send(self, to_address: str, subject: str, html_body: str, is_html: bool = True) -> bool:
        """Deliver a message, returning ``True`` once the server accepted it.

        Transport errors propagate to the caller, which treats them as a
        failed delivery.
        """
        if not self.is_configured():
            logger.warning("smtp not configured, dropping mail to %s: %s", to_address, subject)
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self._display_name, self._from))
        msg["To"] = to_address
        msg.attach(MIMEText(html_body, "html" if is_html else "plain"))

        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            if self._use_tls:
                server.starttls()
            if self._user:
                server.login(self._user, self._password)
            server.sendmail(self._from, [to_address], msg.as_string())

        logger.info("mail sent to %s: %s", to_address, subject)
        return True
