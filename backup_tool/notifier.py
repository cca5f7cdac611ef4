"""
E-mail notifier for backup outcomes.

Messages are plaintext and sent over SMTP with optional STARTTLS and login.
Delivery is fire-and-forget: failures are logged, never raised, so a broken
mail relay cannot change the outcome of a backup run.
"""

import logging
import smtplib
from email.message import EmailMessage
from typing import Sequence

from backup_tool.config import NotifySettings


logger = logging.getLogger(__name__)


class EmailNotifier:
    """Sends notification mails using the [notify] settings."""

    def __init__(self, settings: NotifySettings, timeout: int = 30):
        self.settings = settings
        self.timeout = timeout

    def send(self, recipients: Sequence[str], subject: str, body: str):
        """
        Send a message to recipients. An empty recipient list sends nothing.

        Args:
            recipients: E-mail addresses
            subject: Message subject
            body: Plaintext message body
        """
        to_addrs = [addr.strip() for addr in recipients if addr.strip()]
        if not to_addrs:
            return

        msg = EmailMessage()
        msg['Subject'] = subject
        msg['From'] = self.settings.smtp_from
        msg['To'] = ', '.join(to_addrs)
        msg.set_content(body)

        try:
            with smtplib.SMTP(host=self.settings.smtp_host, port=self.settings.smtp_port,
                              timeout=self.timeout) as smtp:
                if self.settings.smtp_starttls:
                    smtp.starttls()
                if self.settings.smtp_user:
                    smtp.login(self.settings.smtp_user, self.settings.smtp_password)
                smtp.send_message(msg)
            logger.info(f"Notification '{subject}' sent to {len(to_addrs)} recipient(s)")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Can't send notification '{subject}': {e}")
