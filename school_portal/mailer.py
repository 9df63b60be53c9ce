import logging
import smtplib
from email.mime.text import MIMEText
from email.utils import formataddr

from .config import Settings

logger = logging.getLogger(__name__)


class MailNotConfigured(Exception):
    pass


class MailDispatchError(Exception):
    pass


def _deliver(server, sender: str, recipient: str, body: str) -> str:
    """Run the envelope by hand so the caller gets the server's reply to DATA."""
    server.ehlo_or_helo_if_needed()
    code, resp = server.mail(sender)
    if code != 250:
        server.rset()
        raise MailDispatchError(f"Sender refused: {code} {resp!r}")
    code, resp = server.rcpt(recipient)
    if code not in (250, 251):
        server.rset()
        raise MailDispatchError(f"Recipient refused: {recipient}")
    code, resp = server.data(body)
    if code != 250:
        server.rset()
        raise MailDispatchError(f"Message rejected: {code} {resp!r}")
    if isinstance(resp, bytes):
        resp = resp.decode("utf-8", "replace")
    return f"{code} {resp}"


class SmtpMailer:
    def __init__(self, settings: Settings):
        self.settings = settings

    def send_parent_notice(self, *, recipient_email: str, subject: str | None, message: str | None) -> str:
        """Send a plain-text notice to a parent and return the server's reply."""
        settings = self.settings
        if not settings.mail_configured:
            raise MailNotConfigured("Email not configured")

        msg = MIMEText(message or "", "plain", "utf-8")
        msg["Subject"] = subject or settings.mail_default_subject
        msg["From"] = formataddr((settings.mail_sender_name, settings.smtp_username))
        msg["To"] = recipient_email

        try:
            if settings.smtp_port == 465:
                with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=15) as server:
                    server.login(settings.smtp_username, settings.smtp_password)
                    reply = _deliver(server, settings.smtp_username, recipient_email, msg.as_string())
            else:
                with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as server:
                    server.starttls()
                    server.login(settings.smtp_username, settings.smtp_password)
                    reply = _deliver(server, settings.smtp_username, recipient_email, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(f"Failed to send email to {recipient_email}: {exc}")
            raise MailDispatchError(f"Failed to send email: {exc}") from exc

        logger.info(f"Parent notice sent to {recipient_email}: {reply}")
        return reply
