"""
Outbound email

Mailer wraps smtplib. Delivery is always best effort: callers run it after
their writes are committed and a NotificationError never undoes them.
"""
import logging
import smtplib
from email.message import EmailMessage

from config import Settings
from errors import NotificationError

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, to: str, subject: str, body: str) -> None:
        s = self.settings
        if not s.smtp_host:
            # log-only delivery when no SMTP server is configured
            logger.info("SMTP not configured, email to %s not sent. Subject: %s\n%s", to, subject, body)
            return

        message = EmailMessage()
        message["From"] = s.mail_sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=10) as server:
                if s.smtp_use_tls:
                    server.starttls()
                if s.smtp_username and s.smtp_password:
                    server.login(s.smtp_username, s.smtp_password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Could not send email to {to}: {e}") from e
        logger.info("Email sent to %s: %s", to, subject)


def verification_link(settings: Settings, token: str) -> str:
    base = settings.base_url if settings.base_url.endswith("/") else settings.base_url + "/"
    return f"{base}auth/verify/{token}"


def send_verification_email(mailer: Mailer, settings: Settings, email: str, token: str) -> bool:
    """Background task entry point. Returns whether the email went out."""
    body = (
        "Hi there, thank you for creating an account with us. "
        f"Click the link below to verify your email address:\n\n{verification_link(settings, token)}\n"
    )
    try:
        mailer.send(email, "Verify your Marketplace account", body)
    except NotificationError as e:
        logger.warning("Verification email failed: %s", e)
        return False
    return True


def send_status_email(mailer: Mailer, email: str, name: str, order_id: str, status: str) -> None:
    body = (
        f"Hi {name},\n\n"
        f"The status of your order {order_id} is now '{status}'.\n\n"
        "Thank you for shopping with us.\n"
    )
    mailer.send(email, f"Your order {order_id} is now {status}", body)
