"""
Outgoing mail through each workshop's own SMTP server
"""

import html
import logging
import smtplib
import ssl
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from . import config
from .models import WorkshopConfig

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """SMTP transport failure (connection, auth or rejected recipients)"""


def _get_fernet() -> Optional[Fernet]:
    return Fernet(config.SMTP_ENCRYPTION_KEY) if config.SMTP_ENCRYPTION_KEY else None


def encrypt_password(password: str) -> str:
    """Encrypt SMTP password for storage"""
    fernet = _get_fernet()
    if not fernet:
        logger.warning("SMTP_ENCRYPTION_KEY not set, storing password in plain text")
        return password
    return fernet.encrypt(password.encode()).decode()


def decrypt_password(encrypted: Optional[str]) -> str:
    """Decrypt SMTP password for use"""
    fernet = _get_fernet()
    if not fernet or not encrypted:
        return encrypted or ""
    try:
        return fernet.decrypt(encrypted.encode()).decode()
    except InvalidToken:
        return encrypted  # Stored before encryption was enabled


def is_smtp_configured(workshop_config: Optional[WorkshopConfig]) -> bool:
    return bool(
        workshop_config
        and workshop_config.smtp_host
        and workshop_config.smtp_user
        and workshop_config.smtp_password
    )


def _connect(host: str, port: int, use_tls: bool, timeout: int) -> smtplib.SMTP:
    if port == 465:
        context = ssl.create_default_context()
        return smtplib.SMTP_SSL(host, port, context=context, timeout=timeout)

    server = smtplib.SMTP(host, port, timeout=timeout)
    if use_tls:
        context = ssl.create_default_context()
        server.starttls(context=context)
    return server


def send_email(
    workshop_config: Optional[WorkshopConfig],
    to: Union[str, list[str]],
    subject: str,
    text: str,
    attachments: Optional[list[dict]] = None,
    html_body: Optional[str] = None,
) -> bool:
    """
    Send an email with the workshop's SMTP settings.

    Attachments are dicts with ``filename`` and ``content`` (bytes).
    Returns False when SMTP is not configured; raises EmailDeliveryError when
    the server refuses or cannot be reached.
    """
    if not is_smtp_configured(workshop_config):
        workshop_name = workshop_config.workshop_name if workshop_config else "unknown"
        logger.warning(f"⚠️ SMTP not configured for {workshop_name}. Email to {to} skipped.")
        return False

    recipients = [to] if isinstance(to, str) else list(to)
    sender = workshop_config.smtp_user
    port = workshop_config.smtp_port or 587
    use_tls = workshop_config.smtp_use_tls if workshop_config.smtp_use_tls is not None else True

    msg = MIMEMultipart("mixed")
    msg["Subject"] = subject
    msg["From"] = formataddr((workshop_config.workshop_name or "", sender))
    msg["To"] = ", ".join(recipients)

    body = MIMEMultipart("alternative")
    body.attach(MIMEText(text, "plain", "utf-8"))
    body.attach(
        MIMEText(html_body or html.escape(text).replace("\n", "<br>"), "html", "utf-8")
    )
    msg.attach(body)

    for attachment in attachments or []:
        part = MIMEBase("application", "octet-stream")
        part.set_payload(attachment["content"])
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", f'attachment; filename="{attachment["filename"]}"')
        msg.attach(part)

    try:
        server = _connect(
            workshop_config.smtp_host, port, use_tls, config.SMTP_TIMEOUT_SECONDS
        )
        try:
            server.login(sender, decrypt_password(workshop_config.smtp_password))
            server.sendmail(sender, recipients, msg.as_string())
        finally:
            server.quit()
    except (smtplib.SMTPException, ssl.SSLError, OSError) as e:
        logger.error(f"❌ SMTP send via {workshop_config.smtp_host} failed: {e}")
        raise EmailDeliveryError(str(e)) from e

    logger.info(f"✅ Email sent to {', '.join(recipients)}: {subject}")
    return True


def test_smtp_connection(
    host: str,
    port: int,
    username: str,
    password: str,
    use_tls: bool = True,
    send_to: Optional[str] = None,
) -> tuple[bool, str]:
    """
    Test SMTP connection by attempting to connect and authenticate.
    Sends a short test message when send_to is given.
    Returns (success, message)
    """
    try:
        server = _connect(host, port, use_tls, timeout=10)
        try:
            server.login(username, password)
            if send_to:
                msg = MIMEText("La configuración SMTP de MechHub funciona correctamente.", "plain", "utf-8")
                msg["Subject"] = "MechHub SMTP Test"
                msg["From"] = username
                msg["To"] = send_to
                server.sendmail(username, [send_to], msg.as_string())
        finally:
            server.quit()
        return True, "SMTP connection successful"
    except smtplib.SMTPAuthenticationError as e:
        logger.error(f"SMTP auth error: {e}")
        return False, "Authentication failed. Check username and password."
    except smtplib.SMTPConnectError as e:
        logger.error(f"SMTP connect error: {e}")
        return False, f"Could not connect to {host}:{port}. Check host and port."
    except smtplib.SMTPServerDisconnected as e:
        logger.error(f"SMTP disconnected: {e}")
        return False, "Server disconnected unexpectedly. Try a different port."
    except ssl.SSLError as e:
        logger.error(f"SSL error: {e}")
        return False, "SSL/TLS error. Try toggling TLS setting or use port 465."
    except TimeoutError:
        logger.error("SMTP timeout")
        return False, "Connection timed out. Check host and port."
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"SMTP error: {e}")
        return False, f"Connection failed: {str(e)}"
