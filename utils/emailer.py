import logging
import smtplib
from email.message import EmailMessage

from flask import current_app

from utils.timeutil import isoformat_utc

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, body: str):
    host = current_app.config.get("SMTP_HOST")
    port = current_app.config.get("SMTP_PORT", 587)
    username = current_app.config.get("SMTP_USERNAME")
    password = current_app.config.get("SMTP_PASSWORD")
    from_email = current_app.config.get("SMTP_FROM_EMAIL") or username
    use_tls = current_app.config.get("SMTP_USE_TLS", True)

    if not host or not from_email:
        return False, "Email not configured"

    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(host, port, timeout=10) as server:
            if use_tls:
                server.starttls()
            if username and password:
                server.login(username, password)
            server.send_message(msg)
        return True, None
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("Email to %s failed: %s", to_email, exc)
        return False, str(exc)


def send_lockout_alert(user, ip: str, lockout_ends_at):
    support = current_app.config.get("SUPPORT_EMAIL")
    name = user.full_name or user.email
    body = (
        f"Hello {name},\n\n"
        f"Your account has been temporarily locked after multiple failed login attempts "
        f"from IP address {ip}.\n"
        f"It will be unlocked automatically at {isoformat_utc(lockout_ends_at)} (UTC).\n\n"
        "If this was you, wait for the lockout to expire. "
        f"If it was not, contact {support} immediately.\n"
    )
    return send_email(user.email, "Account locked - security alert", body)
