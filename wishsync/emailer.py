# wishsync/emailer.py
import os
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Iterable, List

from .logger import get_logger

logger = get_logger(__name__)

EMAIL_FROM = os.getenv("EMAIL_FROM", "").strip()
SMTP_HOST = os.getenv("SMTP_HOST", "").strip()
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "").strip()
SMTP_PASS = os.getenv("SMTP_PASS", "").strip()
SMTP_USE_SSL = os.getenv("SMTP_USE_SSL", "false").lower() == "true"
SMTP_TIMEOUT = int(os.getenv("SMTP_TIMEOUT", "30"))

FALLBACK_TEXT = "An HTML capable e-mail client is required to view this invitation."


def is_configured() -> bool:
    return bool(EMAIL_FROM and SMTP_HOST)


def _unique(recipients: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for r in recipients:
        r = (r or "").strip()
        if r and r.lower() not in seen:
            seen.add(r.lower())
            result.append(r)
    return result


def _build_message(subject: str, html_body: str, text_body: str | None, recipients: List[str]) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["From"] = EMAIL_FROM
    msg["To"] = ", ".join(recipients)
    msg["Subject"] = subject
    # multipart/alternative: least preferred part first
    msg.attach(MIMEText(text_body or FALLBACK_TEXT, "plain", "utf-8"))
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    return msg


def _open_server():
    if SMTP_USE_SSL:
        return smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT, timeout=SMTP_TIMEOUT)
    return smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=SMTP_TIMEOUT)


def send_email(
    subject: str,
    html_body: str,
    text_body: str | None,
    recipients: list[str],
) -> bool:
    """Send a multipart e-mail. Returns False when sending was skipped."""
    recipients = _unique(recipients)
    if not recipients:
        logger.warning("No recipients provided for email '%s'; skipping send.", subject)
        return False

    if not is_configured():
        logger.warning(
            "Email not fully configured (EMAIL_FROM/SMTP_HOST); skipping email: %s",
            subject,
        )
        return False

    msg = _build_message(subject, html_body, text_body, recipients)
    server = _open_server()
    try:
        if not SMTP_USE_SSL:
            server.starttls()
        if SMTP_USER:
            server.login(SMTP_USER, SMTP_PASS)
        server.sendmail(EMAIL_FROM, recipients, msg.as_string())
        logger.info("Email sent to %s: %s", recipients, subject)
    finally:
        try:
            server.quit()
        except smtplib.SMTPException:
            pass
    return True
