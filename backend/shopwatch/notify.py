import os
import smtplib
from email.message import EmailMessage

import requests

from . import errors

EMAIL_OUTBOX: list[tuple[str, str, str]] = []
SMS_OUTBOX: list[tuple[str, str]] = []

TRANSPORT_TIMEOUT_SECONDS = float(os.getenv("TRANSPORT_TIMEOUT_SECONDS", "10"))


class TransportNotConfigured(RuntimeError):
    """Raised when a channel has no provider configured."""


def send_email(to_email: str, subject: str, message: str):
    if os.getenv("TESTING") == "1":
        EMAIL_OUTBOX.append((to_email, subject, message))
        return
    server = os.getenv("SMTP_SERVER")
    if not server:
        raise TransportNotConfigured("SMTP_SERVER is not set")
    from_addr = os.getenv("EMAIL_FROM", "noreply@example.com")
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_email
    msg.set_content(message)
    try:
        with smtplib.SMTP(server, timeout=TRANSPORT_TIMEOUT_SECONDS) as s:
            s.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        raise errors.TransientError(f"email delivery failed: {exc}") from exc


def send_sms(to_number: str, message: str):
    if os.getenv("TESTING") == "1":
        SMS_OUTBOX.append((to_number, message))
        return
    provider = os.getenv("SMS_PROVIDER_URL")
    if not provider:
        raise TransportNotConfigured("SMS_PROVIDER_URL is not set")
    headers = {}
    api_key = os.getenv("SMS_PROVIDER_KEY")
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    try:
        resp = requests.post(
            provider,
            json={"to": to_number, "message": message},
            headers=headers,
            timeout=TRANSPORT_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise errors.TransientError(f"sms delivery failed: {exc}") from exc
