"""
Small SMTP helpers for account emails.
"""
from __future__ import annotations

import smtplib
from email.mime.text import MIMEText
from typing import Optional

from core.config import Settings


def _effective_from(email_from: Optional[str], email_user: Optional[str], smtp_server: str) -> str:
    if "gmail" in (smtp_server or "").lower() and email_user:
        return email_user
    return email_from or email_user or "no-reply@pozi.com"


def send_text_email(settings: Settings, to_email: str, subject: str, body: str) -> None:
    if not (settings.email_user and settings.email_password):
        raise RuntimeError("Email credentials not configured. Set EMAIL_USER and EMAIL_PASSWORD.")

    msg = MIMEText(body)
    msg["Subject"] = subject
    msg["From"] = _effective_from(settings.email_from, settings.email_user, settings.smtp_server)
    msg["To"] = to_email

    with smtplib.SMTP(settings.smtp_server, settings.smtp_port) as server:
        server.starttls()
        server.login(settings.email_user, settings.email_password)
        server.sendmail(msg["From"], [to_email], msg.as_string())


def send_verification_email(settings: Settings, to_email: str, first_name: Optional[str], verify_link: str) -> None:
    hours = max(1, settings.token_expiry_minutes // 60)
    send_text_email(
        settings,
        to_email=to_email,
        subject="Verify your email - Pozi Student Living",
        body=(
            f"Hi {first_name or 'there'},\n\n"
            f"Please verify your email by clicking this link:\n\n{verify_link}\n\n"
            f"This link expires in {hours} hours."
        ),
    )


def send_password_reset_email(settings: Settings, to_email: str, first_name: Optional[str], reset_link: str) -> None:
    send_text_email(
        settings,
        to_email=to_email,
        subject="Reset your password - Pozi Student Living",
        body=(
            f"Hi {first_name or 'there'},\n\n"
            f"We received a request to reset your password. Use this link to choose a new one:\n\n{reset_link}\n\n"
            f"This link expires in {settings.reset_token_expiry_minutes} minutes. "
            "If you did not ask for a reset, you can ignore this email."
        ),
    )
