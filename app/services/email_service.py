from __future__ import annotations

import html
import logging
import os
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from app.core import config
from app.core.features import PLAN_DISPLAY_NAMES

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 10


class EmailDeliveryError(Exception):
    pass


def send_email(to_email: str, subject: str, html_body: str) -> bool:
    """
    Send an HTML email over SMTP (STARTTLS).

    Returns False without sending when SMTP is not configured, which is the
    normal state for local development. Transport failures raise
    EmailDeliveryError; fire-and-forget callers go through SideEffects,
    which logs and drops it.
    """
    smtp_host = os.getenv("SMTP_HOST")
    smtp_port = int(os.getenv("SMTP_PORT", 587))
    smtp_user = os.getenv("SMTP_USERNAME")
    smtp_pass = os.getenv("SMTP_PASSWORD")

    from_name = os.getenv("EMAIL_FROM_NAME", "Eternal Gift")
    from_email = os.getenv("EMAIL_FROM_ADDRESS")

    if not all([smtp_host, smtp_user, smtp_pass, from_email]):
        logger.warning("email_skipped reason=smtp_not_configured subject=%s", subject)
        return False

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to_email

    msg.attach(MIMEText(html_body, "html"))

    try:
        with smtplib.SMTP(smtp_host, smtp_port, timeout=SMTP_TIMEOUT_SECONDS) as server:
            server.starttls()
            server.login(smtp_user, smtp_pass)
            server.sendmail(from_email, to_email, msg.as_string())
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("email_send_failed subject=%s error=%s", subject, exc)
        raise EmailDeliveryError(str(exc)) from exc

    logger.info("email_sent subject=%s", subject)
    return True


# ---------------- TEMPLATES ----------------
def _layout(title: str, body: str, action_label: str | None = None, action_url: str | None = None) -> str:
    button = ""
    if action_label and action_url:
        button = (
            f'<p style="margin:24px 0;"><a href="{html.escape(action_url)}" '
            'style="background:#1A1A1A;color:#fff;padding:12px 24px;border-radius:6px;'
            f'text-decoration:none;">{html.escape(action_label)}</a></p>'
        )
    return (
        '<div style="font-family:Arial,sans-serif;max-width:560px;margin:0 auto;color:#1A1A1A;">'
        f"<h1 style=\"font-size:22px;\">{html.escape(title)}</h1>"
        f"{body}{button}"
        '<p style="font-size:12px;color:#888;">Eternal Gift</p>'
        "</div>"
    )


def _greeting(name: str | None) -> str:
    return f"<p>Hello {html.escape(name or 'there')},</p>"


def send_verification_email(to_email: str, name: str | None, token: str) -> bool:
    url = f"{config.FRONTEND_BASE_URL}/verify-email?token={token}"
    body = (
        _greeting(name)
        + f"<p>Confirm your email address to activate your account. "
        f"The link is valid for {config.VERIFICATION_TOKEN_HOURS} hours.</p>"
    )
    return send_email(to_email, "Verify your email - Eternal Gift", _layout("Verify your email", body, "Verify email", url))


def send_welcome_email(to_email: str, name: str | None) -> bool:
    body = _greeting(name) + "<p>Your email is verified. Pick a plan to start creating gifts.</p>"
    return send_email(
        to_email,
        "Welcome to Eternal Gift",
        _layout("Welcome!", body, "See plans", f"{config.FRONTEND_BASE_URL}/pricing"),
    )


def send_password_reset_email(to_email: str, name: str | None, token: str) -> bool:
    url = f"{config.FRONTEND_BASE_URL}/reset-password?token={token}"
    body = (
        _greeting(name)
        + f"<p>We received a request to reset your password. "
        f"The link expires in {config.RESET_TOKEN_MINUTES} minutes.</p>"
        "<p>If you did not ask for this, ignore this message.</p>"
    )
    return send_email(to_email, "Reset your password - Eternal Gift", _layout("Password reset", body, "Reset password", url))


def send_password_changed_email(to_email: str, name: str | None) -> bool:
    body = (
        _greeting(name)
        + "<p>Your password was just changed. Other devices have been signed out.</p>"
        "<p>If this was not you, reset your password immediately.</p>"
    )
    return send_email(
        to_email,
        "Your password was changed - Eternal Gift",
        _layout("Password changed", body, "Reset password", f"{config.FRONTEND_BASE_URL}/forgot-password"),
    )


def send_security_alert_email(to_email: str, name: str | None, details: str) -> bool:
    body = (
        _greeting(name)
        + "<p>We detected unusual activity on your account:</p>"
        f"<p style=\"background:#FEF3C7;padding:12px;border-radius:6px;\">{html.escape(details)}</p>"
        "<p>If this was you, you can ignore this message. Otherwise change your password.</p>"
    )
    return send_email(
        to_email,
        "Security alert - Eternal Gift",
        _layout("Security alert", body, "Review security settings", f"{config.FRONTEND_BASE_URL}/dashboard/settings"),
    )


def send_account_locked_email(to_email: str, name: str | None, locked_minutes: int) -> bool:
    return send_security_alert_email(
        to_email,
        name,
        f"Too many failed sign-in attempts. Your account is locked for {locked_minutes} minutes.",
    )


def send_new_device_login_email(
    to_email: str,
    name: str | None,
    ip_address: str | None,
    user_agent: str | None,
    when: datetime,
) -> bool:
    return send_security_alert_email(
        to_email,
        name,
        f"New sign-in from {ip_address or 'unknown IP'} ({user_agent or 'unknown device'}) "
        f"at {when.strftime('%Y-%m-%d %H:%M UTC')}.",
    )


def send_payment_confirmation_email(
    to_email: str,
    name: str | None,
    plan: str,
    amount_cents: int,
    end_date: datetime | None,
) -> bool:
    amount = f"R$ {amount_cents / 100:.2f}".replace(".", ",")
    until = end_date.strftime("%Y-%m-%d") if end_date else "-"
    body = (
        _greeting(name)
        + f"<p>Payment received: <strong>{amount}</strong>.</p>"
        f"<p>Your <strong>{PLAN_DISPLAY_NAMES.get(plan, plan)}</strong> plan is active until {until}.</p>"
    )
    return send_email(
        to_email,
        "Payment confirmed - Eternal Gift",
        _layout("Payment confirmed", body, "Go to dashboard", f"{config.FRONTEND_BASE_URL}/dashboard"),
    )


def send_subscription_cancelled_email(to_email: str, name: str | None, plan: str, end_date: datetime | None) -> bool:
    until = end_date.strftime("%Y-%m-%d") if end_date else "the end of the current period"
    body = (
        _greeting(name)
        + f"<p>Your {PLAN_DISPLAY_NAMES.get(plan, plan)} subscription will not renew.</p>"
        f"<p>You keep full access until {until}.</p>"
    )
    return send_email(
        to_email,
        "Subscription cancelled - Eternal Gift",
        _layout("Subscription cancelled", body, "Manage subscription", f"{config.FRONTEND_BASE_URL}/dashboard/subscription"),
    )
