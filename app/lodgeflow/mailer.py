"""
Transactional email.

Messages are rendered from Jinja templates under templates/emails/ (a .txt body and an
optional .html alternative) and delivered over SMTP. When SMTP is not configured the
send is skipped with a warning; transport failures are logged and never break the
request that triggered them.
"""
from __future__ import annotations

import logging
import smtplib
from collections.abc import Iterable
from email.message import EmailMessage
from typing import Any

from flask import current_app, render_template
from jinja2 import TemplateNotFound

logger = logging.getLogger(__name__)


def mail_configured() -> bool:
    cfg = current_app.config
    return bool(cfg.get("SMTP_HOST") and cfg.get("MAIL_FROM"))


def build_message(
    to: str,
    subject: str,
    template: str,
    context: dict[str, Any],
    attachments: Iterable[tuple[str, bytes, str]] = (),
) -> EmailMessage:
    cfg = current_app.config
    ctx = {"base_url": cfg.get("BASE_URL", ""), **context}
    msg = EmailMessage()
    msg["From"] = cfg.get("MAIL_FROM") or "no-reply@localhost"
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(render_template(f"emails/{template}.txt", **ctx))
    try:
        msg.add_alternative(render_template(f"emails/{template}.html", **ctx), subtype="html")
    except TemplateNotFound:
        pass
    for filename, data, mimetype in attachments:
        maintype, _, subtype = mimetype.partition("/")
        msg.add_attachment(data, maintype=maintype, subtype=subtype or "octet-stream", filename=filename)
    return msg


def send_email(
    to: str,
    subject: str,
    template: str,
    context: dict[str, Any] | None = None,
    attachments: Iterable[tuple[str, bytes, str]] = (),
) -> bool:
    if not mail_configured():
        logger.warning("Email not configured (SMTP_HOST/MAIL_FROM); skipping '%s' to %s", template, to)
        return False

    msg = build_message(to, subject, template, context or {}, attachments)
    cfg = current_app.config
    if cfg.get("MAIL_SUPPRESS_SEND"):
        current_app.extensions.setdefault("mail_outbox", []).append(msg)
        return True

    try:
        with smtplib.SMTP(cfg["SMTP_HOST"], int(cfg.get("SMTP_PORT") or 587), timeout=30) as smtp:
            if cfg.get("SMTP_USE_TLS"):
                smtp.starttls()
            if cfg.get("SMTP_USERNAME"):
                smtp.login(cfg["SMTP_USERNAME"], cfg.get("SMTP_PASSWORD") or "")
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send '%s' email to %s: %s", template, to, e)
        return False
    logger.info("Sent '%s' email to %s", template, to)
    return True


def _url(path: str) -> str:
    return f"{current_app.config.get('BASE_URL', '').rstrip('/')}{path}"


def send_welcome_email(user) -> bool:
    return send_email(user.email, "Welcome to LodgeFlow!", "welcome", {"user": user})


def send_password_reset_email(user, token: str) -> bool:
    link = _url(f"/auth/reset-password?token={token}")
    return send_email(user.email, "Reset your LodgeFlow password", "password_reset", {"user": user, "link": link})


def send_set_password_email(user, token: str) -> bool:
    link = _url(f"/auth/set-password?token={token}")
    return send_email(user.email, "Set up your LodgeFlow account", "set_password", {"user": user, "link": link})


def send_otp_email(email: str, code: str, ttl_minutes: int) -> bool:
    return send_email(email, "Your LodgeFlow sign-in code", "otp", {"code": code, "ttl_minutes": ttl_minutes})


def send_booking_request_email(booking) -> bool:
    if not booking.user:
        return False
    return send_email(
        booking.user.email,
        f"Booking Request Received for {booking.listing.name}",
        "booking_request",
        {"user": booking.user, "booking": booking, "listing": booking.listing},
    )


def send_booking_confirmation_email(booking) -> bool:
    if not booking.user:
        return False
    return send_email(
        booking.user.email,
        f"Booking Confirmed: Your Reservation at {booking.listing.name}",
        "booking_confirmation",
        {"user": booking.user, "booking": booking, "listing": booking.listing},
    )


def send_report_email(to: str, title: str, context: dict[str, Any], csv_bytes: bytes, filename: str) -> bool:
    return send_email(
        to,
        f"LodgeFlow report: {title}",
        "report",
        {"title": title, **context},
        attachments=[(filename, csv_bytes, "text/csv")],
    )
