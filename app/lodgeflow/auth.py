from __future__ import annotations

import hashlib
import secrets
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash

from app.lodgeflow import mailer
from app.lodgeflow.audit import record_event
from app.lodgeflow.db import db_session
from app.lodgeflow.models import OneTimePassword, User
from app.lodgeflow.modules.users.service import (
    UserError,
    create_user,
    find_user_by_email,
    normalize_email,
    set_password,
)
from app.lodgeflow.tokens import TokenError, load_password_token, make_password_token, verify_access

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
OTP_TTL_MINUTES = 10


class AuthError(ValueError):
    pass


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _safe_next(nxt: str) -> str | None:
    # Only local paths, to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


def _home_for(user: User) -> str:
    if user.is_staff_or_admin:
        return url_for("admin.index")
    return url_for("bookings.bookings_list")


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie, or from an
    `Authorization: Bearer <access token>` header on /api/ paths.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    user_id = None
    from_token = False
    auth_header = request.headers.get("Authorization") or ""
    if request.path.startswith("/api/") and auth_header.lower().startswith("bearer "):
        try:
            user_id = verify_access(auth_header[7:].strip())
            from_token = True
        except TokenError:
            return
    else:
        user_id = session.get("user_id")
    if not user_id:
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            if not from_token:
                session.pop("user_id", None)
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def authenticate(s: Session, email: str, password: str) -> User | None:
    user = find_user_by_email(s, email)
    if not user or not user.is_active or not check_password_hash(user.password_hash, password or ""):
        return None
    return user


def _sign_in(s: Session, user: User) -> None:
    session["user_id"] = user.id
    user.last_login_at = datetime.utcnow()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))


# ---------- One-time passcodes ----------
def _hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def request_otp(s: Session, email: str) -> str:
    """Create a 6-digit code for `email`, store its hash and mail it. Returns the code."""
    email = normalize_email(email)
    user = find_user_by_email(s, email)
    if not user:
        raise AuthError("Email doesn't exist")

    code = f"{secrets.randbelow(10**6):06d}"
    now = datetime.utcnow()
    s.add(
        OneTimePassword(
            user_email=email,
            hashed_code=_hash_code(code),
            expires_at=now + timedelta(minutes=OTP_TTL_MINUTES),
            created_at=now,
        )
    )
    s.flush()
    record_event(s, actor=user, action="auth.otp_request", entity_type="User", entity_id=str(user.id))
    mailer.send_otp_email(email, code, OTP_TTL_MINUTES)
    return code


def verify_otp(s: Session, email: str, code: str) -> User:
    email = normalize_email(email)
    otp = (
        s.query(OneTimePassword)
        .filter(
            OneTimePassword.user_email == email,
            OneTimePassword.hashed_code == _hash_code((code or "").strip()),
            OneTimePassword.expires_at > datetime.utcnow(),
        )
        .first()
    )
    user = find_user_by_email(s, email)
    if not otp or not user:
        raise AuthError("The OTP does not exist or has expired.")
    if not user.is_active:
        raise AuthError("This account is disabled.")

    s.delete(otp)
    s.flush()
    user.is_verified = True
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="auth.otp_verify", entity_type="User", entity_id=str(user.id))
    mailer.send_welcome_email(user)
    return user


# ---------- Login / logout ----------
@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = normalize_email(request.form.get("email"))
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    _record_attempt(ip)

    try:
        s = db_session()
        user = authenticate(s, email, password)
        if not user:
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            flash("Invalid credentials.", "danger")
            return redirect(url_for("auth.login_get", next=nxt) if nxt else url_for("auth.login_get"))

        _sign_in(s, user)
        _login_attempts[ip].clear()
        s.commit()
        return redirect(_safe_next(nxt) or _home_for(user))
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.get("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return redirect(url_for("public.index"))


# ---------- Signup ----------
@bp.get("/signup")
def signup_get():
    return render_template("auth/signup.html")


@bp.post("/signup")
def signup_post():
    s = db_session()
    try:
        user = create_user(
            s,
            name=request.form.get("name") or "",
            email=request.form.get("email") or "",
            password=request.form.get("password") or "",
            phone=request.form.get("phone"),
            role_key="guest",
        )
    except UserError as e:
        s.rollback()
        flash(str(e), "danger")
        return render_template("auth/signup.html", form=request.form), 400

    _sign_in(s, user)
    s.commit()
    mailer.send_welcome_email(user)
    flash("Welcome! Your account has been created.", "success")
    return redirect(url_for("public.index"))


# ---------- Forgot / reset / set password ----------
@bp.get("/forgot-password")
def forgot_password_get():
    return render_template("auth/forgot_password.html")


@bp.post("/forgot-password")
def forgot_password_post():
    s = db_session()
    email = normalize_email(request.form.get("email"))
    user = find_user_by_email(s, email)
    if user and user.is_active:
        mailer.send_password_reset_email(user, make_password_token(user))
        record_event(s, actor=user, action="auth.password_reset_request", entity_type="User", entity_id=str(user.id))
        s.commit()
    # Same response either way so account existence is not disclosed.
    flash("If an account exists for that email, a reset link has been sent.", "info")
    return redirect(url_for("auth.login_get"))


def _password_token_page(template: str):
    s = db_session()
    token = (request.values.get("token") or "").strip()
    try:
        user = load_password_token(s, token)
    except TokenError as e:
        flash(e.message, "danger")
        return redirect(url_for("auth.forgot_password_get"))

    if request.method == "GET":
        return render_template(template, token=token, account=user)

    try:
        set_password(s, user, request.form.get("password") or "", request.form.get("password_confirm") or "")
    except UserError as e:
        s.rollback()
        flash(str(e), "danger")
        return render_template(template, token=token, account=user), 400
    s.commit()
    flash("Your password has been set. You can now sign in.", "success")
    return redirect(url_for("auth.login_get"))


@bp.route("/reset-password", methods=["GET", "POST"])
def reset_password():
    return _password_token_page("auth/reset_password.html")


@bp.route("/set-password", methods=["GET", "POST"])
def set_password_page():
    return _password_token_page("auth/set_password.html")


# ---------- Passcode sign-in ----------
@bp.get("/otp")
def otp_get():
    return render_template("auth/otp.html", email=(request.args.get("email") or "").strip())


@bp.post("/otp")
def otp_request_post():
    s = db_session()
    email = normalize_email(request.form.get("email"))
    try:
        request_otp(s, email)
    except AuthError as e:
        flash(str(e), "danger")
        return redirect(url_for("auth.otp_get"))
    s.commit()
    flash(f"We sent a sign-in code to {email}.", "info")
    return redirect(url_for("auth.otp_get", email=email))


@bp.post("/otp/verify")
def otp_verify_post():
    s = db_session()
    email = normalize_email(request.form.get("email"))
    try:
        user = verify_otp(s, email, request.form.get("code") or "")
    except AuthError as e:
        flash(str(e), "danger")
        return redirect(url_for("auth.otp_get", email=email))
    _sign_in(s, user)
    s.commit()
    return redirect(_home_for(user))
