from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.lodgeflow import mailer
from app.lodgeflow.db import db_session
from app.lodgeflow.models import USER_STATUSES, Role, User
from app.lodgeflow.modules.users.service import (
    UserError,
    change_password,
    consolidate_users,
    create_user,
    delete_user,
    search_users,
    update_user,
)
from app.lodgeflow.rbac import require_login, require_permission, user_can
from app.lodgeflow.tokens import make_password_token
from app.lodgeflow.utils import paginate, parse_int

bp = Blueprint("users", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _roles(s) -> list[Role]:
    return s.query(Role).order_by(Role.id.asc()).all()


@bp.get("/admin/users")
@require_permission("user:read")
def users_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    role = (request.args.get("role") or "").strip()
    status = (request.args.get("status") or "").strip()
    page = paginate(search_users(s, search, role, status), parse_int(request.args.get("page"), 1))
    return render_template(
        "admin/users/list.html",
        page=page,
        users=page.items,
        search=search,
        role=role,
        status=status,
        roles=_roles(s),
        statuses=USER_STATUSES,
    )


@bp.get("/admin/users/new")
@require_permission("user:create")
def users_new_get():
    s = db_session()
    return render_template("admin/users/new.html", roles=_roles(s))


@bp.post("/admin/users/new")
@require_permission("user:create")
def users_new_post():
    s = db_session()
    password = request.form.get("password") or ""
    try:
        user = create_user(
            s,
            name=request.form.get("name") or "",
            email=request.form.get("email") or "",
            # Blank password -> provisional account, owner sets it via emailed link.
            password=password or None,
            role_key=(request.form.get("role") or "guest").strip(),
            phone=request.form.get("phone"),
            notes=request.form.get("notes"),
            actor=_current_user(),
        )
    except UserError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("users.users_new_get"))
    s.commit()

    if user.status == "provisional":
        mailer.send_set_password_email(user, make_password_token(user))
        flash(f"User created. A set-password link was emailed to {user.email}.", "success")
    else:
        mailer.send_welcome_email(user)
        flash("User created.", "success")
    return redirect(url_for("users.user_detail", user_id=user.id))


@bp.get("/admin/users/<int:user_id>")
@require_permission("user:read")
def user_detail(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    others = s.query(User).filter(User.id != user.id).order_by(User.email.asc()).all()
    return render_template(
        "admin/users/detail.html",
        user=user,
        roles=_roles(s),
        statuses=USER_STATUSES,
        merge_candidates=others,
    )


@bp.post("/admin/users/<int:user_id>/edit")
@require_permission("user:update")
def user_edit_post(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    payload = {
        "name": request.form.get("name"),
        "phone": request.form.get("phone"),
        "notes": request.form.get("notes"),
        "status": request.form.get("status"),
        "role": request.form.get("role"),
    }
    try:
        update_user(s, user, payload, _current_user())
    except UserError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("users.user_detail", user_id=user_id))
    s.commit()
    flash("User updated.", "success")
    return redirect(url_for("users.user_detail", user_id=user_id))


@bp.post("/admin/users/<int:user_id>/delete")
@require_permission("user:delete")
def user_delete(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    try:
        delete_user(s, user, _current_user())
    except UserError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("users.user_detail", user_id=user_id))
    s.commit()
    flash("User deleted.", "success")
    return redirect(url_for("users.users_list"))


@bp.post("/admin/users/<int:user_id>/consolidate")
@require_permission("user:delete")
def user_consolidate(user_id: int):
    s = db_session()
    primary = s.get(User, user_id)
    if not primary:
        abort(404)
    ids = [i for i in (parse_int(v) for v in request.form.getlist("merge_ids")) if i]
    secondaries = s.query(User).filter(User.id.in_(ids)).all() if ids else []
    try:
        summary = consolidate_users(s, primary, secondaries, _current_user())
    except UserError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("users.user_detail", user_id=user_id))
    s.commit()
    flash(
        f"Merged {summary['accounts']} account(s): {summary['bookings']} booking(s) and "
        f"{summary['reviews']} review(s) moved.",
        "success",
    )
    return redirect(url_for("users.user_detail", user_id=user_id))


@bp.post("/admin/users/<int:user_id>/send-password-link")
@require_permission("user:update")
def user_send_password_link(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    if mailer.send_set_password_email(user, make_password_token(user)):
        flash(f"Set-password link sent to {user.email}.", "success")
    else:
        flash("Email could not be sent. Check SMTP settings.", "danger")
    return redirect(url_for("users.user_detail", user_id=user_id))


# ---------- Profile ----------
@bp.get("/profile")
@require_login
def profile_get():
    return render_template("users/profile.html", user=_current_user())


@bp.post("/profile")
@require_login
def profile_post():
    s = db_session()
    u = _current_user()
    if not user_can(u, "user:update", owner_id=u.id):
        abort(403)
    try:
        update_user(s, u, {"name": request.form.get("name"), "phone": request.form.get("phone")}, u)
    except UserError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("users.profile_get"))
    s.commit()
    flash("Profile updated.", "success")
    return redirect(url_for("users.profile_get"))


@bp.post("/profile/password")
@require_login
def profile_password_post():
    s = db_session()
    u = _current_user()
    try:
        change_password(
            s,
            u,
            request.form.get("current_password") or "",
            request.form.get("new_password") or "",
            request.form.get("confirm_password") or "",
        )
    except UserError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("users.profile_get"))
    s.commit()
    flash("Password changed.", "success")
    return redirect(url_for("users.profile_get"))
