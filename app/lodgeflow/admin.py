from datetime import date

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for
from sqlalchemy import func, text

from app.lodgeflow.audit import AUDIT_PAGE_LIMIT, query_events, record_event
from app.lodgeflow.db import db_session
from app.lodgeflow.models import Permission, Role, User
from app.lodgeflow.modules.bookings.models import Booking
from app.lodgeflow.modules.listings.models import Listing, Review
from app.lodgeflow.rbac import require_permission
from app.lodgeflow.utils import parse_date

bp = Blueprint("admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/")
@require_permission("dashboard:read")
def index():
    s = db_session()
    status = {"db_connected": False, "db_error": None}
    try:
        s.execute(text("SELECT 1"))
        status["db_connected"] = True
    except Exception as e:
        status["db_error"] = str(e)

    today = date.today()
    counts = dict(s.query(Booking.status, func.count(Booking.id)).group_by(Booking.status).all())
    upcoming = (
        s.query(Booking)
        .filter(Booking.status.in_(("Pending", "Confirmed")), Booking.end_date >= today)
        .order_by(Booking.start_date.asc())
        .limit(10)
        .all()
    )
    pending_reviews = s.query(Review).filter(Review.status == "pending").order_by(Review.created_at.desc()).limit(10).all()
    return render_template(
        "admin/index.html",
        system_status=status,
        booking_counts=counts,
        listing_count=s.query(func.count(Listing.id)).scalar() or 0,
        user_count=s.query(func.count(User.id)).scalar() or 0,
        upcoming=upcoming,
        pending_reviews=pending_reviews,
    )


@bp.get("/audit")
@require_permission("audit:read")
def audit_list():
    """
    Audit trail UI (last 200 events) with simple filters:
    - action (contains)
    - actor_email (contains)
    - entity_type / entity_id (exact)
    - date range (YYYY-MM-DD)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = parse_date(request.args.get("date_from"))
    date_to = parse_date(request.args.get("date_to"))

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from must be YYYY-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to must be YYYY-MM-DD", "danger")

    entity_type = (request.args.get("entity_type") or "").strip()
    entity_id = (request.args.get("entity_id") or "").strip()
    events = (
        query_events(
            s,
            action=action,
            actor_email=actor_email,
            entity_type=entity_type,
            entity_id=entity_id,
            date_from=date_from,
            date_to=date_to,
        )
        .limit(AUDIT_PAGE_LIMIT)
        .all()
    )
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_email=actor_email,
        entity_type=entity_type,
        entity_id=entity_id,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )


# ---------- Role permissions ----------
@bp.get("/permissions")
@require_permission("permissions:read")
def permissions_list():
    s = db_session()
    roles = s.query(Role).order_by(Role.id.asc()).all()
    permissions = s.query(Permission).order_by(Permission.key.asc()).all()
    return render_template("admin/permissions/list.html", roles=roles, permissions=permissions)


@bp.post("/permissions/<int:role_id>")
@require_permission("permissions:update")
def permissions_update(role_id: int):
    s = db_session()
    u = _current_user()
    role = s.get(Role, role_id)
    if not role:
        abort(404)
    if role.key == "admin":
        flash("The admin role always has every permission.", "warning")
        return redirect(url_for("admin.permissions_list"))

    keys = set(request.form.getlist("permission_keys"))
    before = sorted(role.permission_keys)
    role.permissions = s.query(Permission).filter(Permission.key.in_(keys)).all() if keys else []
    after = sorted(p.key for p in role.permissions)

    record_event(
        s,
        actor=u,
        action="role.permissions_update",
        entity_type="Role",
        entity_id=str(role.id),
        metadata={"role": role.key, "before": before, "after": after},
    )
    s.commit()
    flash(f"Permissions updated for {role.name}.", "success")
    return redirect(url_for("admin.permissions_list"))
