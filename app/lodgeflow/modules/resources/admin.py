from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.lodgeflow.db import db_session
from app.lodgeflow.models import User
from app.lodgeflow.modules.catalog.models import Facility, Group, Rule
from app.lodgeflow.modules.locations.models import Location
from app.lodgeflow.modules.locations.service import LocationError
from app.lodgeflow.modules.resources.models import (
    DAYS_OF_WEEK,
    RESOURCE_STATUSES,
    RESOURCE_TYPES,
    SCHEDULE_TYPES,
    Resource,
)
from app.lodgeflow.modules.resources.service import (
    ResourceError,
    create_resource,
    delete_resource,
    filter_resources,
    public_resources,
    set_links,
    set_schedules,
    update_resource,
    upload_resource_media,
)
from app.lodgeflow.rbac import require_permission
from app.lodgeflow.utils import paginate, parse_int

bp = Blueprint("resources", __name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    return {
        "name": request.form.get("name"),
        "type": request.form.get("type"),
        "description": request.form.get("description"),
        "status": request.form.get("status"),
        "schedule_type": request.form.get("schedule_type"),
        "location_id": request.form.get("location_id"),
    }


def _form_context(s) -> dict:
    return {
        "resource_types": RESOURCE_TYPES,
        "resource_statuses": RESOURCE_STATUSES,
        "schedule_types": SCHEDULE_TYPES,
        "locations": s.query(Location).order_by(Location.name.asc()).all(),
    }


# ---------- Admin list ----------
@bp.get("/admin/resources")
@require_permission("resource:read")
def resources_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    rtype = (request.args.get("type") or "").strip()
    status = (request.args.get("status") or "").strip()
    location_id = parse_int(request.args.get("location_id"))
    page = paginate(filter_resources(s, search, rtype, status, location_id), parse_int(request.args.get("page"), 1))
    return render_template(
        "admin/resources/list.html",
        page=page,
        resources=page.items,
        search=search,
        rtype=rtype,
        status=status,
        location_id=location_id,
        **_form_context(s),
    )


# ---------- New ----------
@bp.get("/admin/resources/new")
@require_permission("resource:create")
def resources_new_get():
    s = db_session()
    return render_template("admin/resources/edit.html", resource=None, **_form_context(s))


@bp.post("/admin/resources/new")
@require_permission("resource:create")
def resources_new_post():
    s = db_session()
    try:
        resource = create_resource(s, _payload(), _current_user())
    except ResourceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("resources.resources_new_get"))
    s.commit()
    flash("Resource created.", "success")
    return redirect(url_for("resources.resource_detail", resource_id=resource.id))


# ---------- Detail ----------
@bp.get("/admin/resources/<int:resource_id>")
@require_permission("resource:read")
def resource_detail(resource_id: int):
    s = db_session()
    resource = s.get(Resource, resource_id)
    if not resource:
        abort(404)
    return render_template(
        "admin/resources/detail.html",
        resource=resource,
        all_rules=s.query(Rule).order_by(Rule.name.asc()).all(),
        all_facilities=s.query(Facility).order_by(Facility.name.asc()).all(),
        all_groups=s.query(Group).order_by(Group.num.asc(), Group.name.asc()).all(),
        days_of_week=DAYS_OF_WEEK,
        schedule_types=SCHEDULE_TYPES,
        schedule_by_day={sch.day_of_week: sch for sch in resource.schedules},
    )


# ---------- Edit ----------
@bp.get("/admin/resources/<int:resource_id>/edit")
@require_permission("resource:update")
def resource_edit_get(resource_id: int):
    s = db_session()
    resource = s.get(Resource, resource_id)
    if not resource:
        abort(404)
    return render_template("admin/resources/edit.html", resource=resource, **_form_context(s))


@bp.post("/admin/resources/<int:resource_id>/edit")
@require_permission("resource:update")
def resource_edit_post(resource_id: int):
    s = db_session()
    resource = s.get(Resource, resource_id)
    if not resource:
        abort(404)
    try:
        update_resource(s, resource, _payload(), _current_user())
    except ResourceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("resources.resource_edit_get", resource_id=resource_id))
    s.commit()
    flash("Resource updated.", "success")
    return redirect(url_for("resources.resource_detail", resource_id=resource_id))


@bp.post("/admin/resources/<int:resource_id>/delete")
@require_permission("resource:delete")
def resource_delete(resource_id: int):
    s = db_session()
    resource = s.get(Resource, resource_id)
    if not resource:
        abort(404)
    delete_resource(s, resource, _current_user())
    s.commit()
    flash("Resource deleted.", "success")
    return redirect(url_for("resources.resources_list"))


# ---------- Links & schedules ----------
@bp.post("/admin/resources/<int:resource_id>/links")
@require_permission("resource:update")
def resource_links_post(resource_id: int):
    s = db_session()
    resource = s.get(Resource, resource_id)
    if not resource:
        abort(404)
    try:
        set_links(
            s,
            resource,
            rule_ids=request.form.getlist("rule_ids"),
            facility_ids=request.form.getlist("facility_ids"),
            group_ids=request.form.getlist("group_ids"),
            user=_current_user(),
        )
    except ResourceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("resources.resource_detail", resource_id=resource_id))
    s.commit()
    flash("Rules, facilities and groups updated.", "success")
    return redirect(url_for("resources.resource_detail", resource_id=resource_id))


@bp.post("/admin/resources/<int:resource_id>/schedules")
@require_permission("resource:update")
def resource_schedules_post(resource_id: int):
    s = db_session()
    resource = s.get(Resource, resource_id)
    if not resource:
        abort(404)
    schedule_type = (request.form.get("schedule_type") or "").strip()
    if schedule_type == "custom":
        rows = [
            {
                "day_of_week": day,
                "start_time": request.form.get(f"start_{day}"),
                "end_time": request.form.get(f"end_{day}"),
            }
            for day in DAYS_OF_WEEK
            if request.form.get(f"day_{day}")
        ]
    else:
        rows = [{"start_time": request.form.get("start_time"), "end_time": request.form.get("end_time")}]
    try:
        set_schedules(s, resource, schedule_type, rows, _current_user())
    except ResourceError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("resources.resource_detail", resource_id=resource_id))
    s.commit()
    flash("Schedule updated.", "success")
    return redirect(url_for("resources.resource_detail", resource_id=resource_id))


@bp.post("/admin/resources/<int:resource_id>/media")
@require_permission("resource:update")
def resource_media_upload(resource_id: int):
    s = db_session()
    resource = s.get(Resource, resource_id)
    if not resource:
        abort(404)
    f = request.files.get("file")
    if not f or not f.filename:
        flash("Choose a file to upload.", "danger")
        return redirect(url_for("resources.resource_detail", resource_id=resource_id))
    data = f.read()
    if len(data) > MAX_UPLOAD_BYTES:
        flash("File too large. Maximum size is 10MB.", "danger")
        return redirect(url_for("resources.resource_detail", resource_id=resource_id))
    try:
        upload_resource_media(
            s,
            resource,
            data,
            f.filename,
            f.mimetype or "application/octet-stream",
            _current_user(),
            set_thumbnail=request.form.get("thumbnail") == "1",
        )
    except LocationError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("resources.resource_detail", resource_id=resource_id))
    s.commit()
    flash("Media uploaded.", "success")
    return redirect(url_for("resources.resource_detail", resource_id=resource_id))


# ---------- Public browse ----------
@bp.get("/resources")
def browse():
    s = db_session()
    rtype = (request.args.get("type") or "").strip()
    city = (request.args.get("city") or "").strip()
    group_id = parse_int(request.args.get("group"))
    resources = public_resources(s, rtype or None, city or None, group_id)
    cities = sorted({r[0] for r in s.query(Location.city).distinct().all() if r[0]})
    return render_template(
        "public/resources.html",
        resources=resources,
        rtype=rtype,
        city=city,
        group_id=group_id,
        resource_types=RESOURCE_TYPES,
        cities=cities,
        groups=s.query(Group).order_by(Group.num.asc()).all(),
    )


@bp.get("/resources/<int:resource_id>")
def browse_detail(resource_id: int):
    s = db_session()
    resource = s.get(Resource, resource_id)
    if not resource or resource.status != "published":
        abort(404)
    return render_template("public/resource_detail.html", resource=resource)
