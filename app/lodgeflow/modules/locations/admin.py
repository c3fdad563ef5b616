from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.lodgeflow.db import db_session
from app.lodgeflow.models import User
from app.lodgeflow.modules.locations.models import Location, Media
from app.lodgeflow.modules.locations.service import (
    LocationError,
    create_location,
    delete_location,
    delete_media,
    distinct_states_and_cities,
    filter_locations,
    update_location,
    upload_media,
    validate_location_payload,
)
from app.lodgeflow.rbac import require_permission
from app.lodgeflow.utils import paginate, parse_int

bp = Blueprint("locations", __name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    return {
        "name": request.form.get("name"),
        "state": request.form.get("state"),
        "city": request.form.get("city"),
        "description": request.form.get("description"),
    }


@bp.get("/locations")
@require_permission("location:read")
def locations_list():
    s = db_session()
    state = (request.args.get("state") or "").strip()
    city = (request.args.get("city") or "").strip()
    search = (request.args.get("q") or "").strip()
    page = paginate(filter_locations(s, state, city, search), parse_int(request.args.get("page"), 1))
    states, cities = distinct_states_and_cities(s)
    return render_template(
        "admin/locations/list.html",
        page=page,
        locations=page.items,
        state=state,
        city=city,
        search=search,
        states=states,
        cities=cities,
    )


@bp.get("/locations/new")
@require_permission("location:create")
def locations_new_get():
    return render_template("admin/locations/edit.html", location=None)


@bp.post("/locations/new")
@require_permission("location:create")
def locations_new_post():
    s = db_session()
    payload = _payload()
    errors = validate_location_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("locations.locations_new_get"))
    location = create_location(s, payload, _current_user())
    s.commit()
    flash("Location created.", "success")
    return redirect(url_for("locations.location_detail", location_id=location.id))


@bp.get("/locations/<int:location_id>")
@require_permission("location:read")
def location_detail(location_id: int):
    s = db_session()
    location = s.get(Location, location_id)
    if not location:
        abort(404)
    return render_template("admin/locations/detail.html", location=location)


@bp.get("/locations/<int:location_id>/edit")
@require_permission("location:update")
def location_edit_get(location_id: int):
    s = db_session()
    location = s.get(Location, location_id)
    if not location:
        abort(404)
    return render_template("admin/locations/edit.html", location=location)


@bp.post("/locations/<int:location_id>/edit")
@require_permission("location:update")
def location_edit_post(location_id: int):
    s = db_session()
    location = s.get(Location, location_id)
    if not location:
        abort(404)
    payload = _payload()
    errors = validate_location_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("locations.location_edit_get", location_id=location_id))
    update_location(s, location, payload, _current_user())
    s.commit()
    flash("Location updated.", "success")
    return redirect(url_for("locations.location_detail", location_id=location_id))


@bp.post("/locations/<int:location_id>/delete")
@require_permission("location:delete")
def location_delete(location_id: int):
    s = db_session()
    location = s.get(Location, location_id)
    if not location:
        abort(404)
    try:
        delete_location(s, location, _current_user())
    except LocationError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("locations.location_detail", location_id=location_id))
    s.commit()
    flash("Location deleted.", "success")
    return redirect(url_for("locations.locations_list"))


@bp.post("/locations/<int:location_id>/media")
@require_permission("location:update")
def location_media_upload(location_id: int):
    s = db_session()
    location = s.get(Location, location_id)
    if not location:
        abort(404)
    f = request.files.get("file")
    if not f or not f.filename:
        flash("Choose a file to upload.", "danger")
        return redirect(url_for("locations.location_detail", location_id=location_id))
    data = f.read()
    if len(data) > MAX_UPLOAD_BYTES:
        flash("File too large. Maximum size is 10MB.", "danger")
        return redirect(url_for("locations.location_detail", location_id=location_id))
    caption = (request.form.get("caption") or "").strip()
    try:
        upload_media(
            s,
            file_bytes=data,
            filename=f.filename,
            content_type=f.mimetype or "application/octet-stream",
            user=_current_user(),
            location=location,
            metadata={"caption": caption} if caption else None,
        )
    except LocationError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("locations.location_detail", location_id=location_id))
    s.commit()
    flash("Media uploaded.", "success")
    return redirect(url_for("locations.location_detail", location_id=location_id))


@bp.post("/media/<int:media_id>/delete")
@require_permission("location:update")
def media_delete(media_id: int):
    s = db_session()
    media = s.get(Media, media_id)
    if not media:
        abort(404)
    back = (
        url_for("locations.location_detail", location_id=media.location_id)
        if media.location_id
        else url_for("resources.resource_detail", resource_id=media.resource_id)
    )
    delete_media(s, media, _current_user())
    s.commit()
    flash("Media deleted.", "success")
    return redirect(back)
