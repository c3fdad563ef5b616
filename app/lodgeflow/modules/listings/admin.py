from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for

from app.lodgeflow.db import db_session
from app.lodgeflow.models import User
from app.lodgeflow.modules.listings.models import CURRENCIES, LISTING_TYPES, PRICE_UNITS, Listing, Review
from app.lodgeflow.modules.listings.service import (
    ListingError,
    add_or_update_review,
    approve_review,
    bulk_delete_listings,
    create_listing,
    delete_listing,
    delete_review,
    merge_listings,
    remove_listing_image,
    update_listing,
    upload_listing_image,
    validate_listing_payload,
)
from app.lodgeflow.modules.reports.service import today_in
from app.lodgeflow.rbac import require_login, require_permission, user_can
from app.lodgeflow.utils import paginate, parse_int

bp = Blueprint("listings", __name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    return {
        "name": request.form.get("name"),
        "type": request.form.get("type"),
        "location": request.form.get("location"),
        "description": request.form.get("description"),
        "price": request.form.get("price"),
        "price_unit": request.form.get("price_unit"),
        "currency": request.form.get("currency"),
        "max_guests": request.form.get("max_guests"),
        "features": request.form.get("features"),
        "inventory_count": request.form.get("inventory_count"),
    }


def _form_context() -> dict:
    return {"listing_types": LISTING_TYPES, "price_units": PRICE_UNITS, "currencies": CURRENCIES}


def _get_listing(s, listing_id: int) -> Listing:
    listing = s.get(Listing, listing_id)
    if not listing:
        abort(404)
    return listing


# ---------- Admin list ----------
@bp.get("/admin/listings")
@require_permission("listing:read")
def listings_list():
    s = db_session()
    search = (request.args.get("q") or "").strip()
    listing_type = (request.args.get("type") or "").strip()
    q = s.query(Listing)
    if search:
        like = f"%{search}%"
        q = q.filter((Listing.name.ilike(like)) | (Listing.location.ilike(like)))
    if listing_type:
        q = q.filter(Listing.type == listing_type)
    page = paginate(q.order_by(Listing.created_at.desc(), Listing.id.desc()), parse_int(request.args.get("page"), 1))
    return render_template(
        "admin/listings/list.html",
        page=page,
        listings=page.items,
        search=search,
        listing_type=listing_type,
        **_form_context(),
    )


# ---------- New ----------
@bp.get("/admin/listings/new")
@require_permission("listing:create")
def listings_new_get():
    return render_template("admin/listings/edit.html", listing=None, **_form_context())


@bp.post("/admin/listings/new")
@require_permission("listing:create")
def listings_new_post():
    s = db_session()
    payload = _payload()
    errors = validate_listing_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("listings.listings_new_get"))
    listing = create_listing(s, payload, parse_int(payload["inventory_count"]), _current_user())
    s.commit()
    flash("Listing created.", "success")
    return redirect(url_for("listings.listing_admin_detail", listing_id=listing.id))


# ---------- Detail ----------
@bp.get("/admin/listings/<int:listing_id>")
@require_permission("listing:read")
def listing_admin_detail(listing_id: int):
    s = db_session()
    listing = _get_listing(s, listing_id)
    others = s.query(Listing).filter(Listing.id != listing.id).order_by(Listing.name.asc()).all()
    today = today_in(current_app.config.get("REPORT_TIMEZONE"))
    return render_template(
        "admin/listings/detail.html",
        listing=listing,
        merge_candidates=others,
        today_iso=today.isoformat(),
    )


# ---------- Edit ----------
@bp.get("/admin/listings/<int:listing_id>/edit")
@require_permission("listing:update")
def listing_edit_get(listing_id: int):
    s = db_session()
    listing = _get_listing(s, listing_id)
    return render_template("admin/listings/edit.html", listing=listing, **_form_context())


@bp.post("/admin/listings/<int:listing_id>/edit")
@require_permission("listing:update")
def listing_edit_post(listing_id: int):
    s = db_session()
    listing = _get_listing(s, listing_id)
    payload = _payload()
    errors = validate_listing_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("listings.listing_edit_get", listing_id=listing_id))
    try:
        update_listing(s, listing, payload, parse_int(payload["inventory_count"]), _current_user())
    except ListingError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("listings.listing_edit_get", listing_id=listing_id))
    s.commit()
    flash("Listing updated.", "success")
    return redirect(url_for("listings.listing_admin_detail", listing_id=listing_id))


# ---------- Delete / bulk delete / merge ----------
@bp.post("/admin/listings/<int:listing_id>/delete")
@require_permission("listing:delete")
def listing_delete(listing_id: int):
    s = db_session()
    listing = _get_listing(s, listing_id)
    try:
        delete_listing(s, listing, _current_user())
    except ListingError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("listings.listing_admin_detail", listing_id=listing_id))
    s.commit()
    flash("Listing deleted.", "success")
    return redirect(url_for("listings.listings_list"))


@bp.post("/admin/listings/bulk-delete")
@require_permission("listing:delete")
def listings_bulk_delete():
    s = db_session()
    ids = [i for i in (parse_int(v) for v in request.form.getlist("listing_ids")) if i]
    try:
        count = bulk_delete_listings(s, ids, _current_user())
    except ListingError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("listings.listings_list"))
    s.commit()
    flash(f"{count} listing(s) deleted.", "success")
    return redirect(url_for("listings.listings_list"))


@bp.post("/admin/listings/<int:listing_id>/merge")
@require_permission("listing:merge")
def listing_merge(listing_id: int):
    s = db_session()
    primary = _get_listing(s, listing_id)
    ids = [i for i in (parse_int(v) for v in request.form.getlist("merge_ids")) if i]
    others = s.query(Listing).filter(Listing.id.in_(ids)).all() if ids else []
    try:
        merge_listings(s, primary, others, _current_user())
    except ListingError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("listings.listing_admin_detail", listing_id=listing_id))
    s.commit()
    flash(f"Merged {len(others)} listing(s) into {primary.name}.", "success")
    return redirect(url_for("listings.listing_admin_detail", listing_id=listing_id))


# ---------- Images ----------
@bp.post("/admin/listings/<int:listing_id>/images")
@require_permission("listing:update")
def listing_image_upload(listing_id: int):
    s = db_session()
    listing = _get_listing(s, listing_id)
    files = [f for f in request.files.getlist("images") if f and f.filename]
    if not files:
        flash("Choose at least one image to upload.", "danger")
        return redirect(url_for("listings.listing_admin_detail", listing_id=listing_id))

    uploaded = 0
    for f in files:
        content_type = f.mimetype or "application/octet-stream"
        if content_type not in ALLOWED_IMAGE_TYPES:
            flash(f"{f.filename}: unsupported image type.", "danger")
            continue
        data = f.read()
        if len(data) > MAX_UPLOAD_BYTES:
            flash(f"{f.filename}: file too large. Maximum size is 10MB.", "danger")
            continue
        upload_listing_image(s, listing, data, f.filename, content_type, _current_user())
        uploaded += 1
    s.commit()
    if uploaded:
        flash(f"{uploaded} image(s) uploaded.", "success")
    return redirect(url_for("listings.listing_admin_detail", listing_id=listing_id))


@bp.post("/admin/listings/<int:listing_id>/images/remove")
@require_permission("listing:update")
def listing_image_remove(listing_id: int):
    s = db_session()
    listing = _get_listing(s, listing_id)
    try:
        remove_listing_image(s, listing, (request.form.get("key") or "").strip(), _current_user())
    except ListingError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("listings.listing_admin_detail", listing_id=listing_id))
    s.commit()
    flash("Image removed.", "success")
    return redirect(url_for("listings.listing_admin_detail", listing_id=listing_id))


# ---------- Reviews ----------
@bp.get("/admin/reviews")
@require_permission("review:approve")
def reviews_list():
    s = db_session()
    status = (request.args.get("status") or "pending").strip()
    q = s.query(Review)
    if status in ("pending", "approved"):
        q = q.filter(Review.status == status)
    page = paginate(q.order_by(Review.created_at.desc(), Review.id.desc()), parse_int(request.args.get("page"), 1))
    return render_template("admin/listings/reviews.html", page=page, reviews=page.items, status=status)


@bp.post("/admin/reviews/<int:review_id>/approve")
@require_permission("review:approve")
def review_approve(review_id: int):
    s = db_session()
    review = s.get(Review, review_id)
    if not review:
        abort(404)
    approve_review(s, review, _current_user())
    s.commit()
    flash("Review approved.", "success")
    nxt = (request.form.get("next") or "").strip()
    # Only local paths, to avoid open redirects.
    if not nxt.startswith("/") or nxt.startswith("//"):
        nxt = url_for("listings.reviews_list")
    return redirect(nxt)


@bp.post("/admin/reviews/<int:review_id>/delete")
@require_permission("review:delete")
def review_delete(review_id: int):
    s = db_session()
    review = s.get(Review, review_id)
    if not review:
        abort(404)
    delete_review(s, review, _current_user())
    s.commit()
    flash("Review deleted.", "success")
    return redirect(url_for("listings.reviews_list"))


@bp.post("/listings/<int:listing_id>/reviews")
@require_login
def review_post(listing_id: int):
    s = db_session()
    u = _current_user()
    listing = _get_listing(s, listing_id)
    if not user_can(u, "review:create", owner_id=u.id):
        abort(403)
    try:
        add_or_update_review(
            s,
            listing,
            u,
            parse_int(request.form.get("rating")),
            request.form.get("comment") or "",
        )
    except ListingError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("public.listing_detail", listing_id=listing_id))
    s.commit()
    flash("Thanks! Your review will appear once approved.", "success")
    return redirect(url_for("public.listing_detail", listing_id=listing_id))
