import mimetypes

from flask import Blueprint, abort, current_app, g, render_template, request, send_file

from app.lodgeflow.db import db_session
from app.lodgeflow.modules.listings.models import LISTING_TYPES, Listing
from app.lodgeflow.modules.listings.service import filter_listings, listing_types_with_sample_images
from app.lodgeflow.storage import StorageError, storage_from_config
from app.lodgeflow.utils import parse_date, parse_int

bp = Blueprint("public", __name__)

FEATURED_LIMIT = 6


@bp.get("/")
def index():
    s = db_session()
    featured = (
        s.query(Listing)
        .order_by(Listing.rating.desc(), Listing.created_at.desc())
        .limit(FEATURED_LIMIT)
        .all()
    )
    return render_template(
        "public/index.html",
        listing_types=listing_types_with_sample_images(s),
        featured=featured,
    )


@bp.get("/search")
def search():
    s = db_session()
    location = (request.args.get("location") or "").strip()
    listing_type = (request.args.get("type") or "").strip()
    if listing_type not in LISTING_TYPES:
        listing_type = ""
    guests = parse_int(request.args.get("guests"))
    date_from = parse_date(request.args.get("from"))
    date_to = parse_date(request.args.get("to"))

    listings = filter_listings(s, location, listing_type or None, guests, date_from, date_to)
    return render_template(
        "public/search.html",
        listings=listings,
        location=location,
        listing_type=listing_type,
        guests=guests,
        date_from=request.args.get("from") or "",
        date_to=request.args.get("to") or "",
        listing_types=LISTING_TYPES,
    )


@bp.get("/listings/<int:listing_id>")
def listing_detail(listing_id: int):
    s = db_session()
    listing = s.get(Listing, listing_id)
    if not listing:
        abort(404)
    user = getattr(g, "current_user", None)
    own_review = None
    if user:
        own_review = next((r for r in listing.reviews if r.user_id == user.id), None)
    return render_template(
        "public/listing_detail.html",
        listing=listing,
        reviews=listing.approved_reviews,
        own_review=own_review,
    )


@bp.get("/about")
def about():
    return render_template("public/about.html")


@bp.get("/media/<path:key>")
def media(key: str):
    storage = storage_from_config(current_app.config)
    try:
        fobj = storage.open(key)
    except StorageError:
        abort(404)
    mimetype = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return send_file(fobj, mimetype=mimetype, max_age=3600)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for load balancer probes. No DB access, minimal overhead.
    """
    return "ok", 200
