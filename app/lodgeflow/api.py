"""
JSON API.

Read endpoints are public. `/api/users/me` needs an `Authorization: Bearer <access>`
header; access/refresh pairs come from `/api/auth/jwt/create` or OTP verification.
Errors are `{"success": false, "message": ...}` with a matching status code.
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request, url_for

from app.lodgeflow.audit import record_event
from app.lodgeflow.auth import AuthError, authenticate, request_otp, verify_otp
from app.lodgeflow.db import db_session
from app.lodgeflow.modules.bookings.service import available_units
from app.lodgeflow.modules.listings.models import LISTING_TYPES, Listing
from app.lodgeflow.modules.listings.service import filter_listings
from app.lodgeflow.tokens import TokenError, issue_token_pair, revoke, rotate_refresh
from app.lodgeflow.utils import parse_date, parse_int

bp = Blueprint("api", __name__)


def _error(message: str, status: int = 400):
    return jsonify({"success": False, "message": message}), status


def _json() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _listing_json(listing: Listing, detail: bool = False) -> dict:
    out = {
        "id": listing.id,
        "name": listing.name,
        "type": listing.type,
        "location": listing.location,
        "price": str(listing.price),
        "price_unit": listing.price_unit,
        "currency": listing.currency,
        "currency_symbol": listing.currency_symbol,
        "rating": float(listing.rating or 0),
        "max_guests": listing.max_guests,
        "inventory_count": listing.inventory_count,
        "images": [url_for("public.media", key=k) for k in (listing.images or [])],
        "features": list(listing.features or []),
    }
    if detail:
        out["description"] = listing.description
        out["reviews"] = [
            {
                "author": r.author,
                "rating": r.rating,
                "comment": r.comment,
                "created_at": r.created_at.isoformat() if r.created_at else None,
            }
            for r in listing.approved_reviews
        ]
    return out


# ---------- Listings ----------
@bp.get("/listings")
def listings_index():
    s = db_session()
    listing_type = (request.args.get("type") or "").strip()
    if listing_type and listing_type not in LISTING_TYPES:
        return _error(f"Invalid type. Must be one of: {', '.join(LISTING_TYPES)}")
    listings = filter_listings(
        s,
        request.args.get("location"),
        listing_type or None,
        parse_int(request.args.get("guests")),
        parse_date(request.args.get("from")),
        parse_date(request.args.get("to")),
    )
    return jsonify({"success": True, "count": len(listings), "results": [_listing_json(l) for l in listings]})


@bp.get("/listings/<int:listing_id>")
def listing_show(listing_id: int):
    listing = db_session().get(Listing, listing_id)
    if not listing:
        return _error("Listing not found", 404)
    return jsonify({"success": True, "listing": _listing_json(listing, detail=True)})


@bp.get("/listings/<int:listing_id>/availability")
def listing_availability(listing_id: int):
    s = db_session()
    listing = s.get(Listing, listing_id)
    if not listing:
        return _error("Listing not found", 404)
    date_from = parse_date(request.args.get("from"))
    date_to = parse_date(request.args.get("to"))
    if not date_from or not date_to:
        return _error("from and to must be YYYY-MM-DD")
    if date_to < date_from:
        return _error("End date must be on or after the start date.")
    free = available_units(s, listing, date_from, date_to)
    return jsonify(
        {
            "success": True,
            "listing_id": listing.id,
            "from": date_from.isoformat(),
            "to": date_to.isoformat(),
            "available": len(free),
            "total": listing.inventory_count,
            "units": [u.name for u in free],
        }
    )


# ---------- Token auth ----------
@bp.post("/auth/jwt/create")
def jwt_create():
    s = db_session()
    data = _json()
    user = authenticate(s, data.get("email") or "", data.get("password") or "")
    if not user:
        return _error("Invalid email or password.", 401)
    record_event(s, actor=user, action="auth.token_create", entity_type="User", entity_id=str(user.id))
    s.commit()
    return jsonify({"success": True, **issue_token_pair(user)})


@bp.post("/auth/jwt/refresh")
def jwt_refresh():
    s = db_session()
    refresh = (_json().get("refresh") or "").strip()
    if not refresh:
        return _error("Refresh token is required.")
    try:
        _, pair = rotate_refresh(s, refresh)
    except TokenError as e:
        s.rollback()
        return _error(e.message, e.status)
    s.commit()
    return jsonify({"success": True, **pair})


@bp.post("/auth/logout")
def jwt_logout():
    s = db_session()
    refresh = (_json().get("refresh") or "").strip()
    if not refresh:
        return _error("Refresh token is required.")
    try:
        uid = revoke(s, refresh)
    except TokenError as e:
        s.rollback()
        return _error(e.message, e.status)
    record_event(s, actor=None, action="auth.logout", entity_type="User", entity_id=str(uid))
    s.commit()
    return jsonify({"success": True, "message": "Logged out."})


# ---------- OTP ----------
@bp.post("/auth/otp/request")
def otp_request():
    s = db_session()
    email = (_json().get("email") or "").strip()
    if not email:
        return _error("Email is required.")
    try:
        request_otp(s, email)
    except AuthError as e:
        s.rollback()
        return _error(str(e), 404)
    s.commit()
    return jsonify({"success": True, "message": "OTP sent to email."})


@bp.post("/auth/otp/verify")
def otp_verify():
    s = db_session()
    data = _json()
    try:
        user = verify_otp(s, data.get("email") or "", data.get("otp") or data.get("code") or "")
    except AuthError as e:
        s.rollback()
        return _error(str(e), 400)
    s.commit()
    return jsonify({"success": True, "message": "OTP verified.", **issue_token_pair(user)})


# ---------- Current user ----------
@bp.get("/users/me")
def users_me():
    user = getattr(g, "current_user", None)
    if not user:
        return _error("Authentication credentials were not provided.", 401)
    return jsonify(
        {
            "success": True,
            "user": {
                "id": user.id,
                "name": user.name,
                "email": user.email,
                "phone": user.phone,
                "role": user.role_key,
                "status": user.status,
                "is_verified": bool(user.is_verified),
            },
        }
    )
