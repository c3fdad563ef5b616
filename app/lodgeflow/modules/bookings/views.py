from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.lodgeflow.db import db_session
from app.lodgeflow.models import User
from app.lodgeflow.modules.bookings.models import BOOKING_STATUSES, PAYMENT_METHODS, Booking
from app.lodgeflow.modules.bookings.service import (
    BookingError,
    add_bill,
    add_payment,
    available_units,
    booking_financials,
    cancel_booking,
    complete_booking,
    confirm_booking,
    create_booking,
    query_bookings,
    set_discount,
    update_booking,
)
from app.lodgeflow.modules.listings.models import Listing
from app.lodgeflow.rbac import require_login, user_can, user_has_permission
from app.lodgeflow.utils import paginate, parse_date, parse_int

bp = Blueprint("bookings", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_booking(s, booking_id: int) -> Booking:
    booking = s.get(Booking, booking_id)
    if not booking:
        abort(404)
    return booking


def _require(key: str, booking: Booking) -> User:
    u = _current_user()
    if not user_can(u, key, owner_id=booking.user_id):
        g.missing_permission = key
        abort(403)
    return u


def _require_general(key: str) -> User:
    u = _current_user()
    if not user_has_permission(u, key):
        g.missing_permission = key
        abort(403)
    return u


def _back(booking_id: int):
    return redirect(url_for("bookings.booking_detail", booking_id=booking_id))


# ---------- List ----------
@bp.get("/bookings")
@require_login
def bookings_list():
    s = db_session()
    u = _current_user()
    listing_id = parse_int(request.args.get("listing_id"))
    user_id = parse_int(request.args.get("user_id"))
    date_from = parse_date(request.args.get("from"))
    date_to = parse_date(request.args.get("to"))
    location = (request.args.get("location") or "").strip()
    status = (request.args.get("status") or "").strip()
    if status not in BOOKING_STATUSES:
        status = ""

    q = query_bookings(s, u, listing_id, user_id, date_from, date_to, location or None, status or None)
    page = paginate(q, parse_int(request.args.get("page"), 1))
    return render_template(
        "bookings/list.html",
        page=page,
        bookings=page.items,
        listing_id=listing_id,
        user_id=user_id,
        date_from=request.args.get("from") or "",
        date_to=request.args.get("to") or "",
        location=location,
        status=status,
        statuses=BOOKING_STATUSES,
        listings=s.query(Listing).order_by(Listing.name.asc()).all(),
        can_view_all=user_has_permission(u, "booking:read"),
    )


# ---------- Create ----------
@bp.post("/listings/<int:listing_id>/book")
def booking_create(listing_id: int):
    """
    Book from the listing page.

    Signed-in users book for themselves; staff holding `booking:create` may book on
    behalf of a guest email. Anonymous visitors must supply an email and get a
    provisional account.
    """
    s = db_session()
    listing = s.get(Listing, listing_id)
    if not listing:
        abort(404)

    u: User | None = getattr(g, "current_user", None)
    guest_email = (request.form.get("guest_email") or "").strip()
    owner: User | None = None
    if u:
        if guest_email and user_has_permission(u, "booking:create"):
            owner = None
        elif user_can(u, "booking:create", owner_id=u.id):
            owner = u
            guest_email = ""
        else:
            g.missing_permission = "booking:create:own"
            abort(403)
    elif not guest_email:
        flash("Sign in or provide an email address to book.", "danger")
        return redirect(url_for("public.listing_detail", listing_id=listing_id))

    try:
        booking, message = create_booking(
            s,
            listing,
            start=parse_date(request.form.get("start_date")),
            end=parse_date(request.form.get("end_date")),
            guests=parse_int(request.form.get("guests")),
            num_units=parse_int(request.form.get("num_units"), 1),
            user=owner,
            guest_email=guest_email or None,
            actor=u,
        )
    except BookingError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("public.listing_detail", listing_id=listing_id))
    s.commit()
    flash(message, "success")
    if u and user_can(u, "booking:read", owner_id=booking.user_id):
        return _back(booking.id)
    return redirect(url_for("public.listing_detail", listing_id=listing_id))


# ---------- Detail ----------
@bp.get("/bookings/<int:booking_id>")
@require_login
def booking_detail(booking_id: int):
    s = db_session()
    booking = _get_booking(s, booking_id)
    _require("booking:read", booking)
    return render_template(
        "bookings/detail.html",
        booking=booking,
        fin=booking_financials(booking),
        payment_methods=PAYMENT_METHODS,
    )


# ---------- Edit ----------
@bp.get("/bookings/<int:booking_id>/edit")
@require_login
def booking_edit_get(booking_id: int):
    s = db_session()
    booking = _get_booking(s, booking_id)
    _require("booking:update", booking)
    free = available_units(s, booking.listing, booking.start_date, booking.end_date, exclude_booking_id=booking.id)
    return render_template("bookings/edit.html", booking=booking, available_count=len(free))


@bp.post("/bookings/<int:booking_id>/edit")
@require_login
def booking_edit_post(booking_id: int):
    s = db_session()
    booking = _get_booking(s, booking_id)
    u = _require("booking:update", booking)
    try:
        update_booking(
            s,
            booking,
            start=parse_date(request.form.get("start_date")),
            end=parse_date(request.form.get("end_date")),
            guests=parse_int(request.form.get("guests")),
            num_units=parse_int(request.form.get("num_units")),
            editor=u,
        )
    except BookingError as e:
        s.rollback()
        flash(str(e), "danger")
        return redirect(url_for("bookings.booking_edit_get", booking_id=booking_id))
    s.commit()
    flash("Booking updated and awaiting confirmation.", "success")
    return _back(booking_id)


# ---------- Status transitions ----------
@bp.post("/bookings/<int:booking_id>/confirm")
@require_login
def booking_confirm(booking_id: int):
    s = db_session()
    booking = _get_booking(s, booking_id)
    u = _require_general("booking:confirm")
    try:
        confirm_booking(s, booking, u)
    except BookingError as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(booking_id)
    s.commit()
    flash("Booking confirmed.", "success")
    return _back(booking_id)


@bp.post("/bookings/<int:booking_id>/cancel")
@require_login
def booking_cancel(booking_id: int):
    s = db_session()
    booking = _get_booking(s, booking_id)
    u = _require("booking:cancel", booking)
    try:
        cancel_booking(s, booking, u, reason=(request.form.get("reason") or "").strip() or None)
    except BookingError as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(booking_id)
    s.commit()
    flash("Booking cancelled.", "success")
    return _back(booking_id)


@bp.post("/bookings/<int:booking_id>/complete")
@require_login
def booking_complete(booking_id: int):
    s = db_session()
    booking = _get_booking(s, booking_id)
    u = _require_general("booking:update")
    try:
        complete_booking(s, booking, u)
    except BookingError as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(booking_id)
    s.commit()
    flash("Booking marked as completed.", "success")
    return _back(booking_id)


# ---------- Bills, payments, discount ----------
@bp.post("/bookings/<int:booking_id>/bills")
@require_login
def booking_bill_post(booking_id: int):
    s = db_session()
    booking = _get_booking(s, booking_id)
    u = _require_general("booking:update")
    try:
        add_bill(s, booking, request.form.get("description") or "", request.form.get("amount"), u)
    except BookingError as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(booking_id)
    s.commit()
    flash("Bill added.", "success")
    return _back(booking_id)


@bp.post("/bookings/<int:booking_id>/payments")
@require_login
def booking_payment_post(booking_id: int):
    s = db_session()
    booking = _get_booking(s, booking_id)
    u = _require_general("booking:update")
    try:
        add_payment(
            s,
            booking,
            request.form.get("amount"),
            request.form.get("method") or "cash",
            u,
            reference=request.form.get("reference"),
        )
    except BookingError as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(booking_id)
    s.commit()
    flash("Payment recorded.", "success")
    return _back(booking_id)


@bp.post("/bookings/<int:booking_id>/discount")
@require_login
def booking_discount_post(booking_id: int):
    s = db_session()
    booking = _get_booking(s, booking_id)
    u = _require_general("booking:update")
    try:
        set_discount(s, booking, request.form.get("discount"), u)
    except BookingError as e:
        s.rollback()
        flash(str(e), "danger")
        return _back(booking_id)
    s.commit()
    flash("Discount updated.", "success")
    return _back(booking_id)
