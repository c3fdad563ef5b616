from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from app.lodgeflow.audit import record_event
from app.lodgeflow.modules.bookings.models import PAYMENT_METHODS, Booking, BookingBill, BookingPayment
from app.lodgeflow.modules.listings.models import Listing, ListingUnit
from app.lodgeflow.utils import parse_decimal

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.lodgeflow.models import User

logger = logging.getLogger(__name__)

# Billable hours per day for hourly-priced (event) listings.
EVENT_BOOKING_DAILY_HRS = 8
MAX_DISCOUNT_PERCENT = 100


class BookingError(ValueError):
    pass


def periods_overlap(a_start, a_end, b_start, b_end) -> bool:
    """
    SQL OVERLAPS: each period is half-open [start, end), except a zero-length period,
    which is the single instant `start`. Endpoints may be given in either order.
    """
    if a_start > a_end:
        a_start, a_end = a_end, a_start
    if b_start > b_end:
        b_start, b_end = b_end, b_start
    if a_start > b_start:
        return a_start < b_end
    if a_start < b_start:
        return b_start < a_end
    return True


def booked_unit_ids(
    s: "Session",
    listing: Listing,
    start: date,
    end: date,
    exclude_booking_id: int | None = None,
) -> set[int]:
    """Units held by Confirmed bookings of `listing` overlapping [start, end)."""
    q = s.query(Booking).filter(
        Booking.listing_id == listing.id,
        Booking.status == "Confirmed",
        Booking.start_date <= max(start, end),
        Booking.end_date >= min(start, end),
    )
    if exclude_booking_id is not None:
        q = q.filter(Booking.id != exclude_booking_id)
    held: set[int] = set()
    for b in q.all():
        if periods_overlap(b.start_date, b.end_date, start, end):
            held.update(u.id for u in b.units)
    return held


def available_units(
    s: "Session",
    listing: Listing,
    start: date,
    end: date,
    exclude_booking_id: int | None = None,
) -> list[ListingUnit]:
    held = booked_unit_ids(s, listing, start, end, exclude_booking_id=exclude_booking_id)
    units = s.query(ListingUnit).filter(ListingUnit.listing_id == listing.id).order_by(ListingUnit.id.asc()).all()
    return [u for u in units if u.id not in held]


def _validate_request(listing: Listing, start: date | None, end: date | None, guests: int | None, num_units: int | None) -> None:
    if not start or not end:
        raise BookingError("Start and end dates are required.")
    if end < start:
        raise BookingError("End date must be on or after the start date.")
    if not num_units or num_units < 1:
        raise BookingError("At least one unit must be booked.")
    if not guests or guests < 1:
        raise BookingError("At least one guest is required.")
    capacity = listing.max_guests * num_units
    if guests > capacity:
        raise BookingError(f"Number of guests exceeds the maximum allowed ({capacity}) for {num_units} unit(s).")


def _stamp(booking: Booking, actor: "User | None", message: str | None) -> None:
    now = datetime.utcnow()
    booking.action_by_user_id = actor.id if actor else None
    booking.action_at = now
    booking.status_message = message
    booking.updated_at = now


def _actor_name(actor: "User | None") -> str:
    return (actor.name or actor.email) if actor else "system"


def create_booking(
    s: "Session",
    listing: Listing,
    *,
    start: date | None,
    end: date | None,
    guests: int | None,
    num_units: int | None,
    user: "User | None" = None,
    guest_email: str | None = None,
    actor: "User | None" = None,
) -> tuple[Booking, str]:
    """
    Create a Pending booking holding the first `num_units` free units.

    With no `user`, the booking is attached to the account matching `guest_email`, or to a
    new provisional guest account (which is mailed a set-password link). Returns the
    booking and a user-facing message.
    """
    from app.lodgeflow import mailer
    from app.lodgeflow.modules.users.service import get_or_create_guest_user
    from app.lodgeflow.tokens import make_password_token

    _validate_request(listing, start, end, guests, num_units)

    provisional_created = False
    if user is None:
        if not (guest_email or "").strip():
            raise BookingError("A guest email is required.")
        try:
            user, provisional_created = get_or_create_guest_user(s, guest_email, actor=actor)
        except ValueError as e:
            raise BookingError(str(e)) from e

    free = available_units(s, listing, start, end)
    if len(free) < num_units:
        raise BookingError(f"Not enough units available for the selected dates. Available: {len(free)}")

    now = datetime.utcnow()
    booking = Booking(
        listing=listing,
        user=user,
        start_date=start,
        end_date=end,
        guests=guests,
        status="Pending",
        discount=Decimal("0"),
        units=free[:num_units],
        created_at=now,
        updated_at=now,
    )
    s.add(booking)
    s.flush()

    record_event(
        s,
        actor=actor or user,
        action="booking.create",
        entity_type="Booking",
        entity_id=str(booking.id),
        metadata={
            "listing_id": listing.id,
            "user_id": user.id,
            "start_date": start,
            "end_date": end,
            "guests": guests,
            "units": [u.name for u in booking.units],
        },
    )

    if provisional_created:
        mailer.send_set_password_email(user, make_password_token(user))
        message = f"Booking created. A provisional account was made for {user.email}. Please check email for details."
    else:
        message = "Your booking request has been sent and is pending confirmation."
    logger.info("Booking %s created for listing %s (units=%s)", booking.id, listing.id, [u.id for u in booking.units])
    mailer.send_booking_request_email(booking)
    return booking, message


def update_booking(
    s: "Session",
    booking: Booking,
    *,
    start: date | None,
    end: date | None,
    guests: int | None,
    num_units: int | None,
    editor: "User",
) -> Booking:
    if booking.status in ("Cancelled", "Completed"):
        raise BookingError(f"{booking.status} bookings cannot be modified.")
    _validate_request(booking.listing, start, end, guests, num_units)

    free = available_units(s, booking.listing, start, end, exclude_booking_id=booking.id)
    if len(free) < num_units:
        raise BookingError(f"Not enough units available for the new dates. Available: {len(free)}")

    before = {
        "start_date": booking.start_date,
        "end_date": booking.end_date,
        "guests": booking.guests,
        "units": [u.name for u in booking.units],
        "status": booking.status,
    }
    booking.start_date = start
    booking.end_date = end
    booking.guests = guests
    booking.units = free[:num_units]
    # Any change needs a fresh confirmation.
    booking.status = "Pending"
    _stamp(booking, editor, f"Booking was modified by {_actor_name(editor)} on {date.today().isoformat()}")

    record_event(
        s,
        actor=editor,
        action="booking.edit",
        entity_type="Booking",
        entity_id=str(booking.id),
        metadata={
            "before": before,
            "after": {"start_date": start, "end_date": end, "guests": guests, "units": [u.name for u in booking.units]},
        },
    )
    return booking


def confirm_booking(s: "Session", booking: Booking, admin: "User") -> Booking:
    from app.lodgeflow import mailer

    if booking.status != "Pending":
        raise BookingError("Only pending bookings can be confirmed.")
    held = booked_unit_ids(s, booking.listing, booking.start_date, booking.end_date, exclude_booking_id=booking.id)
    for unit in booking.units:
        if unit.id in held:
            raise BookingError(f"Unit {unit.name} is no longer available for the selected dates.")

    booking.status = "Confirmed"
    _stamp(booking, admin, f"Booking confirmed by {_actor_name(admin)} on {date.today().isoformat()}")
    record_event(
        s,
        actor=admin,
        action="booking.confirm",
        entity_type="Booking",
        entity_id=str(booking.id),
        metadata={"listing_id": booking.listing_id, "units": [u.name for u in booking.units]},
    )
    logger.info("Booking %s confirmed by user %s", booking.id, admin.id)
    mailer.send_booking_confirmation_email(booking)
    return booking


def cancel_booking(s: "Session", booking: Booking, actor: "User", reason: str | None = None) -> Booking:
    if booking.status == "Cancelled":
        raise BookingError("Booking is already cancelled.")
    if booking.status == "Completed":
        raise BookingError("Completed bookings cannot be cancelled.")
    old_status = booking.status
    booking.status = "Cancelled"
    _stamp(booking, actor, f"Booking cancelled by {_actor_name(actor)} on {date.today().isoformat()}")
    record_event(
        s,
        actor=actor,
        action="booking.cancel",
        entity_type="Booking",
        entity_id=str(booking.id),
        reason=reason,
        metadata={"old_status": old_status},
    )
    return booking


def complete_booking(s: "Session", booking: Booking, actor: "User") -> Booking:
    if booking.status != "Confirmed":
        raise BookingError("Only confirmed bookings can be marked as completed.")
    booking.status = "Completed"
    _stamp(booking, actor, f"Booking completed by {_actor_name(actor)} on {date.today().isoformat()}")
    record_event(s, actor=actor, action="booking.complete", entity_type="Booking", entity_id=str(booking.id))
    return booking


def _positive_amount(raw) -> Decimal:
    amount = raw if isinstance(raw, Decimal) else parse_decimal(raw)
    if amount is None or amount <= 0:
        raise BookingError("Amount must be a positive number.")
    return amount


def add_bill(s: "Session", booking: Booking, description: str, amount, actor: "User") -> BookingBill:
    description = (description or "").strip()
    if not description:
        raise BookingError("Bill description is required.")
    bill = BookingBill(description=description, amount=_positive_amount(amount), created_by_user_id=actor.id)
    booking.bills.append(bill)
    booking.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=actor,
        action="booking.bill_add",
        entity_type="Booking",
        entity_id=str(booking.id),
        metadata={"description": description, "amount": bill.amount},
    )
    return bill


def add_payment(
    s: "Session",
    booking: Booking,
    amount,
    method: str,
    actor: "User",
    reference: str | None = None,
) -> BookingPayment:
    method = (method or "cash").strip().lower()
    if method not in PAYMENT_METHODS:
        raise BookingError(f"Invalid payment method. Must be one of: {', '.join(PAYMENT_METHODS)}")
    payment = BookingPayment(
        amount=_positive_amount(amount),
        method=method,
        reference=(reference or "").strip() or None,
        created_by_user_id=actor.id,
    )
    booking.payments.append(payment)
    booking.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=actor,
        action="booking.payment_add",
        entity_type="Booking",
        entity_id=str(booking.id),
        metadata={"amount": payment.amount, "method": method, "reference": payment.reference},
    )
    return payment


def set_discount(s: "Session", booking: Booking, percent, actor: "User") -> Booking:
    pct = percent if isinstance(percent, Decimal) else parse_decimal(percent)
    if pct is None or pct < 0 or pct > MAX_DISCOUNT_PERCENT:
        raise BookingError(f"Discount must be between 0 and {MAX_DISCOUNT_PERCENT}.")
    old = booking.discount
    booking.discount = pct
    booking.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="booking.discount",
        entity_type="Booking",
        entity_id=str(booking.id),
        metadata={"old": old, "new": pct},
    )
    return booking


def query_bookings(
    s: "Session",
    viewer: "User",
    listing_id: int | None = None,
    user_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    location: str | None = None,
    status: str | None = None,
):
    from app.lodgeflow.rbac import user_has_permission

    q = s.query(Booking)
    if user_has_permission(viewer, "booking:read"):
        if user_id:
            q = q.filter(Booking.user_id == user_id)
    else:
        q = q.filter(Booking.user_id == viewer.id)
    if listing_id:
        q = q.filter(Booking.listing_id == listing_id)
    if date_from:
        q = q.filter(Booking.end_date >= date_from)
    if date_to:
        q = q.filter(Booking.start_date <= date_to)
    if location:
        q = q.join(Listing, Listing.id == Booking.listing_id).filter(Listing.location.ilike(f"%{location}%"))
    if status:
        q = q.filter(Booking.status == status)
    return q.order_by(Booking.start_date.desc(), Booking.id.desc())


@dataclass(frozen=True)
class BookingFinancials:
    duration_days: int
    nights: int
    base: Decimal
    discount_amount: Decimal
    bills_total: Decimal
    payments_total: Decimal
    total_bill: Decimal
    total_payments: Decimal
    balance: Decimal


def booking_financials(booking: Booking) -> BookingFinancials:
    listing = booking.listing
    price = Decimal(str(listing.price or 0))
    units = len(booking.units)
    duration_days = (booking.end_date - booking.start_date).days + 1
    nights = duration_days - 1 if duration_days > 1 else 1

    if listing.price_unit == "night":
        base = price * nights * units
    elif listing.price_unit == "hour":
        base = price * duration_days * EVENT_BOOKING_DAILY_HRS * units
    elif listing.price_unit == "person":
        base = price * booking.guests * units
    else:
        base = Decimal("0")

    discount_amount = base * Decimal(str(booking.discount or 0)) / 100
    bills_total = sum((Decimal(str(b.amount)) for b in booking.bills), Decimal("0"))
    payments_total = sum((Decimal(str(p.amount)) for p in booking.payments), Decimal("0"))
    total_bill = base + bills_total
    total_payments = payments_total + discount_amount
    return BookingFinancials(
        duration_days=duration_days,
        nights=nights,
        base=base,
        discount_amount=discount_amount,
        bills_total=bills_total,
        payments_total=payments_total,
        total_bill=total_bill,
        total_payments=total_payments,
        balance=total_bill - total_payments,
    )
