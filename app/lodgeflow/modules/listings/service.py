from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from app.lodgeflow.audit import record_event
from app.lodgeflow.modules.bookings.models import ACTIVE_STATUSES, Booking, BookingUnit
from app.lodgeflow.modules.listings.models import (
    CURRENCIES,
    LISTING_TYPES,
    PRICE_UNITS,
    Listing,
    ListingUnit,
    Review,
)
from app.lodgeflow.utils import parse_decimal, parse_int, split_list

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.lodgeflow.models import User

SAMPLE_IMAGES_PER_TYPE = 5


class ListingError(ValueError):
    pass


def validate_listing_payload(payload: dict) -> list[str]:
    """Validate listing create/update payload. Returns list of errors."""
    errors = []
    if not (payload.get("name") or "").strip():
        errors.append("Name is required.")
    if not (payload.get("location") or "").strip():
        errors.append("Location is required.")
    if len((payload.get("description") or "").strip()) < 10:
        errors.append("Description must be at least 10 characters.")

    listing_type = (payload.get("type") or "").strip()
    if listing_type not in LISTING_TYPES:
        errors.append(f"Invalid type. Must be one of: {', '.join(LISTING_TYPES)}")
    price_unit = (payload.get("price_unit") or "").strip()
    if price_unit not in PRICE_UNITS:
        errors.append(f"Invalid price unit. Must be one of: {', '.join(PRICE_UNITS)}")
    currency = (payload.get("currency") or "").strip().upper()
    if currency not in CURRENCIES:
        errors.append(f"Invalid currency. Must be one of: {', '.join(CURRENCIES)}")

    price = parse_decimal(payload.get("price"))
    if price is None or price <= 0:
        errors.append("Price must be a positive number.")
    max_guests = parse_int(payload.get("max_guests"))
    if max_guests is None or max_guests < 1:
        errors.append("Max guests must be a whole number of at least 1.")
    if not split_list(payload.get("features")):
        errors.append("At least one feature is required (comma-separated).")

    inventory = parse_int(payload.get("inventory_count"))
    if inventory is None or inventory < 1:
        errors.append("Inventory count must be a whole number of at least 1.")
    return errors


def _apply_payload(listing: Listing, payload: dict) -> dict:
    changes = {}
    values = {
        "name": (payload.get("name") or "").strip(),
        "type": (payload.get("type") or "").strip(),
        "location": (payload.get("location") or "").strip(),
        "description": (payload.get("description") or "").strip(),
        "price": parse_decimal(payload.get("price")),
        "price_unit": (payload.get("price_unit") or "").strip(),
        "currency": (payload.get("currency") or "").strip().upper(),
        "max_guests": parse_int(payload.get("max_guests")),
        "features": split_list(payload.get("features")),
    }
    for field, new in values.items():
        old = getattr(listing, field, None)
        if old != new:
            changes[field] = {"old": old, "new": new}
            setattr(listing, field, new)
    return changes


def create_listing(s: "Session", payload: dict, inventory_count: int, user: "User") -> Listing:
    now = datetime.utcnow()
    listing = Listing(images=[], rating=0, created_at=now, updated_at=now)
    _apply_payload(listing, payload)
    listing.units = [ListingUnit(name=f"{listing.name} - Unit {i}") for i in range(1, inventory_count + 1)]
    s.add(listing)
    s.flush()

    record_event(
        s,
        actor=user,
        action="listing.create",
        entity_type="Listing",
        entity_id=str(listing.id),
        metadata={"name": listing.name, "type": listing.type, "inventory_count": inventory_count},
    )
    return listing


def held_unit_ids(s: "Session", listing: Listing) -> set[int]:
    """Units assigned to any Pending/Confirmed booking of the listing."""
    rows = (
        s.query(BookingUnit.unit_id)
        .join(Booking, Booking.id == BookingUnit.booking_id)
        .filter(Booking.listing_id == listing.id, Booking.status.in_(ACTIVE_STATUSES))
        .all()
    )
    return {r[0] for r in rows}


def update_listing(s: "Session", listing: Listing, payload: dict, new_inventory_count: int, user: "User") -> Listing:
    current = len(listing.units)
    to_remove: list[ListingUnit] = []
    if new_inventory_count < current:
        # Shrink from the newest units, skipping any still held by a booking.
        held = held_unit_ids(s, listing)
        needed = current - new_inventory_count
        free = [u for u in sorted(listing.units, key=lambda u: u.id, reverse=True) if u.id not in held]
        if len(free) < needed:
            raise ListingError("Cannot reduce inventory count as units are currently booked.")
        to_remove = free[:needed]

    changes = _apply_payload(listing, payload)

    for unit in to_remove:
        listing.units.remove(unit)
    if new_inventory_count > current:
        for i in range(current + 1, new_inventory_count + 1):
            listing.units.append(ListingUnit(name=f"{listing.name} - Unit {i}"))
    if new_inventory_count != current:
        changes["inventory_count"] = {"old": current, "new": new_inventory_count}

    listing.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="listing.edit",
        entity_type="Listing",
        entity_id=str(listing.id),
        metadata={"name": listing.name, "changes": changes},
    )
    return listing


def has_active_bookings(s: "Session", listing_id: int) -> bool:
    return (
        s.query(Booking.id)
        .filter(Booking.listing_id == listing_id, Booking.status.in_(ACTIVE_STATUSES))
        .first()
        is not None
    )


def delete_listing(s: "Session", listing: Listing, user: "User") -> None:
    if has_active_bookings(s, listing.id):
        raise ListingError("Cannot delete listing with active or pending bookings.")
    record_event(
        s,
        actor=user,
        action="listing.delete",
        entity_type="Listing",
        entity_id=str(listing.id),
        metadata={"name": listing.name},
    )
    s.delete(listing)


def bulk_delete_listings(s: "Session", ids: list[int], user: "User") -> int:
    listings = s.query(Listing).filter(Listing.id.in_(ids)).all() if ids else []
    if not listings:
        raise ListingError("No listings selected.")
    blocked = [l for l in listings if has_active_bookings(s, l.id)]
    if blocked:
        raise ListingError(f"Cannot delete. {len(blocked)} listing(s) have active or pending bookings.")
    for listing in listings:
        s.delete(listing)
    record_event(
        s,
        actor=user,
        action="listing.bulk_delete",
        entity_type="Listing",
        entity_id=",".join(str(l.id) for l in listings),
        metadata={"names": [l.name for l in listings]},
    )
    return len(listings)


def _union(*lists: list) -> list:
    out: list = []
    for items in lists:
        for item in items or []:
            if item not in out:
                out.append(item)
    return out


def merge_listings(s: "Session", primary: Listing, others: list[Listing], user: "User") -> Listing:
    """Fold `others` into `primary`: media/features unioned, children re-parented, others deleted."""
    others = [o for o in others if o.id != primary.id]
    if not others:
        raise ListingError("Select at least one other listing to merge.")

    primary.images = _union(primary.images, *[o.images for o in others])
    primary.features = _union(primary.features, *[o.features for o in others])

    reviewers = {r.user_id for r in primary.reviews if r.user_id is not None}
    for other in others:
        for review in list(other.reviews):
            other.reviews.remove(review)
            if review.user_id is not None and review.user_id in reviewers:
                s.delete(review)
                continue
            reviewers.add(review.user_id)
            primary.reviews.append(review)
        for unit in list(other.units):
            other.units.remove(unit)
            primary.units.append(unit)
        for booking in list(other.bookings):
            other.bookings.remove(booking)
            primary.bookings.append(booking)
    s.flush()
    for other in others:
        s.delete(other)

    recompute_rating(primary)
    primary.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="listing.merge",
        entity_type="Listing",
        entity_id=str(primary.id),
        metadata={"merged_ids": [o.id for o in others], "merged_names": [o.name for o in others]},
    )
    return primary


def filter_listings(
    s: "Session",
    location: str | None = None,
    listing_type: str | None = None,
    guests: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[Listing]:
    from app.lodgeflow.modules.bookings.service import available_units

    q = s.query(Listing)
    location = (location or "").strip()
    if location:
        q = q.filter(Listing.location.ilike(f"%{location}%"))
    if listing_type:
        q = q.filter(Listing.type == listing_type)
    if guests:
        q = q.filter(Listing.max_guests >= guests)
    listings = q.order_by(Listing.created_at.desc(), Listing.id.desc()).all()

    if date_from:
        date_to = date_to or date_from
        listings = [l for l in listings if available_units(s, l, date_from, date_to)]
    return listings


def listing_types_with_sample_images(s: "Session") -> list[dict]:
    """Per listing type, up to five sample images; a lone image is doubled so carousels have two frames."""
    out = []
    for listing_type in LISTING_TYPES:
        images: list[str] = []
        rows = s.query(Listing).filter(Listing.type == listing_type).order_by(Listing.id.asc()).all()
        for listing in rows:
            for key in listing.images or []:
                if len(images) >= SAMPLE_IMAGES_PER_TYPE:
                    break
                images.append(key)
        if len(images) == 1:
            images = images * 2
        if rows:
            out.append({"type": listing_type, "images": images, "count": len(rows)})
    return out


def recompute_rating(listing: Listing) -> float:
    approved = listing.approved_reviews
    listing.rating = round(sum(r.rating for r in approved) / len(approved), 2) if approved else 0
    return listing.rating


def add_or_update_review(s: "Session", listing: Listing, user: "User", rating: int | None, comment: str) -> Review:
    if rating is None or not 1 <= rating <= 5:
        raise ListingError("Rating must be between 1 and 5.")
    comment = (comment or "").strip()
    if not comment:
        raise ListingError("Comment is required.")

    now = datetime.utcnow()
    review = s.query(Review).filter(Review.listing_id == listing.id, Review.user_id == user.id).one_or_none()
    action = "review.update"
    if review is None:
        review = Review(listing=listing, user_id=user.id, created_at=now)
        s.add(review)
        action = "review.create"
    review.author = user.name
    review.rating = rating
    review.comment = comment
    # Any edit goes back through moderation.
    review.status = "pending"
    review.updated_at = now
    s.flush()
    recompute_rating(listing)

    record_event(
        s,
        actor=user,
        action=action,
        entity_type="Review",
        entity_id=str(review.id),
        metadata={"listing_id": listing.id, "rating": rating},
    )
    return review


def approve_review(s: "Session", review: Review, user: "User") -> Review:
    review.status = "approved"
    review.updated_at = datetime.utcnow()
    recompute_rating(review.listing)
    record_event(
        s,
        actor=user,
        action="review.approve",
        entity_type="Review",
        entity_id=str(review.id),
        metadata={"listing_id": review.listing_id, "rating": review.listing.rating},
    )
    return review


def delete_review(s: "Session", review: Review, user: "User") -> None:
    listing = review.listing
    listing.reviews.remove(review)
    s.delete(review)
    recompute_rating(listing)
    record_event(
        s,
        actor=user,
        action="review.delete",
        entity_type="Review",
        entity_id=str(review.id),
        metadata={"listing_id": listing.id, "rating": listing.rating},
    )


def upload_listing_image(
    s: "Session",
    listing: Listing,
    file_bytes: bytes,
    filename: str,
    content_type: str,
    user: "User",
) -> str:
    from flask import current_app
    from app.lodgeflow.storage import build_storage_key, file_digest_and_bytes, storage_from_config

    sha256, size_bytes = file_digest_and_bytes(file_bytes)
    storage_key = build_storage_key("listings", listing.id, filename)
    storage = storage_from_config(current_app.config)
    storage.put_bytes(storage_key, file_bytes, content_type=content_type)

    # JSON column: assign a new list so the change is tracked.
    images = list(listing.images or [])
    if storage_key not in images:
        images.append(storage_key)
    listing.images = images
    listing.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="listing.image_upload",
        entity_type="Listing",
        entity_id=str(listing.id),
        metadata={"storage_key": storage_key, "sha256": sha256, "size_bytes": size_bytes},
    )
    return storage_key


def remove_listing_image(s: "Session", listing: Listing, storage_key: str, user: "User") -> None:
    if storage_key not in (listing.images or []):
        raise ListingError("Image not found on this listing.")
    listing.images = [k for k in listing.images if k != storage_key]
    listing.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="listing.image_remove",
        entity_type="Listing",
        entity_id=str(listing.id),
        metadata={"storage_key": storage_key},
    )

