from datetime import date

import pytest

from app.lodgeflow.db import session_scope
from app.lodgeflow.models import User
from app.lodgeflow.modules.bookings.models import Booking
from app.lodgeflow.modules.listings.models import Listing, Review
from app.lodgeflow.modules.listings.service import (
    ListingError,
    add_or_update_review,
    approve_review,
    bulk_delete_listings,
    delete_review,
    filter_listings,
    merge_listings,
    update_listing,
    validate_listing_payload,
)


def _admin(s):
    return s.query(User).filter(User.email == "admin@example.com").one()


# ---------- Validation ----------
def test_valid_payload(listing_form):
    assert validate_listing_payload(listing_form()) == []


@pytest.mark.parametrize(
    "overrides, error",
    [
        ({"name": " "}, "Name is required."),
        ({"description": "short"}, "Description must be at least 10 characters."),
        ({"type": "villa"}, "Invalid type. Must be one of: hotel, events, restaurant"),
        ({"price_unit": "week"}, "Invalid price unit. Must be one of: night, hour, person"),
        ({"currency": "JPY"}, "Invalid currency. Must be one of: USD, EUR, GBP, NGN"),
        ({"price": "0"}, "Price must be a positive number."),
        ({"price": "abc"}, "Price must be a positive number."),
        ({"max_guests": "0"}, "Max guests must be a whole number of at least 1."),
        ({"features": " , "}, "At least one feature is required (comma-separated)."),
        ({"inventory_count": ""}, "Inventory count must be a whole number of at least 1."),
    ],
)
def test_invalid_payload(listing_form, overrides, error):
    assert error in validate_listing_payload(listing_form(**overrides))


# ---------- Admin CRUD ----------
def test_admin_creates_listing_with_units(client, login, listing_form, app):
    token = login("admin@example.com")
    assert client.get("/admin/listings/new").status_code == 200
    r = client.post("/admin/listings/new", data={**listing_form(inventory_count="3", currency="ngn"), "csrf_token": token})
    assert r.status_code == 302

    with session_scope(app) as s:
        listing = s.query(Listing).one()
        assert listing.currency == "NGN"
        assert listing.features == ["wifi", "breakfast"]
        assert [u.name for u in listing.units] == [
            "Lagoon Lodge - Unit 1",
            "Lagoon Lodge - Unit 2",
            "Lagoon Lodge - Unit 3",
        ]
        listing_id = listing.id
    assert r.headers["Location"].endswith(f"/admin/listings/{listing_id}")
    assert client.get(f"/admin/listings/{listing_id}").status_code == 200


def test_create_with_errors_flashes(client, login, listing_form, app):
    token = login("admin@example.com")
    r = client.post(
        "/admin/listings/new",
        data={**listing_form(price="-1"), "csrf_token": token},
        follow_redirects=True,
    )
    assert b"Price must be a positive number." in r.data
    with session_scope(app) as s:
        assert s.query(Listing).count() == 0


def test_staff_can_edit_but_not_create(client, login, listing_form, make_listing, app):
    listing_id = make_listing()
    token = login("staff@example.com")
    assert client.post("/admin/listings/new", data={**listing_form(), "csrf_token": token}).status_code == 403
    r = client.post(
        f"/admin/listings/{listing_id}/edit",
        data={**listing_form(name="Lagoon Lodge II", inventory_count="4"), "csrf_token": token},
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        listing = s.get(Listing, listing_id)
        assert listing.name == "Lagoon Lodge II"
        assert listing.inventory_count == 4


def test_shrinking_inventory_keeps_booked_units(app, make_listing, make_booking, listing_form):
    listing_id = make_listing(inventory_count="3")
    make_booking(listing_id, "guest@example.com", date(2026, 7, 1), date(2026, 7, 3), status="Confirmed", units=2)

    with session_scope(app) as s:
        listing = s.get(Listing, listing_id)
        update_listing(s, listing, listing_form(), 2, _admin(s))
        assert [u.name for u in listing.units] == ["Lagoon Lodge - Unit 1", "Lagoon Lodge - Unit 2"]

    with session_scope(app) as s:
        listing = s.get(Listing, listing_id)
        with pytest.raises(ListingError, match="currently booked"):
            update_listing(s, listing, listing_form(), 1, _admin(s))


def test_cancelled_bookings_do_not_block_shrink(app, make_listing, make_booking, listing_form):
    listing_id = make_listing(inventory_count="2")
    make_booking(listing_id, "guest@example.com", date(2026, 7, 1), date(2026, 7, 3), status="Cancelled", units=2)
    with session_scope(app) as s:
        listing = s.get(Listing, listing_id)
        update_listing(s, listing, listing_form(), 1, _admin(s))
        assert listing.inventory_count == 1


def test_delete_blocked_by_pending_booking(client, login, make_listing, make_booking, app):
    blocked = make_listing(name="Busy")
    free = make_listing(name="Quiet")
    make_booking(blocked, "guest@example.com", date(2026, 7, 1), date(2026, 7, 2))
    token = login("admin@example.com")

    r = client.post(f"/admin/listings/{blocked}/delete", data={"csrf_token": token}, follow_redirects=True)
    assert b"Cannot delete listing with active or pending bookings." in r.data
    r = client.post(f"/admin/listings/{free}/delete", data={"csrf_token": token})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(Listing, blocked) is not None
        assert s.get(Listing, free) is None


def test_bulk_delete_is_all_or_nothing(app, make_listing, make_booking):
    a = make_listing(name="A")
    b = make_listing(name="B")
    c = make_listing(name="C")
    make_booking(c, "guest@example.com", date(2026, 7, 1), date(2026, 7, 2), status="Confirmed")

    with session_scope(app) as s:
        with pytest.raises(ListingError, match="1 listing"):
            bulk_delete_listings(s, [a, b, c], _admin(s))
    with session_scope(app) as s:
        assert bulk_delete_listings(s, [a, b], _admin(s)) == 2
    with session_scope(app) as s:
        assert [l.id for l in s.query(Listing).all()] == [c]
        with pytest.raises(ListingError, match="No listings"):
            bulk_delete_listings(s, [], _admin(s))


def test_merge_folds_units_bookings_and_reviews(app, make_listing, make_booking):
    primary_id = make_listing(name="Main", features="wifi, pool", inventory_count="1")
    other_id = make_listing(name="Annex", features="pool, gym", inventory_count="2")
    booking_id = make_booking(other_id, "guest@example.com", date(2026, 7, 1), date(2026, 7, 2))

    with session_scope(app) as s:
        admin = _admin(s)
        guest = s.query(User).filter(User.email == "guest@example.com").one()
        user = s.query(User).filter(User.email == "user@example.com").one()
        primary, other = s.get(Listing, primary_id), s.get(Listing, other_id)
        approve_review(s, add_or_update_review(s, primary, guest, 4, "Nice"), admin)
        approve_review(s, add_or_update_review(s, other, guest, 2, "Meh"), admin)
        approve_review(s, add_or_update_review(s, other, user, 2, "Fine"), admin)

    with session_scope(app) as s:
        primary, other = s.get(Listing, primary_id), s.get(Listing, other_id)
        merge_listings(s, primary, [other], _admin(s))

    with session_scope(app) as s:
        primary = s.get(Listing, primary_id)
        assert s.get(Listing, other_id) is None
        assert primary.features == ["wifi", "pool", "gym"]
        assert primary.inventory_count == 3
        assert s.get(Booking, booking_id).listing_id == primary_id
        # guest's second review is dropped, one review per user per listing
        assert sorted(r.comment for r in primary.reviews) == ["Fine", "Nice"]
        assert primary.rating == 3


def test_merge_requires_another_listing(app, make_listing):
    listing_id = make_listing()
    with session_scope(app) as s:
        listing = s.get(Listing, listing_id)
        with pytest.raises(ListingError):
            merge_listings(s, listing, [listing], _admin(s))


# ---------- Reviews ----------
def test_review_rating_counts_only_approved(app, make_listing):
    listing_id = make_listing()
    with session_scope(app) as s:
        admin = _admin(s)
        guest = s.query(User).filter(User.email == "guest@example.com").one()
        listing = s.get(Listing, listing_id)

        review = add_or_update_review(s, listing, guest, 4, "Great stay")
        assert review.status == "pending"
        assert listing.rating == 0
        approve_review(s, review, admin)
        assert listing.rating == 4

        # Editing sends it back to moderation.
        add_or_update_review(s, listing, guest, 2, "Changed my mind")
        assert s.query(Review).count() == 1
        assert listing.rating == 0

        approve_review(s, review, admin)
        delete_review(s, review, admin)
        assert listing.rating == 0

        with pytest.raises(ListingError, match="between 1 and 5"):
            add_or_update_review(s, listing, guest, 6, "Too good")
        with pytest.raises(ListingError, match="Comment"):
            add_or_update_review(s, listing, guest, 3, "  ")


def test_review_via_pages(client, login, make_listing, app):
    listing_id = make_listing()
    token = login("guest@example.com")
    r = client.post(f"/listings/{listing_id}/reviews", data={"csrf_token": token, "rating": "5", "comment": "Superb"})
    assert r.status_code == 302

    client.get("/auth/logout")
    token = login("staff@example.com")
    r = client.get("/admin/reviews")
    assert b"Superb" in r.data
    with session_scope(app) as s:
        review_id = s.query(Review).one().id
    r = client.post(f"/admin/reviews/{review_id}/approve", data={"csrf_token": token})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(Listing, listing_id).rating == 5


def test_user_role_cannot_review(client, login, make_listing):
    listing_id = make_listing()
    token = login("user@example.com")
    r = client.post(f"/listings/{listing_id}/reviews", data={"csrf_token": token, "rating": "5", "comment": "Hi"})
    assert r.status_code == 403


# ---------- Search ----------
def test_filter_listings(db, make_listing, make_booking):
    hotel = make_listing(name="Harbour Hotel", location="Victoria Island, Lagos", max_guests="2", inventory_count="1")
    hall = make_listing(name="Grand Hall", type="events", price_unit="hour", location="Abuja", max_guests="200", inventory_count="1")
    make_booking(hotel, "guest@example.com", date(2026, 8, 1), date(2026, 8, 5), status="Confirmed")

    ids = lambda rows: {l.id for l in rows}  # noqa: E731
    assert ids(filter_listings(db, location="lagos")) == {hotel}
    assert ids(filter_listings(db, listing_type="events")) == {hall}
    assert ids(filter_listings(db, guests=10)) == {hall}
    assert ids(filter_listings(db, date_from=date(2026, 8, 2), date_to=date(2026, 8, 3))) == {hall}
    assert ids(filter_listings(db, date_from=date(2026, 8, 5), date_to=date(2026, 8, 7))) == {hotel, hall}


def test_search_page(client, make_listing):
    make_listing(name="Harbour Hotel", location="Victoria Island, Lagos")
    make_listing(name="Grand Hall", type="events", price_unit="hour", location="Abuja")
    r = client.get("/search?location=abuja")
    assert r.status_code == 200
    assert b"Grand Hall" in r.data
    assert b"Harbour Hotel" not in r.data
