from datetime import date

import pytest

from app.lodgeflow.modules.bookings.service import available_units, booked_unit_ids, periods_overlap
from app.lodgeflow.modules.listings.models import Listing


@pytest.mark.parametrize(
    "a, b, expected",
    [
        # back-to-back stays share a checkout/checkin day without overlapping
        ((date(2026, 1, 1), date(2026, 1, 3)), (date(2026, 1, 3), date(2026, 1, 5)), False),
        ((date(2026, 1, 1), date(2026, 1, 4)), (date(2026, 1, 3), date(2026, 1, 5)), True),
        ((date(2026, 1, 1), date(2026, 1, 10)), (date(2026, 1, 3), date(2026, 1, 4)), True),
        ((date(2026, 1, 5), date(2026, 1, 6)), (date(2026, 1, 1), date(2026, 1, 3)), False),
        # same start always overlaps, even for single-day periods
        ((date(2026, 1, 3), date(2026, 1, 3)), (date(2026, 1, 3), date(2026, 1, 3)), True),
        ((date(2026, 1, 3), date(2026, 1, 3)), (date(2026, 1, 3), date(2026, 1, 6)), True),
        # a single day sitting on the end of another period does not overlap
        ((date(2026, 1, 1), date(2026, 1, 3)), (date(2026, 1, 3), date(2026, 1, 3)), False),
        # reversed endpoints are normalized
        ((date(2026, 1, 4), date(2026, 1, 1)), (date(2026, 1, 2), date(2026, 1, 6)), True),
    ],
)
def test_periods_overlap(a, b, expected):
    assert periods_overlap(*a, *b) is expected
    assert periods_overlap(*b, *a) is expected


def test_only_confirmed_bookings_hold_units(app, db, make_listing, make_booking):
    listing_id = make_listing(inventory_count="3")
    make_booking(listing_id, "guest@example.com", date(2026, 3, 1), date(2026, 3, 4), status="Confirmed", units=1)
    make_booking(listing_id, "guest@example.com", date(2026, 3, 1), date(2026, 3, 4), status="Pending", units=2)
    make_booking(listing_id, "user@example.com", date(2026, 3, 1), date(2026, 3, 4), status="Cancelled", units=3)

    listing = db.get(Listing, listing_id)
    held = booked_unit_ids(db, listing, date(2026, 3, 2), date(2026, 3, 3))
    assert held == {listing.units[0].id}
    free = available_units(db, listing, date(2026, 3, 2), date(2026, 3, 3))
    assert [u.id for u in free] == [u.id for u in listing.units[1:]]


def test_checkout_day_is_free_for_next_guest(app, db, make_listing, make_booking):
    listing_id = make_listing(inventory_count="1")
    make_booking(listing_id, "guest@example.com", date(2026, 3, 1), date(2026, 3, 4), status="Confirmed")
    listing = db.get(Listing, listing_id)
    assert available_units(db, listing, date(2026, 3, 4), date(2026, 3, 6))
    assert not available_units(db, listing, date(2026, 3, 3), date(2026, 3, 6))


def test_exclude_booking_frees_its_own_units(app, db, make_listing, make_booking):
    listing_id = make_listing(inventory_count="1")
    booking_id = make_booking(listing_id, "guest@example.com", date(2026, 3, 1), date(2026, 3, 4), status="Confirmed")
    listing = db.get(Listing, listing_id)
    assert not available_units(db, listing, date(2026, 3, 2), date(2026, 3, 5))
    assert len(available_units(db, listing, date(2026, 3, 2), date(2026, 3, 5), exclude_booking_id=booking_id)) == 1
