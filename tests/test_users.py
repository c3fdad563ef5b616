from datetime import date

import pytest
from werkzeug.security import check_password_hash

from app.lodgeflow.db import session_scope
from app.lodgeflow.models import User
from app.lodgeflow.modules.bookings.models import Booking
from app.lodgeflow.modules.listings.models import Listing, Review
from app.lodgeflow.modules.listings.service import add_or_update_review, approve_review
from app.lodgeflow.modules.users.service import (
    UserError,
    change_password,
    consolidate_users,
    create_user,
    delete_user,
    update_user,
)


def _user(s, email):
    return s.query(User).filter(User.email == email).one()


# ---------- Service ----------
def test_create_user_without_password_is_provisional(db):
    admin = _user(db, "admin@example.com")
    user = create_user(db, name="Pat", email=" Pat@Example.com ", password=None, role_key="user", actor=admin)
    assert user.email == "pat@example.com"
    assert user.status == "provisional"
    assert user.role_key == "user"


def test_create_user_unknown_role(db):
    with pytest.raises(UserError, match="not configured"):
        create_user(db, name="Pat", email="pat@example.com", password="longenough", role_key="owner")


def test_update_user_guards_self(db):
    admin = _user(db, "admin@example.com")
    with pytest.raises(UserError, match="own role"):
        update_user(db, admin, {"role": "guest"}, admin)
    with pytest.raises(UserError, match="disable your own"):
        update_user(db, admin, {"status": "disabled"}, admin)
    with pytest.raises(UserError, match="Invalid status"):
        update_user(db, _user(db, "guest@example.com"), {"status": "banned"}, admin)
    with pytest.raises(UserError, match="delete your own"):
        delete_user(db, admin, admin)


def test_change_password(db):
    guest = _user(db, "guest@example.com")
    with pytest.raises(UserError, match="incorrect"):
        change_password(db, guest, "wrong", "new-password-1", "new-password-1")
    with pytest.raises(UserError, match="do not match"):
        change_password(db, guest, "password123", "new-password-1", "new-password-2")
    change_password(db, guest, "password123", "new-password-1", "new-password-1")
    assert check_password_hash(guest.password_hash, "new-password-1")


def test_consolidate_moves_bookings_and_reviews(db, make_listing):
    first_id = make_listing(name="First Lodge")
    second_id = make_listing(name="Second Lodge")
    admin = _user(db, "admin@example.com")
    primary = _user(db, "guest@example.com")
    dup = create_user(db, name="Gina G", email="gina.dup@example.com", password="longenough", actor=admin)
    first, second = db.get(Listing, first_id), db.get(Listing, second_id)
    db.add(Booking(listing=first, user=dup, start_date=date(2026, 5, 1), end_date=date(2026, 5, 2), guests=1, status="Pending", discount=0))
    db.flush()

    approve_review(db, add_or_update_review(db, first, primary, 5, "Lovely"), admin)
    approve_review(db, add_or_update_review(db, first, dup, 1, "Awful"), admin)
    approve_review(db, add_or_update_review(db, second, dup, 4, "Good"), admin)
    assert first.rating == 3

    summary = consolidate_users(db, primary, [dup], admin)
    db.flush()
    assert summary == {"bookings": 1, "reviews": 1, "reviews_dropped": 1, "accounts": 1}
    assert db.query(User).filter(User.email == "gina.dup@example.com").one_or_none() is None
    assert db.query(Booking).one().user_id == primary.id
    assert {r.listing_id for r in db.query(Review).filter(Review.user_id == primary.id)} == {first.id, second.id}
    assert first.rating == 5


def test_consolidate_rejects_self_and_empty(db):
    admin = _user(db, "admin@example.com")
    guest = _user(db, "guest@example.com")
    with pytest.raises(UserError, match="at least one"):
        consolidate_users(db, guest, [guest], admin)
    with pytest.raises(UserError, match="own account"):
        consolidate_users(db, guest, [admin], admin)


# ---------- Admin pages ----------
def test_admin_creates_provisional_user(client, login, app, outbox):
    token = login("admin@example.com")
    assert client.get("/admin/users/new").status_code == 200
    r = client.post(
        "/admin/users/new",
        data={"csrf_token": token, "name": "Walk In", "email": "walkin@example.com", "role": "guest"},
    )
    assert r.status_code == 302
    assert outbox[-1]["To"] == "walkin@example.com"
    assert outbox[-1]["Subject"] == "Set up your LodgeFlow account"
    with session_scope(app) as s:
        assert _user(s, "walkin@example.com").status == "provisional"


def test_admin_user_list_filters(client, login):
    login("admin@example.com")
    r = client.get("/admin/users?role=staff")
    assert b"staff@example.com" in r.data
    assert b"guest@example.com" not in r.data
    r = client.get("/admin/users?q=gina")
    assert b"guest@example.com" in r.data
    assert b"staff@example.com" not in r.data


def test_admin_edits_and_deletes_user(client, login, app, uid):
    token = login("admin@example.com")
    guest_id = uid("guest@example.com")
    assert client.get(f"/admin/users/{guest_id}").status_code == 200

    r = client.post(
        f"/admin/users/{guest_id}/edit",
        data={"csrf_token": token, "name": "Gina G.", "phone": "+234 800", "status": "disabled", "role": "user"},
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        guest = s.get(User, guest_id)
        assert (guest.name, guest.phone, guest.status, guest.role_key) == ("Gina G.", "+234 800", "disabled", "user")

    r = client.post(f"/admin/users/{guest_id}/delete", data={"csrf_token": token})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(User, guest_id) is None


def test_admin_cannot_delete_self(client, login, app, uid):
    token = login("admin@example.com")
    admin_id = uid("admin@example.com")
    r = client.post(f"/admin/users/{admin_id}/delete", data={"csrf_token": token}, follow_redirects=True)
    assert b"You cannot delete your own account." in r.data


def test_staff_cannot_create_users(client, login):
    token = login("staff@example.com")
    assert client.get("/admin/users").status_code == 200
    r = client.post("/admin/users/new", data={"csrf_token": token, "name": "X", "email": "x@example.com"})
    assert r.status_code == 403


def test_admin_consolidates_via_page(client, login, app, uid, make_listing, make_booking):
    token = login("admin@example.com")
    listing_id = make_listing()
    make_booking(listing_id, "user@example.com", date(2026, 6, 1), date(2026, 6, 2))
    guest_id, user_id = uid("guest@example.com"), uid("user@example.com")

    r = client.post(f"/admin/users/{guest_id}/consolidate", data={"csrf_token": token, "merge_ids": [str(user_id)]})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(User, user_id) is None
        assert s.query(Booking).one().user_id == guest_id


def test_send_password_link(client, login, uid, outbox):
    token = login("admin@example.com")
    r = client.post(f"/admin/users/{uid('user@example.com')}/send-password-link", data={"csrf_token": token})
    assert r.status_code == 302
    assert outbox[-1]["To"] == "user@example.com"


# ---------- Profile ----------
def test_profile_update_and_password_change(client, login, app):
    token = login("guest@example.com")
    assert client.get("/profile").status_code == 200

    client.post("/profile", data={"csrf_token": token, "name": "Gina Renamed", "phone": "555"})
    r = client.post(
        "/profile/password",
        data={
            "csrf_token": token,
            "current_password": "password123",
            "new_password": "another-pass",
            "confirm_password": "another-pass",
        },
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        guest = _user(s, "guest@example.com")
        assert guest.name == "Gina Renamed"
        assert check_password_hash(guest.password_hash, "another-pass")


def test_profile_rejects_wrong_current_password(client, login):
    token = login("guest@example.com")
    r = client.post(
        "/profile/password",
        data={"csrf_token": token, "current_password": "nope", "new_password": "another-pass", "confirm_password": "another-pass"},
        follow_redirects=True,
    )
    assert b"Current password is incorrect." in r.data
