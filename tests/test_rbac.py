from app.lodgeflow.db import session_scope
from app.lodgeflow.models import Permission, Role, User
from app.lodgeflow.rbac import (
    ALL_PERMISSIONS,
    expand_permission_patterns,
    seed_roles_and_permissions,
    user_can,
    user_has_permission,
)


def _user(app, email):
    with session_scope(app) as s:
        return s.query(User).filter(User.email == email).one()


def test_expand_patterns():
    keys = [k for k, _ in ALL_PERMISSIONS]
    assert expand_permission_patterns(["*"]) == keys
    booking = expand_permission_patterns(["booking:*"])
    assert "booking:confirm" in booking
    assert "booking:read:own" in booking
    assert not [k for k in booking if not k.startswith("booking:")]
    assert expand_permission_patterns(["listing:read", "nope:read"]) == ["listing:read"]


def test_seed_is_idempotent(app):
    with session_scope(app) as s:
        before = s.query(Permission).count()
        seed_roles_and_permissions(s)
        seed_roles_and_permissions(s)
    with session_scope(app) as s:
        assert s.query(Permission).count() == before == len(ALL_PERMISSIONS)
        assert {r.key for r in s.query(Role).all()} == {"admin", "staff", "guest", "user"}


def test_seed_keeps_edited_role_permissions(app):
    with session_scope(app) as s:
        guest = s.query(Role).filter(Role.key == "guest").one()
        guest.permissions = []
    with session_scope(app) as s:
        seed_roles_and_permissions(s)
    with session_scope(app) as s:
        assert s.query(Role).filter(Role.key == "guest").one().permissions == []


def test_admin_has_everything(app):
    admin = _user(app, "admin@example.com")
    assert user_has_permission(admin, "listing:delete")
    assert user_has_permission(admin, "anything:at-all")


def test_staff_permissions(app):
    staff = _user(app, "staff@example.com")
    assert user_has_permission(staff, "booking:confirm")
    assert user_has_permission(staff, "listing:update")
    assert not user_has_permission(staff, "listing:delete")
    assert not user_has_permission(staff, "permissions:update")


def test_own_permissions_need_matching_owner(app):
    guest = _user(app, "guest@example.com")
    other = _user(app, "user@example.com")
    assert not user_has_permission(guest, "booking:read")
    assert user_can(guest, "booking:read", owner_id=guest.id)
    assert not user_can(guest, "booking:read", owner_id=other.id)
    assert not user_can(guest, "booking:read")


def test_user_role_cannot_review_or_edit_bookings(app):
    plain = _user(app, "user@example.com")
    assert user_can(plain, "booking:create", owner_id=plain.id)
    assert not user_can(plain, "booking:update", owner_id=plain.id)
    assert not user_can(plain, "review:create", owner_id=plain.id)


def test_disabled_user_has_nothing(app):
    with session_scope(app) as s:
        s.query(User).filter(User.email == "admin@example.com").one().status = "disabled"
    admin = _user(app, "admin@example.com")
    assert not user_has_permission(admin, "listing:read")
    assert not user_has_permission(None, "listing:read")


def test_permissions_page_updates_role(client, login, app):
    token = login("admin@example.com")
    assert client.get("/admin/permissions").status_code == 200
    with session_scope(app) as s:
        role_id = s.query(Role).filter(Role.key == "user").one().id
    r = client.post(
        f"/admin/permissions/{role_id}",
        data={"csrf_token": token, "permission_keys": ["booking:read:own", "review:create:own"]},
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        role = s.query(Role).filter(Role.key == "user").one()
        assert role.permission_keys == {"booking:read:own", "review:create:own"}


def test_staff_cannot_update_permissions(client, login):
    token = login("staff@example.com")
    r = client.post("/admin/permissions/1", data={"csrf_token": token})
    assert r.status_code == 403
