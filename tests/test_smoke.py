import importlib
import sys

from app.lodgeflow.audit import query_events, record_event
from app.lodgeflow.db import session_scope


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200


def test_public_pages_render(client, make_listing):
    listing_id = make_listing()
    for path in ("/", "/search", "/about", "/resources", f"/listings/{listing_id}", "/auth/login", "/auth/signup"):
        r = client.get(path)
        assert r.status_code == 200, path


def test_unknown_listing_is_404(client):
    assert client.get("/listings/9999").status_code == 404


def test_login_and_admin_access(client):
    # Anonymous is sent to login
    r = client.get("/admin/")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]

    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "password123"}, follow_redirects=False)
    assert r.status_code == 302

    r = client.get("/admin/")
    assert r.status_code == 200
    assert b"Admin dashboard" in r.data


def test_bad_password_is_rejected(client):
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "nope"}, follow_redirects=False)
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]
    assert client.get("/admin/").status_code == 302


def test_login_rate_limited_after_repeated_failures(client):
    for _ in range(5):
        client.post("/auth/login", data={"email": "admin@example.com", "password": "nope"})
    r = client.post("/auth/login", data={"email": "admin@example.com", "password": "password123"}, follow_redirects=True)
    assert b"Too many login attempts" in r.data


def test_post_without_csrf_token_is_rejected(client, login):
    login("admin@example.com")
    r = client.post("/admin/catalog/facilities/new", data={"name": "Pool"})
    assert r.status_code == 400


def test_guest_cannot_open_admin(client, login):
    login("guest@example.com")
    assert client.get("/admin/").status_code == 403


def test_logout_clears_session(client, login):
    login("staff@example.com")
    assert client.get("/admin/").status_code == 200
    client.get("/auth/logout")
    assert client.get("/admin/").status_code == 302


def test_wsgi_module_exposes_app(app, monkeypatch):
    monkeypatch.delitem(sys.modules, "app.wsgi", raising=False)
    wsgi = importlib.import_module("app.wsgi")
    assert "public.index" in wsgi.app.view_functions
    assert "reports.report" in wsgi.app.view_functions
    wsgi.app.extensions["sqlalchemy_engine"].dispose()


def test_audit_events_filter_by_entity(app):
    with session_scope(app) as s:
        record_event(s, actor=None, action="listing.update", entity_type="Listing", entity_id="7")
        record_event(s, actor=None, action="listing.update", entity_type="Listing", entity_id="8", metadata={"name": "Lagoon"})
    with session_scope(app) as s:
        events = query_events(s, entity_type="Listing", entity_id="8").all()
        assert [e.entity_id for e in events] == ["8"]
        assert events[0].metadata_json == '{"name": "Lagoon"}'
        assert events[0].actor_user_email is None
        assert len(query_events(s, action="listing.").all()) == 2


def test_audit_page_filters(client, login):
    login("admin@example.com")
    r = client.get("/admin/audit?entity_type=User&action=auth.login")
    assert r.status_code == 200
    assert b"admin@example.com" in r.data
    r = client.get("/admin/audit?entity_type=Listing")
    assert b"No events." in r.data
