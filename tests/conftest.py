from datetime import date, datetime

import pytest
from werkzeug.security import generate_password_hash

from app.lodgeflow import auth as auth_module
from app.lodgeflow import create_app
from app.lodgeflow.db import db_session, session_scope
from app.lodgeflow.models import Base, User
from app.lodgeflow.modules.bookings.models import Booking
from app.lodgeflow.modules.listings.models import Listing
from app.lodgeflow.modules.listings.service import create_listing
from app.lodgeflow.rbac import seed_roles_and_permissions

PASSWORD = "password123"
CSRF = "test-csrf-token"

USERS = (
    ("Ada Admin", "admin@example.com", "admin"),
    ("Sam Staff", "staff@example.com", "staff"),
    ("Gina Guest", "guest@example.com", "guest"),
    ("Uma User", "user@example.com", "user"),
)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("SMTP_HOST", "localhost")
    monkeypatch.setenv("MAIL_FROM", "LodgeFlow <no-reply@example.com>")
    monkeypatch.setenv("MAIL_SUPPRESS_SEND", "1")
    monkeypatch.setenv("BASE_URL", "http://testserver")
    monkeypatch.setenv("REPORT_TIMEZONE", "UTC")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    # Local storage writes under ./storage
    monkeypatch.chdir(tmp_path)

    app = create_app()
    app.config["TESTING"] = True

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        roles = seed_roles_and_permissions(s)
        for name, email, role in USERS:
            s.add(
                User(
                    name=name,
                    email=email,
                    password_hash=generate_password_hash(PASSWORD),
                    status="active",
                    role=roles[role],
                )
            )

    auth_module._login_attempts.clear()
    yield app
    engine.dispose()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def db(app):
    """Request-scoped session for calling services directly (mail rendering needs a request)."""
    with app.test_request_context():
        yield db_session()


@pytest.fixture()
def outbox(app):
    return app.extensions.setdefault("mail_outbox", [])


@pytest.fixture()
def login(client):
    def _login(email: str, password: str = PASSWORD):
        r = client.post("/auth/login", data={"email": email, "password": password}, follow_redirects=False)
        assert r.status_code == 302
        with client.session_transaction() as sess:
            sess["csrf_token"] = CSRF
        return CSRF

    return _login


@pytest.fixture()
def csrf(client):
    """Seed a known CSRF token into the session (for anonymous POSTs)."""
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF
    return CSRF


@pytest.fixture()
def uid(app):
    def _uid(email: str) -> int:
        with session_scope(app) as s:
            return s.query(User).filter(User.email == email).one().id

    return _uid


def _listing_payload(**overrides) -> dict:
    payload = {
        "name": "Lagoon Lodge",
        "type": "hotel",
        "location": "Lekki, Lagos",
        "description": "Quiet rooms facing the lagoon.",
        "price": "100.00",
        "price_unit": "night",
        "currency": "USD",
        "max_guests": "2",
        "features": "wifi, breakfast",
        "inventory_count": "2",
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def listing_form():
    return _listing_payload


@pytest.fixture()
def make_listing(app):
    def _make(**overrides) -> int:
        payload = _listing_payload(**overrides)
        with session_scope(app) as s:
            admin = s.query(User).filter(User.email == "admin@example.com").one()
            listing = create_listing(s, payload, int(payload["inventory_count"]), admin)
            s.flush()
            return listing.id

    return _make


@pytest.fixture()
def make_booking(app):
    """Insert a booking directly (no availability checks, no mail)."""

    def _make(listing_id: int, email: str, start: date, end: date, status: str = "Pending", units: int = 1, guests: int = 1) -> int:
        with session_scope(app) as s:
            listing = s.get(Listing, listing_id)
            user = s.query(User).filter(User.email == email).one()
            now = datetime.utcnow()
            booking = Booking(
                listing=listing,
                user=user,
                start_date=start,
                end_date=end,
                guests=guests,
                status=status,
                discount=0,
                units=listing.units[:units],
                created_at=now,
                updated_at=now,
            )
            s.add(booking)
            s.flush()
            return booking.id

    return _make
