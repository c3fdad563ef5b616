import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.lodgeflow.models import Base, User
from app.lodgeflow.rbac import seed_roles_and_permissions


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password or role permissions.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@lodgeflow.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///lodgeflow.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with _session_scope(db_url) as s:
        roles = seed_roles_and_permissions(s)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                name="Administrator",
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                status="active",
                is_verified=True,
            )
            s.add(user)
        if user.role_key != "admin":
            user.role = roles["admin"]

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def create_tables(database_url: str) -> None:
    """Local development shortcut; production uses alembic (scripts/release.py)."""
    engine = create_engine(database_url, future=True)
    Base.metadata.create_all(bind=engine)
    engine.dispose()


def main() -> None:
    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///lodgeflow.db").strip()
    if db_url.startswith("sqlite"):
        create_tables(db_url)
    seed_only(database_url=db_url)


if __name__ == "__main__":
    main()
