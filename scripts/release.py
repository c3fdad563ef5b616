"""
Release step for a LodgeFlow deploy: upgrade the schema, then seed roles and the admin.

Both steps are safe to repeat. The seed never resets an existing admin password or
permissions an administrator has edited.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def release_database_url() -> str:
    url = (os.environ.get("DATABASE_URL") or "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL is not set; refusing to release against a default SQLite file.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and url.startswith("sqlite"):
        raise RuntimeError("Production releases need a Postgres DATABASE_URL, got sqlite.")
    return url


def upgrade_schema(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def seed(db_url: str) -> None:
    from scripts import init_db

    init_db.seed_only(database_url=db_url)


def main() -> None:
    db_url = release_database_url()
    for label, step in (("schema upgrade", upgrade_schema), ("role/admin seed", seed)):
        print(f"[release] {label}...", flush=True)
        step(db_url)
    print("[release] done", flush=True)


if __name__ == "__main__":
    main()
