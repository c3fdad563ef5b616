#!/usr/bin/env python3
"""Set a user's role (idempotent).

Usage:
  python scripts/set_user_role.py --email someone@example.com --role staff
"""

import sys
import os
import argparse
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.lodgeflow.models import Role, User
from app.lodgeflow.rbac import ROLES


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="User email")
    parser.add_argument("--role", required=True, choices=ROLES, help="Role key to assign")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///lodgeflow.db").strip()
    engine = create_engine(db_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        user = s.query(User).filter(User.email.ilike(args.email)).one_or_none()
        if not user:
            print(f"User not found: {args.email}")
            return
        role = s.query(Role).filter(Role.key == args.role).one_or_none()
        if not role:
            print(f"Role not found: {args.role}. Run python scripts/init_db.py first.")
            return
        if user.role_key == role.key:
            print(f"User already has role {role.key}: {args.email}")
            return
        user.role = role
        s.commit()
        print(f"Role {role.key} set for {args.email}")
    finally:
        s.close()


if __name__ == "__main__":
    main()
