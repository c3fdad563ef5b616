from __future__ import annotations

import re
import secrets
from datetime import datetime
from typing import TYPE_CHECKING

from werkzeug.security import check_password_hash, generate_password_hash

from app.lodgeflow.audit import record_event
from app.lodgeflow.models import USER_STATUSES, Role, User

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

MIN_PASSWORD_LENGTH = 8
GUEST_USER_NAME = "Guest User"
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


class UserError(ValueError):
    pass


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def validate_password(password: str, password_confirm: str | None = None) -> list[str]:
    errors = []
    if not password:
        errors.append("Password is required.")
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    elif password_confirm is not None and password != password_confirm:
        errors.append("Passwords do not match.")
    return errors


def get_role(s: "Session", key: str) -> Role:
    role = s.query(Role).filter(Role.key == key).one_or_none()
    if not role:
        raise UserError(f"Role '{key}' is not configured. Run scripts/init_db.py.")
    return role


def find_user_by_email(s: "Session", email: str | None) -> User | None:
    email = normalize_email(email)
    if not email:
        return None
    return s.query(User).filter(User.email == email).one_or_none()


def create_user(
    s: "Session",
    *,
    name: str,
    email: str,
    password: str | None,
    role_key: str = "guest",
    phone: str | None = None,
    notes: str | None = None,
    actor: User | None = None,
) -> User:
    """
    Create an account. Without a password the account is provisional: it gets an
    unusable random hash and becomes active once the owner sets a password.
    """
    email = normalize_email(email)
    name = (name or "").strip()
    errors = []
    if not name:
        errors.append("Name is required.")
    if not email:
        errors.append("Email is required.")
    elif not is_valid_email(email):
        errors.append("Invalid email format.")
    elif find_user_by_email(s, email):
        errors.append("An account with this email already exists.")
    if password is not None:
        errors.extend(validate_password(password))
    if errors:
        raise UserError(" ".join(errors))

    now = datetime.utcnow()
    user = User(
        name=name,
        email=email,
        phone=(phone or "").strip() or None,
        notes=(notes or "").strip() or None,
        password_hash=generate_password_hash(password if password is not None else secrets.token_urlsafe(32)),
        status="active" if password is not None else "provisional",
        role=get_role(s, role_key),
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()

    record_event(
        s,
        actor=actor or user,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": email, "role": role_key, "status": user.status},
    )
    return user


def get_or_create_guest_user(s: "Session", email: str, actor: User | None = None) -> tuple[User, bool]:
    """Match a booking's guest email to an account, creating a provisional guest if needed."""
    existing = find_user_by_email(s, email)
    if existing:
        return existing, False
    user = create_user(s, name=GUEST_USER_NAME, email=email, password=None, role_key="guest", actor=actor)
    return user, True


def update_user(s: "Session", user: User, payload: dict, actor: User) -> User:
    changes = {}

    new_name = (payload.get("name") or "").strip()
    if new_name and new_name != user.name:
        changes["name"] = {"old": user.name, "new": new_name}
        user.name = new_name

    if "phone" in payload:
        new_phone = (payload.get("phone") or "").strip() or None
        if new_phone != user.phone:
            changes["phone"] = {"old": user.phone, "new": new_phone}
            user.phone = new_phone

    if "notes" in payload:
        new_notes = (payload.get("notes") or "").strip() or None
        if new_notes != user.notes:
            changes["notes"] = {"old": user.notes, "new": new_notes}
            user.notes = new_notes

    new_status = (payload.get("status") or "").strip()
    if new_status:
        if new_status not in USER_STATUSES:
            raise UserError(f"Invalid status. Must be one of: {', '.join(USER_STATUSES)}")
        if user.id == actor.id and new_status == "disabled":
            raise UserError("You cannot disable your own account.")
        if new_status != user.status:
            changes["status"] = {"old": user.status, "new": new_status}
            user.status = new_status

    new_role = (payload.get("role") or "").strip()
    if new_role and new_role != user.role_key:
        if user.id == actor.id:
            raise UserError("You cannot change your own role.")
        changes["role"] = {"old": user.role_key, "new": new_role}
        user.role = get_role(s, new_role)

    user.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="user.update",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email, "changes": changes},
    )
    return user


def set_password(s: "Session", user: User, password: str, password_confirm: str | None = None, actor: User | None = None) -> User:
    errors = validate_password(password, password_confirm)
    if errors:
        raise UserError(" ".join(errors))
    user.password_hash = generate_password_hash(password)
    if user.status == "provisional":
        user.status = "active"
    user.updated_at = datetime.utcnow()
    record_event(s, actor=actor or user, action="user.password_set", entity_type="User", entity_id=str(user.id))
    return user


def change_password(s: "Session", user: User, current: str, new: str, confirm: str) -> User:
    if not check_password_hash(user.password_hash, current or ""):
        raise UserError("Current password is incorrect.")
    return set_password(s, user, new, confirm, actor=user)


def delete_user(s: "Session", user: User, actor: User) -> None:
    if user.id == actor.id:
        raise UserError("You cannot delete your own account.")
    record_event(
        s,
        actor=actor,
        action="user.delete",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email},
    )
    s.delete(user)


def consolidate_users(s: "Session", primary: User, secondaries: list[User], actor: User) -> dict[str, int]:
    """
    Fold duplicate accounts into `primary`: bookings and reviews move over, then the
    secondary accounts are deleted. A secondary review for a listing the primary has
    already reviewed is dropped (one review per user per listing).
    """
    from app.lodgeflow.modules.bookings.models import Booking
    from app.lodgeflow.modules.listings.models import Review
    from app.lodgeflow.modules.listings.service import recompute_rating

    secondaries = [u for u in secondaries if u.id != primary.id]
    if not secondaries:
        raise UserError("Select at least one other account to merge.")
    if any(u.id == actor.id for u in secondaries):
        raise UserError("You cannot merge away your own account.")

    ids = [u.id for u in secondaries]
    moved_bookings = s.query(Booking).filter(Booking.user_id.in_(ids)).update(
        {Booking.user_id: primary.id}, synchronize_session="fetch"
    )

    reviewed = {r.listing_id for r in s.query(Review).filter(Review.user_id == primary.id).all()}
    moved_reviews = 0
    dropped_reviews = 0
    touched_listings = set()
    for review in s.query(Review).filter(Review.user_id.in_(ids)).order_by(Review.updated_at.desc()).all():
        touched_listings.add(review.listing)
        if review.listing_id in reviewed:
            s.delete(review)
            dropped_reviews += 1
            continue
        review.user_id = primary.id
        reviewed.add(review.listing_id)
        moved_reviews += 1
    s.flush()
    for listing in touched_listings:
        s.refresh(listing, ["reviews"])
        recompute_rating(listing)

    for u in secondaries:
        s.delete(u)

    summary = {"bookings": moved_bookings, "reviews": moved_reviews, "reviews_dropped": dropped_reviews, "accounts": len(secondaries)}
    record_event(
        s,
        actor=actor,
        action="user.consolidate",
        entity_type="User",
        entity_id=str(primary.id),
        metadata={"merged_ids": ids, **summary},
    )
    return summary


def search_users(s: "Session", q: str = "", role: str = "", status: str = ""):
    query = s.query(User)
    if q:
        like = f"%{q.lower()}%"
        query = query.filter((User.email.ilike(like)) | (User.name.ilike(like)) | (User.phone.ilike(like)))
    if role:
        query = query.join(Role, User.role_id == Role.id).filter(Role.key == role)
    if status:
        query = query.filter(User.status == status)
    return query.order_by(User.created_at.desc(), User.id.desc())
