from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.lodgeflow.audit import record_event
from app.lodgeflow.modules.catalog.models import RULE_CATEGORIES, Facility, Group, Rule
from app.lodgeflow.utils import parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.lodgeflow.models import User

# kind -> (model, audit entity type, label)
KINDS = {
    "facilities": (Facility, "Facility", "Facility"),
    "rules": (Rule, "Rule", "Rule"),
    "groups": (Group, "Group", "Group"),
}


class CatalogError(ValueError):
    pass


def validate_catalog_payload(s: "Session", kind: str, payload: dict, existing_id: int | None = None) -> list[str]:
    model, _, label = KINDS[kind]
    errors = []
    name = (payload.get("name") or "").strip()
    if not name:
        errors.append("Name is required.")
    else:
        dup = s.query(model).filter(model.name.ilike(name))
        if existing_id is not None:
            dup = dup.filter(model.id != existing_id)
        if dup.first():
            errors.append(f"{label} with name '{name}' already exists.")

    if kind == "rules":
        category = (payload.get("category") or "").strip()
        if category not in RULE_CATEGORIES:
            errors.append(f"Invalid category. Must be one of: {', '.join(RULE_CATEGORIES)}")
    if kind == "groups":
        num = parse_int(payload.get("num"))
        if num is None or num < 1:
            errors.append("Group size must be a whole number of at least 1.")
    return errors


def _apply(kind: str, item, payload: dict) -> dict:
    changes = {}
    values: dict = {"name": (payload.get("name") or "").strip()}
    if kind in ("facilities", "rules"):
        values["description"] = (payload.get("description") or "").strip() or None
    if kind == "rules":
        values["category"] = (payload.get("category") or "").strip()
    if kind == "groups":
        values["num"] = parse_int(payload.get("num"))
    for field, new in values.items():
        old = getattr(item, field, None)
        if old != new:
            changes[field] = {"old": old, "new": new}
            setattr(item, field, new)
    return changes


def create_item(s: "Session", kind: str, payload: dict, user: "User"):
    errors = validate_catalog_payload(s, kind, payload)
    if errors:
        raise CatalogError(" ".join(errors))
    model, entity_type, _ = KINDS[kind]
    now = datetime.utcnow()
    item = model(created_at=now, updated_at=now)
    _apply(kind, item, payload)
    s.add(item)
    s.flush()
    record_event(
        s,
        actor=user,
        action=f"{entity_type.lower()}.create",
        entity_type=entity_type,
        entity_id=str(item.id),
        metadata={"name": item.name},
    )
    return item


def update_item(s: "Session", kind: str, item, payload: dict, user: "User"):
    errors = validate_catalog_payload(s, kind, payload, existing_id=item.id)
    if errors:
        raise CatalogError(" ".join(errors))
    _, entity_type, _ = KINDS[kind]
    changes = _apply(kind, item, payload)
    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action=f"{entity_type.lower()}.edit",
        entity_type=entity_type,
        entity_id=str(item.id),
        metadata={"name": item.name, "changes": changes},
    )
    return item


def delete_item(s: "Session", kind: str, item, user: "User") -> None:
    _, entity_type, _ = KINDS[kind]
    record_event(
        s,
        actor=user,
        action=f"{entity_type.lower()}.delete",
        entity_type=entity_type,
        entity_id=str(item.id),
        metadata={"name": item.name},
    )
    s.delete(item)
