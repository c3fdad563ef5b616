from __future__ import annotations

from datetime import datetime, time
from typing import TYPE_CHECKING

from app.lodgeflow.audit import record_event
from app.lodgeflow.modules.catalog.models import Facility, Group, Rule
from app.lodgeflow.modules.locations.models import Location
from app.lodgeflow.modules.resources.models import (
    DAYS_OF_WEEK,
    RESOURCE_STATUSES,
    RESOURCE_TYPES,
    SCHEDULE_TYPES,
    Resource,
    ResourceSchedule,
)
from app.lodgeflow.utils import parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.lodgeflow.models import User

WEEKDAYS = DAYS_OF_WEEK[:5]
WEEKENDS = DAYS_OF_WEEK[5:]


class ResourceError(ValueError):
    pass


def parse_time(s: str | None) -> time | None:
    """Parse HH:MM (HTML <input type="time">). Invalid input -> None."""
    s = (s or "").strip()
    if not s:
        return None
    try:
        return time.fromisoformat(s)
    except ValueError:
        return None


def validate_resource_payload(s: "Session", payload: dict, existing_id: int | None = None) -> list[str]:
    errors = []
    name = (payload.get("name") or "").strip()
    rtype = (payload.get("type") or "").strip()
    if not name:
        errors.append("Name is required.")
    if rtype not in RESOURCE_TYPES:
        errors.append(f"Invalid type. Must be one of: {', '.join(RESOURCE_TYPES)}")
    status = (payload.get("status") or "draft").strip()
    if status not in RESOURCE_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(RESOURCE_STATUSES)}")
    schedule_type = (payload.get("schedule_type") or "24/7").strip()
    if schedule_type not in SCHEDULE_TYPES:
        errors.append(f"Invalid schedule type. Must be one of: {', '.join(SCHEDULE_TYPES)}")

    location_id = parse_int(payload.get("location_id"))
    if payload.get("location_id") and (location_id is None or not s.get(Location, location_id)):
        errors.append("Selected location does not exist.")

    if name and rtype in RESOURCE_TYPES:
        dup = s.query(Resource).filter(Resource.name == name, Resource.type == rtype)
        if existing_id is not None:
            dup = dup.filter(Resource.id != existing_id)
        if dup.first():
            errors.append(f"A {rtype} resource named '{name}' already exists.")
    return errors


def _apply(resource: Resource, payload: dict) -> dict:
    changes = {}
    values = {
        "name": (payload.get("name") or "").strip(),
        "type": (payload.get("type") or "").strip(),
        "description": (payload.get("description") or "").strip() or None,
        "status": (payload.get("status") or "draft").strip(),
        "schedule_type": (payload.get("schedule_type") or "24/7").strip(),
        "location_id": parse_int(payload.get("location_id")),
    }
    for field, new in values.items():
        old = getattr(resource, field, None)
        if old != new:
            changes[field] = {"old": old, "new": new}
            setattr(resource, field, new)
    return changes


def create_resource(s: "Session", payload: dict, user: "User") -> Resource:
    errors = validate_resource_payload(s, payload)
    if errors:
        raise ResourceError(" ".join(errors))
    now = datetime.utcnow()
    resource = Resource(created_at=now, updated_at=now, created_by_user_id=user.id, updated_by_user_id=user.id)
    _apply(resource, payload)
    s.add(resource)
    s.flush()
    record_event(
        s,
        actor=user,
        action="resource.create",
        entity_type="Resource",
        entity_id=str(resource.id),
        metadata={"name": resource.name, "type": resource.type, "status": resource.status},
    )
    return resource


def update_resource(s: "Session", resource: Resource, payload: dict, user: "User") -> Resource:
    errors = validate_resource_payload(s, payload, existing_id=resource.id)
    if errors:
        raise ResourceError(" ".join(errors))
    changes = _apply(resource, payload)
    if resource.schedule_type == "24/7" and resource.schedules:
        resource.schedules.clear()
        changes["schedules"] = "cleared"
    resource.updated_at = datetime.utcnow()
    resource.updated_by_user_id = user.id
    record_event(
        s,
        actor=user,
        action="resource.edit",
        entity_type="Resource",
        entity_id=str(resource.id),
        metadata={"name": resource.name, "changes": changes},
    )
    return resource


def delete_resource(s: "Session", resource: Resource, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="resource.delete",
        entity_type="Resource",
        entity_id=str(resource.id),
        metadata={"name": resource.name, "type": resource.type},
    )
    s.delete(resource)


def _ids(raw) -> list[int]:
    out = []
    for v in raw or []:
        i = parse_int(v)
        if i is not None and i not in out:
            out.append(i)
    return out


def set_links(
    s: "Session",
    resource: Resource,
    *,
    rule_ids=None,
    facility_ids=None,
    group_ids=None,
    user: "User",
) -> Resource:
    """Replace the resource's rules/facilities/groups with exactly the given ids (None = leave as is)."""
    changes = {}
    for attr, model, raw in (("rules", Rule, rule_ids), ("facilities", Facility, facility_ids), ("groups", Group, group_ids)):
        if raw is None:
            continue
        ids = _ids(raw)
        items = s.query(model).filter(model.id.in_(ids)).all() if ids else []
        if len(items) != len(ids):
            raise ResourceError(f"Unknown {attr} selected.")
        before = sorted(i.id for i in getattr(resource, attr))
        setattr(resource, attr, items)
        after = sorted(i.id for i in items)
        if before != after:
            changes[attr] = {"old": before, "new": after}

    resource.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="resource.links",
        entity_type="Resource",
        entity_id=str(resource.id),
        metadata={"changes": changes},
    )
    return resource


def build_schedule_rows(schedule_type: str, rows: list[dict]) -> list[tuple[str, time, time]]:
    """
    Normalize schedule input.

    - 24/7: no rows
    - weekdays / weekends: the first row's hours applied to each day of the set
    - custom: explicit (day, start, end) rows, one per day
    """
    if schedule_type not in SCHEDULE_TYPES:
        raise ResourceError(f"Invalid schedule type. Must be one of: {', '.join(SCHEDULE_TYPES)}")
    if schedule_type == "24/7":
        return []

    parsed = []
    for row in rows:
        start = row.get("start_time") if isinstance(row.get("start_time"), time) else parse_time(row.get("start_time"))
        end = row.get("end_time") if isinstance(row.get("end_time"), time) else parse_time(row.get("end_time"))
        if start is None or end is None:
            raise ResourceError("Start and end times are required (HH:MM).")
        if start >= end:
            raise ResourceError("Start time must be before end time.")
        parsed.append(((row.get("day_of_week") or "").strip().lower(), start, end))
    if not parsed:
        raise ResourceError("At least one schedule row is required.")

    if schedule_type in ("weekdays", "weekends"):
        _, start, end = parsed[0]
        days = WEEKDAYS if schedule_type == "weekdays" else WEEKENDS
        return [(day, start, end) for day in days]

    seen = set()
    for day, _, _ in parsed:
        if day not in DAYS_OF_WEEK:
            raise ResourceError(f"Invalid day of week: {day or '(blank)'}")
        if day in seen:
            raise ResourceError(f"Duplicate schedule for {day}.")
        seen.add(day)
    return parsed


def set_schedules(s: "Session", resource: Resource, schedule_type: str, rows: list[dict], user: "User") -> Resource:
    normalized = build_schedule_rows(schedule_type, rows)
    resource.schedule_type = schedule_type
    resource.schedules.clear()
    s.flush()
    for day, start, end in normalized:
        resource.schedules.append(ResourceSchedule(day_of_week=day, start_time=start, end_time=end))
    resource.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="resource.schedules",
        entity_type="Resource",
        entity_id=str(resource.id),
        metadata={
            "schedule_type": schedule_type,
            "rows": [{"day": d, "start": st.strftime("%H:%M"), "end": en.strftime("%H:%M")} for d, st, en in normalized],
        },
    )
    return resource


def upload_resource_media(
    s: "Session",
    resource: Resource,
    file_bytes: bytes,
    filename: str,
    content_type: str,
    user: "User",
    set_thumbnail: bool = False,
):
    from app.lodgeflow.modules.locations.service import upload_media

    media = upload_media(
        s,
        file_bytes=file_bytes,
        filename=filename,
        content_type=content_type,
        user=user,
        resource=resource,
    )
    if set_thumbnail or (media.type == "image" and not resource.thumbnail):
        resource.thumbnail = media.storage_key
    return media


def filter_resources(
    s: "Session",
    q: str | None = None,
    rtype: str | None = None,
    status: str | None = None,
    location_id: int | None = None,
):
    query = s.query(Resource)
    if q:
        like = f"%{q}%"
        query = query.filter((Resource.name.ilike(like)) | (Resource.description.ilike(like)))
    if rtype:
        query = query.filter(Resource.type == rtype)
    if status:
        query = query.filter(Resource.status == status)
    if location_id:
        query = query.filter(Resource.location_id == location_id)
    return query.order_by(Resource.name.asc(), Resource.id.asc())


def public_resources(s: "Session", rtype: str | None = None, city: str | None = None, group_id: int | None = None) -> list[Resource]:
    query = s.query(Resource).filter(Resource.status == "published")
    if rtype:
        query = query.filter(Resource.type == rtype)
    if city:
        query = query.join(Location, Location.id == Resource.location_id).filter(Location.city.ilike(city))
    if group_id:
        query = query.filter(Resource.groups.any(Group.id == group_id))
    return query.order_by(Resource.name.asc()).all()
