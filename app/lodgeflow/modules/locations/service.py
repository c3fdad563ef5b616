from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.lodgeflow.audit import record_event
from app.lodgeflow.modules.locations.models import MEDIA_TYPES, Location, Media

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.lodgeflow.models import User


class LocationError(ValueError):
    pass


def validate_location_payload(payload: dict) -> list[str]:
    errors = []
    for field, label in (("name", "Name"), ("state", "State"), ("city", "City")):
        if not (payload.get(field) or "").strip():
            errors.append(f"{label} is required.")
    return errors


def _apply(location: Location, payload: dict) -> dict:
    changes = {}
    values = {
        "name": (payload.get("name") or "").strip(),
        "state": (payload.get("state") or "").strip(),
        "city": (payload.get("city") or "").strip(),
        "description": (payload.get("description") or "").strip() or None,
    }
    for field, new in values.items():
        old = getattr(location, field, None)
        if old != new:
            changes[field] = {"old": old, "new": new}
            setattr(location, field, new)
    return changes


def create_location(s: "Session", payload: dict, user: "User") -> Location:
    now = datetime.utcnow()
    location = Location(created_at=now, updated_at=now)
    _apply(location, payload)
    s.add(location)
    s.flush()
    record_event(
        s,
        actor=user,
        action="location.create",
        entity_type="Location",
        entity_id=str(location.id),
        metadata={"name": location.name, "city": location.city, "state": location.state},
    )
    return location


def update_location(s: "Session", location: Location, payload: dict, user: "User") -> Location:
    changes = _apply(location, payload)
    location.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="location.edit",
        entity_type="Location",
        entity_id=str(location.id),
        metadata={"name": location.name, "changes": changes},
    )
    return location


def delete_location(s: "Session", location: Location, user: "User") -> None:
    if location.resources:
        raise LocationError(
            f"Cannot delete location: {len(location.resources)} resource(s) still reference it."
        )
    record_event(
        s,
        actor=user,
        action="location.delete",
        entity_type="Location",
        entity_id=str(location.id),
        metadata={"name": location.name},
    )
    s.delete(location)


def filter_locations(s: "Session", state: str | None = None, city: str | None = None, q: str | None = None):
    query = s.query(Location)
    if state:
        query = query.filter(Location.state.ilike(state))
    if city:
        query = query.filter(Location.city.ilike(city))
    if q:
        like = f"%{q}%"
        query = query.filter((Location.name.ilike(like)) | (Location.description.ilike(like)))
    return query.order_by(Location.state.asc(), Location.city.asc(), Location.name.asc())


def distinct_states_and_cities(s: "Session") -> tuple[list[str], list[str]]:
    states = sorted({r[0] for r in s.query(Location.state).distinct().all() if r[0]})
    cities = sorted({r[0] for r in s.query(Location.city).distinct().all() if r[0]})
    return states, cities


def media_type_for(content_type: str | None) -> str:
    ct = (content_type or "").lower()
    if ct.startswith("image/"):
        return "image"
    if ct.startswith("video/"):
        return "video"
    return "document"


def upload_media(
    s: "Session",
    *,
    file_bytes: bytes,
    filename: str,
    content_type: str,
    user: "User",
    location: Location | None = None,
    resource=None,
    media_type: str | None = None,
    metadata: dict | None = None,
) -> Media:
    """Store a file and attach it to a location or a resource (exactly one)."""
    from flask import current_app
    from app.lodgeflow.storage import (
        build_storage_key,
        file_digest_and_bytes,
        sanitize_upload_filename,
        storage_from_config,
    )

    if (location is None) == (resource is None):
        raise LocationError("Media must belong to exactly one location or resource.")
    media_type = media_type or media_type_for(content_type)
    if media_type not in MEDIA_TYPES:
        raise LocationError(f"Invalid media type. Must be one of: {', '.join(MEDIA_TYPES)}")
    if not file_bytes:
        raise LocationError("Uploaded file is empty.")

    entity, owner = ("locations", location) if location is not None else ("resources", resource)
    sha256, size_bytes = file_digest_and_bytes(file_bytes)
    storage_key = build_storage_key(entity, owner.id, filename)
    storage_from_config(current_app.config).put_bytes(storage_key, file_bytes, content_type=content_type)

    media = Media(
        type=media_type,
        storage_key=storage_key,
        file_type=content_type,
        original_filename=sanitize_upload_filename(filename),
        sha256=sha256,
        size_bytes=size_bytes,
        metadata_json=metadata or {},
        location_id=location.id if location is not None else None,
        resource_id=resource.id if resource is not None else None,
        uploaded_by_user_id=user.id,
    )
    s.add(media)
    s.flush()
    record_event(
        s,
        actor=user,
        action="media.upload",
        entity_type="Media",
        entity_id=str(media.id),
        metadata={"owner": entity, "owner_id": owner.id, "filename": media.original_filename, "type": media_type},
    )
    return media


def delete_media(s: "Session", media: Media, user: "User") -> None:
    from flask import current_app
    from app.lodgeflow.storage import storage_from_config

    storage_from_config(current_app.config).delete(media.storage_key)
    record_event(
        s,
        actor=user,
        action="media.delete",
        entity_type="Media",
        entity_id=str(media.id),
        metadata={"storage_key": media.storage_key},
    )
    s.delete(media)
