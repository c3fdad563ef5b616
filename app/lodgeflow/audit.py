import json
from datetime import date, datetime, time, timedelta
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Query, Session

from app.lodgeflow.models import AuditEvent, User

AUDIT_PAGE_LIMIT = 200


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """Add one audit row to `s`; the caller's commit persists it with the change it describes."""
    rid, ip = request_id, None
    if has_request_context():
        rid = rid or getattr(g, "request_id", None)
        ip = request.remote_addr
    event = AuditEvent(
        request_id=rid,
        client_ip=ip,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        actor_user_id=getattr(actor, "id", None),
        actor_user_email=getattr(actor, "email", None),
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(event)
    return event


def query_events(
    s: Session,
    *,
    action: str = "",
    actor_email: str = "",
    entity_type: str = "",
    entity_id: str = "",
    date_from: date | None = None,
    date_to: date | None = None,
) -> Query:
    """Newest-first audit events; text filters match substrings, the date range is inclusive."""
    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id:
        q = q.filter(AuditEvent.entity_id == entity_id)
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))
    return q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
