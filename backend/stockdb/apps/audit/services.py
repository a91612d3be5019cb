from __future__ import annotations

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from . import models, schemas

logger = logging.getLogger(__name__)


def create_audit_event(db: Session, *, data: schemas.AuditEventCreate) -> models.AuditEvent:
    """Add and flush one audit row; the caller commits."""
    event = models.AuditEvent(
        entity_type=data.entity_type,
        entity_id=data.entity_id,
        action=data.action,
        actor_user_id=data.actor_user_id,
        description=data.description,
        before=data.before,
        after=data.after,
        correlation_id=data.correlation_id,
        metadata_json=data.metadata,
    )
    if data.occurred_at is not None:
        event.occurred_at = data.occurred_at
    db.add(event)
    db.flush()
    return event


def log_event(
    db: Session,
    *,
    actor_user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    action: str,
    description: Optional[str] = None,
    before: Optional[dict] = None,
    after: Optional[dict] = None,
    correlation_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    critical: bool = False,
) -> Optional[models.AuditEvent]:
    """
    Record an audit event without letting audit problems break the caller.

    Returns None (after a warning) when the event could not be written,
    unless `critical` is set, in which case the error propagates.
    """
    payload = schemas.AuditEventCreate(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_user_id=actor_user_id,
        description=description,
        before=before,
        after=after,
        correlation_id=correlation_id,
        metadata=metadata,
    )
    try:
        return create_audit_event(db, data=payload)
    except Exception:
        logger.warning(
            "Could not write audit event",
            exc_info=True,
            extra={"entity_type": entity_type, "entity_id": entity_id, "action": action, "critical": critical},
        )
        if critical:
            raise
        return None


def list_audit_events(
    db: Session,
    *,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.AuditEvent]:
    Event = models.AuditEvent
    filters = []
    if entity_type:
        filters.append(Event.entity_type == entity_type)
    if entity_id:
        filters.append(Event.entity_id == entity_id)
    if action:
        filters.append(Event.action == action)
    if start:
        filters.append(Event.occurred_at >= start)
    if end:
        filters.append(Event.occurred_at <= end)
    return (
        db.query(Event)
        .filter(*filters)
        .order_by(Event.occurred_at.desc(), Event.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
