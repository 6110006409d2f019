from __future__ import annotations

from uuid import uuid4

from services.api.app.db.models import EventLog
from sqlalchemy.orm import Session


def log_event(
    db: Session,
    *,
    entity_type: str,
    entity_id: str,
    event_type: str,
    event_payload: dict,
) -> None:
    db.add(
        EventLog(
            id=uuid4().hex,
            entity_type=entity_type,
            entity_id=entity_id,
            event_type=event_type,
            event_payload_json=event_payload,
        )
    )


def list_events(db: Session, entity_id: str, limit: int = 200) -> list[EventLog]:
    return (
        db.query(EventLog)
        .filter(EventLog.entity_id == entity_id)
        .order_by(EventLog.created_at.asc())
        .limit(limit)
        .all()
    )
