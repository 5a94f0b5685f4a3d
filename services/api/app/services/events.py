from __future__ import annotations

from typing import Any
from uuid import uuid4

from packages.shared.schemas.events import EntityTypeV1, EventTypeV1, EventV1
from services.api.app.db.models import EventLog
from sqlalchemy import select
from sqlalchemy.orm import Session


def record_event(
    db: Session,
    *,
    entity_type: EntityTypeV1,
    entity_id: str,
    event_type: EventTypeV1,
    payload: dict[str, Any] | None = None,
) -> None:
    """Append an event row. The caller owns the transaction."""

    db.add(
        EventLog(
            id=uuid4().hex,
            entity_type=entity_type.value,
            entity_id=entity_id,
            event_type=event_type.value,
            event_payload_json=payload or {},
        )
    )


def list_events(db: Session, limit: int = 100) -> list[EventV1]:
    rows = db.scalars(
        select(EventLog).order_by(EventLog.created_at.desc()).limit(max(1, limit))
    ).all()

    return [
        EventV1(
            id=row.id,
            entity_type=EntityTypeV1(row.entity_type),
            entity_id=row.entity_id,
            event_type=EventTypeV1(row.event_type),
            payload=row.event_payload_json,
            created_at=row.created_at.isoformat(),
        )
        for row in rows
    ]
