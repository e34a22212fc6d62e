# Overview: Append-only audit trail for cash and accounting operations.

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def append_audit_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    register_id: int | None = None,
    cash_session_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    """
    Append-only audit event.

    - No domain logic here.
    - No deletes/updates of existing events.
    - Flushed, never committed: it lives or dies with the caller's transaction.
    """
    ev = AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        register_id=register_id,
        cash_session_id=cash_session_id,
        occurred_at=occurred_at or utcnow(),
        note=note[:255] if note else None,
        payload=_jsonable(payload) if payload is not None else None,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_audit_events(*, entity_type: str | None = None, entity_id: int | None = None, limit: int = 100) -> list[AuditEvent]:
    q = db.session.query(AuditEvent)
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditEvent.entity_id == entity_id)
    limit = max(1, min(limit, 500))
    return q.order_by(AuditEvent.id.desc()).limit(limit).all()
