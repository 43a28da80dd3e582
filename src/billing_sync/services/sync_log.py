"""Append-only audit trail of calls made to the accounting platform."""
from __future__ import annotations

import json
from typing import Any, Optional, Union

from sqlmodel import Session, select

from ..models import EntityType, SyncAction, SyncLogEntry, SyncOutcome


def _dump(data: Any) -> Optional[str]:
    if data is None:
        return None
    return json.dumps(data, ensure_ascii=False, default=str)


def record(
    session: Session,
    entity_type: EntityType,
    entity_id: Union[int, str],
    action: SyncAction,
    status: SyncOutcome,
    *,
    external_id: Optional[str] = None,
    error_message: Optional[str] = None,
    request_data: Any = None,
    response_data: Any = None,
) -> SyncLogEntry:
    entry = SyncLogEntry(
        entity_type=entity_type,
        entity_id=str(entity_id),
        external_id=external_id,
        action=action,
        status=status,
        error_message=error_message,
        request_data=_dump(request_data),
        response_data=_dump(response_data),
    )
    session.add(entry)
    session.flush()
    return entry


def fetch_history(session: Session, entity_type: EntityType, entity_id: Union[int, str]) -> list[SyncLogEntry]:
    statement = (
        select(SyncLogEntry)
        .where(
            SyncLogEntry.entity_type == entity_type,
            SyncLogEntry.entity_id == str(entity_id),
        )
        .order_by(SyncLogEntry.id)
    )
    return list(session.exec(statement).all())
