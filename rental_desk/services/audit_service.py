from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from rental_desk.models.rental_models import AuditLog


def _to_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=True, default=str)


def _from_json_dict(value: str | None) -> dict[str, Any] | None:
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError, json.JSONDecodeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def log_audit(
    db: Session,
    table_name: str,
    record_id: str,
    action: str,
    *,
    user_id: str | None = None,
    old_data: dict[str, Any] | None = None,
    new_data: dict[str, Any] | None = None,
) -> None:
    db.add(
        AuditLog(
            table_name=table_name,
            record_id=str(record_id),
            action=action,
            user_id=user_id,
            old_data=_to_json(old_data),
            new_data=_to_json(new_data),
            logged_at=datetime.now(),
        )
    )


def serialize_audit(entry: AuditLog) -> dict:
    return {
        "id": entry.id,
        "loggedAt": entry.logged_at,
        "tableName": entry.table_name,
        "action": entry.action,
        "recordID": entry.record_id,
        "userID": entry.user_id,
        "oldData": _from_json_dict(entry.old_data),
        "newData": _from_json_dict(entry.new_data),
    }
