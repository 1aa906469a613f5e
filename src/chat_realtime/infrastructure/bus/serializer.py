from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from chat_realtime.application.exceptions import TransientDeliveryGap
from chat_realtime.domain.events.change import Deleted, Inserted, RowChange, Updated
from chat_realtime.domain.value_objects.enums import ChangeKind


class _Encoder(json.JSONEncoder):
    def default(self, o: object) -> Any:
        if isinstance(o, UUID):
            return str(o)
        if isinstance(o, datetime):
            return o.isoformat()
        return super().default(o)


def serialize_change(table: str, event: RowChange) -> str:
    if isinstance(event, Inserted):
        new, old = event.record, None
    elif isinstance(event, Updated):
        new, old = event.record, event.old
    else:
        new, old = None, {**(event.old or {}), "id": event.identity}
    envelope = {
        "table": table,
        "eventType": event.kind.name,
        "new": new,
        "old": old,
    }
    return json.dumps(envelope, cls=_Encoder)


def deserialize_change(raw: str | bytes) -> tuple[str, RowChange]:
    """Parse a feed envelope. Raises TransientDeliveryGap on malformed input."""
    try:
        return _parse(json.loads(raw))
    except (ValueError, KeyError, TypeError) as exc:
        raise TransientDeliveryGap(f"Malformed change envelope: {exc}") from exc


def _parse(data: dict[str, Any]) -> tuple[str, RowChange]:
    kind = ChangeKind.from_wire(data["eventType"])
    new = data.get("new")
    old = data.get("old")
    if kind is ChangeKind.INSERT:
        if not isinstance(new, dict):
            raise ValueError("INSERT without a new row image")
        return data["table"], Inserted(new)
    if kind is ChangeKind.UPDATE:
        if not isinstance(new, dict):
            raise ValueError("UPDATE without a new row image")
        return data["table"], Updated(new, old)
    if not isinstance(old, dict) or old.get("id") is None:
        raise ValueError("DELETE without an old row identity")
    return data["table"], Deleted(str(old["id"]), old)
