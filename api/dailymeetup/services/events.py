import json
import uuid
from typing import Any

from sqlalchemy import text


def log_pairing_event(
    db,
    participant_id: str,
    pairing_date,
    event_type: str,
    payload: dict[str, Any] | None = None,
) -> None:
    payload = payload or {}
    db.execute(
        text(
            """
            INSERT INTO pairing_event (id, participant_id, pairing_date, event_type, payload)
            VALUES (:id, :participant_id, :pairing_date, :event_type, :payload)
            """
        ),
        {
            "id": str(uuid.uuid4()),
            "participant_id": participant_id,
            "pairing_date": pairing_date,
            "event_type": event_type,
            "payload": json.dumps(payload),
        },
    )
