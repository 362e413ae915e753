from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Iterable
from zoneinfo import ZoneInfo

from sqlalchemy import text

from ..config import DEFAULT_QUIET_HOURS_END, DEFAULT_QUIET_HOURS_START, NOTIFICATION_BATCH_SIZE, PAIRING_TIMEZONE

logger = logging.getLogger(__name__)

EVENT_CREATED = "created"
EVENT_REMINDER = "reminder"
EVENT_COMPLETED = "completed"
EVENT_SOCIAL = "social"

CATEGORY_SETTINGS = {
    EVENT_CREATED: "pairing_notification",
    EVENT_REMINDER: "reminder_notification",
    EVENT_COMPLETED: "completion_notification",
    EVENT_SOCIAL: "social_notifications",
}

Sender = Callable[[list[dict[str, Any]]], list[bool]]


def default_notification_settings() -> dict[str, Any]:
    return {
        "pairing_notification": True,
        "reminder_notification": True,
        "chat_notification": True,
        "partner_photo_submitted_notification": True,
        "social_notifications": True,
        "completion_notification": True,
        "quiet_hours_start": DEFAULT_QUIET_HOURS_START,
        "quiet_hours_end": DEFAULT_QUIET_HOURS_END,
    }


def _json_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return {}
    return value if isinstance(value, dict) else {}


def in_quiet_hours(hour: int, start: int, end: int) -> bool:
    if start <= end:
        return start <= hour < end
    return hour >= start or hour < end


def should_send_notification(settings: dict[str, Any] | None, event_type: str, local_hour: int) -> bool:
    if not settings:
        return True

    flag = CATEGORY_SETTINGS.get(event_type)
    if flag and settings.get(flag) is False:
        return False

    start = settings.get("quiet_hours_start")
    end = settings.get("quiet_hours_end")
    if start is None or end is None:
        return True
    return not in_quiet_hours(local_hour, int(start), int(end))


def enqueue_notification_event(
    db,
    *,
    event_type: str,
    pairing_id: str | None,
    participant_ids: Iterable[str],
    payload: dict[str, Any] | None = None,
    now: datetime,
) -> int:
    if event_type not in CATEGORY_SETTINGS:
        raise ValueError(f"Unknown notification event type: {event_type}")
    payload = payload or {}
    created = 0
    for participant_id in participant_ids:
        db.execute(
            text(
                """
                INSERT INTO notification_outbox (id, participant_id, pairing_id, event_type, payload, status, attempt_count, created_at)
                VALUES (:id, :participant_id, :pairing_id, :event_type, :payload, 'pending', 0, :created_at)
                """
            ),
            {
                "id": str(uuid.uuid4()),
                "participant_id": participant_id,
                "pairing_id": pairing_id,
                "event_type": event_type,
                "payload": json.dumps(payload),
                "created_at": now,
            },
        )
        created += 1
    return created


def _partner_name(payload: dict[str, Any]) -> str:
    return str(payload.get("partner_name") or "your partner")


def build_message(event_type: str, push_token: str, pairing_id: str | None, payload: dict[str, Any]) -> dict[str, Any]:
    partner = _partner_name(payload)
    if event_type == EVENT_CREATED:
        title = "Today's Selfie Partner"
        body = f"You're paired with {partner} today! Take a selfie together before the deadline."
    elif event_type == EVENT_REMINDER:
        if payload.get("final"):
            title = "Final Reminder"
            body = f"Only a few hours left to take a selfie with {partner} today!"
        else:
            title = "Selfie Reminder"
            body = f"Don't forget to take a selfie with {partner} today!"
    elif event_type == EVENT_COMPLETED:
        title = "Selfie Completed"
        body = f"Your selfie with {partner} has been posted!"
    else:
        title = "New activity"
        body = str(payload.get("message") or "Someone interacted with your selfie.")
    return {
        "token": push_token,
        "notification": {"title": title, "body": body},
        "data": {"pairing_id": pairing_id or "", "type": event_type, **{k: str(v) for k, v in payload.items()}},
    }


def log_sender(messages: list[dict[str, Any]]) -> list[bool]:
    for message in messages:
        logger.info("[notify] type=%s token=%s", message["data"].get("type"), str(message.get("token"))[:8])
    return [True] * len(messages)


def _mark(db, outbox_id: str, status: str, now: datetime, last_error: str | None = None) -> None:
    db.execute(
        text(
            """
            UPDATE notification_outbox
            SET status = :status,
                attempt_count = attempt_count + 1,
                last_error = :last_error,
                processed_at = :processed_at
            WHERE id = :id
            """
        ),
        {"id": outbox_id, "status": status, "last_error": last_error, "processed_at": now},
    )


def deliver_pending_notifications(
    db,
    *,
    sender: Sender | None = None,
    now: datetime,
    limit: int = 1000,
    batch_size: int = NOTIFICATION_BATCH_SIZE,
    tz: str = PAIRING_TIMEZONE,
) -> dict[str, int]:
    """Push pending outbox rows through ``sender``, best effort.

    Rows are suppressed when the recipient has no push token, has the
    category switched off, or is inside quiet hours. A sender that raises
    fails its whole batch; failures are recorded on the rows and counted,
    never re-raised.
    """
    sender = sender or log_sender
    local_hour = now.astimezone(ZoneInfo(tz)).hour
    rows = db.execute(
        text(
            """
            SELECT o.id, o.participant_id, o.pairing_id, o.event_type, o.payload,
                   p.push_token, p.notification_settings
            FROM notification_outbox o
            LEFT JOIN participant p ON p.id = o.participant_id
            WHERE o.status = 'pending'
            ORDER BY o.created_at
            LIMIT :limit
            """
        ),
        {"limit": max(1, int(limit))},
    ).mappings().all()

    processed = len(rows)
    suppressed = 0
    outgoing: list[tuple[str, dict[str, Any]]] = []
    for row in rows:
        token = row.get("push_token")
        settings = _json_dict(row.get("notification_settings"))
        if not token or token == "none" or not should_send_notification(settings, row["event_type"], local_hour):
            _mark(db, str(row["id"]), "suppressed", now)
            suppressed += 1
            continue
        message = build_message(row["event_type"], str(token), row.get("pairing_id"), _json_dict(row.get("payload")))
        outgoing.append((str(row["id"]), message))

    sent = 0
    failed = 0
    size = max(1, int(batch_size))
    for i in range(0, len(outgoing), size):
        batch = outgoing[i : i + size]
        try:
            results = list(sender([m for _, m in batch]))
            error = None
        except Exception as exc:
            logger.warning("Notification batch %s failed: %s", i // size + 1, exc)
            results = [False] * len(batch)
            error = str(exc)[:1000]
        results = (results + [False] * len(batch))[: len(batch)]
        for (outbox_id, _), ok in zip(batch, results):
            if ok:
                _mark(db, outbox_id, "sent", now)
                sent += 1
            else:
                _mark(db, outbox_id, "failed", now, last_error=error or "delivery failed")
                failed += 1
        ok_count = sum(1 for r in results if r)
        logger.info("Notification batch %s: %s success, %s failure", i // size + 1, ok_count, len(batch) - ok_count)

    return {"processed": processed, "sent": sent, "failed": failed, "suppressed": suppressed}
