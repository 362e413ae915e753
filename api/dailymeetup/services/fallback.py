from __future__ import annotations

import json
import logging
import re
import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from ..config import (
    FALLBACK_EXPIRY_HOUR,
    PAIRING_TIMEZONE,
    PLACEHOLDER_EMAIL_DOMAIN,
    PLACEHOLDER_MAX_ATTEMPTS,
    PLACEHOLDER_PHOTO_URL,
    PLACEHOLDER_USERNAME_PREFIX,
)
from .events import log_pairing_event
from .eligibility import id_list
from .lifecycle import (
    build_pairing_record,
    expiry_for,
    fetch_participant_pairing_on,
    insert_pairing,
    local_day,
    participant_names,
)
from .matching import Participant, is_blocked_pair
from .notifications import EVENT_CREATED, default_notification_settings, enqueue_notification_event

logger = logging.getLogger(__name__)


class PartnerProvisioningError(RuntimeError):
    pass


class AlreadyPaired(ValueError):
    pass


def participant_exists(db, participant_id: str) -> bool:
    row = db.execute(text("SELECT 1 FROM participant WHERE id = :id"), {"id": participant_id}).first()
    return row is not None


def _blocking_view(db, participant_id: str) -> Participant:
    row = db.execute(
        text("SELECT id, blocked_ids FROM participant WHERE id = :id"),
        {"id": participant_id},
    ).mappings().first()
    return Participant(id=participant_id, blocked_ids=id_list((row or {}).get("blocked_ids")))


def find_waitlisted_partner(db, requester_id: str, day: date) -> str | None:
    requester = _blocking_view(db, requester_id)
    rows = db.execute(
        text(
            """
            SELECT id, blocked_ids
            FROM participant
            WHERE waitlisted_today = :yes
              AND id <> :requester_id
            ORDER BY waitlisted_at, username
            """
        ),
        {"yes": True, "requester_id": requester_id},
    ).mappings().all()

    for row in rows:
        candidate = Participant(id=str(row["id"]), blocked_ids=id_list(row.get("blocked_ids")))
        if is_blocked_pair(requester, candidate):
            continue
        if fetch_participant_pairing_on(db, candidate.id, day):
            continue
        db.execute(
            text("UPDATE participant SET waitlisted_today = :no WHERE id = :id"),
            {"id": candidate.id, "no": False},
        )
        return candidate.id
    return None


def next_placeholder_number(db, prefix: str = PLACEHOLDER_USERNAME_PREFIX) -> int:
    rows = db.execute(
        text("SELECT username FROM participant WHERE username LIKE :pattern"),
        {"pattern": f"{prefix}%"},
    ).mappings().all()
    pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
    highest = 0
    for row in rows:
        match = pattern.match(str(row["username"]))
        if match:
            highest = max(highest, int(match.group(1)))
    return highest + 1


def _insert_placeholder(db, participant_id: str, number: int, now: datetime, prefix: str) -> None:
    username = f"{prefix}{number}"
    db.execute(
        text(
            """
            INSERT INTO participant
            (id, username, display_name, email, photo_url, is_active, is_placeholder, last_active, created_at,
             connections, blocked_ids, flake_count, flake_streak, max_flake_streak,
             waitlisted_today, priority_next_pairing, push_token, notification_settings)
            VALUES
            (:id, :username, :display_name, :email, :photo_url, :yes, :yes, :now, :now,
             :empty, :empty, 0, 0, 0,
             :no, :no, NULL, :notification_settings)
            """
        ),
        {
            "id": participant_id,
            "username": username,
            "display_name": f"Test User {number}",
            "email": f"{username}{PLACEHOLDER_EMAIL_DOMAIN}",
            "photo_url": PLACEHOLDER_PHOTO_URL or None,
            "yes": True,
            "no": False,
            "now": now,
            "empty": json.dumps([]),
            "notification_settings": json.dumps(default_notification_settings()),
        },
    )


def create_placeholder_participant(
    db,
    now: datetime,
    *,
    max_attempts: int = PLACEHOLDER_MAX_ATTEMPTS,
    prefix: str = PLACEHOLDER_USERNAME_PREFIX,
) -> str | None:
    number = next_placeholder_number(db, prefix)
    for attempt in range(max_attempts):
        participant_id = str(uuid.uuid4())
        try:
            with db.begin_nested():
                _insert_placeholder(db, participant_id, number, now, prefix)
        except IntegrityError:
            logger.warning("Placeholder username %s%s taken (attempt %s/%s)", prefix, number, attempt + 1, max_attempts)
            number += 1
            continue
        return participant_id
    return None


def provision_partner(db, requester_id: str, now: datetime, *, max_attempts: int = PLACEHOLDER_MAX_ATTEMPTS) -> dict[str, Any]:
    """Pair ``requester_id`` with someone today, outside the daily run.

    A waitlisted participant without a pairing today is preferred; failing
    that a placeholder participant is created. Raises ``AlreadyPaired`` when
    the requester is already paired today and ``PartnerProvisioningError``
    when no partner can be found or created. Writes are staged on
    ``db`` and left for the caller to commit.
    """
    day = local_day(now, PAIRING_TIMEZONE)
    existing = fetch_participant_pairing_on(db, requester_id, day)
    if existing:
        raise AlreadyPaired(f"Participant already has pairing {existing['id']} today")
    created_placeholder = False

    partner_id = find_waitlisted_partner(db, requester_id, day)
    if not partner_id:
        partner_id = create_placeholder_participant(db, now, max_attempts=max_attempts)
        created_placeholder = partner_id is not None

    if not partner_id:
        raise PartnerProvisioningError("Failed to create or find partner")

    record = build_pairing_record(
        requester_id,
        partner_id,
        pairing_date=day,
        now=now,
        expires_at=expiry_for(day, FALLBACK_EXPIRY_HOUR, PAIRING_TIMEZONE),
        source="fallback",
    )
    insert_pairing(db, record)
    for me, partner in ((requester_id, partner_id), (partner_id, requester_id)):
        log_pairing_event(
            db,
            me,
            day,
            "pairing_created",
            {"pairing_id": record["id"], "partner_id": partner, "source": "fallback", "created_placeholder": created_placeholder},
        )

    names = participant_names(db, [requester_id, partner_id])
    for me, partner in ((requester_id, partner_id), (partner_id, requester_id)):
        enqueue_notification_event(
            db,
            event_type=EVENT_CREATED,
            pairing_id=record["id"],
            participant_ids=[me],
            payload={"partner_name": names.get(partner, partner)},
            now=now,
        )

    logger.info("Fallback pairing %s: requester=%s partner=%s placeholder=%s", record["id"], requester_id, partner_id, created_placeholder)
    return {
        "success": True,
        "partner_id": partner_id,
        "pairing_id": record["id"],
        "created_placeholder": created_placeholder,
        "expires_at": record["expires_at"],
        "virtual_meeting_link": record["virtual_meeting_link"],
    }
