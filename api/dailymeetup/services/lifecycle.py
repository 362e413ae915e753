from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import date, datetime, time, timezone
from typing import Any, Iterable
from zoneinfo import ZoneInfo

from sqlalchemy import text

from ..config import MEETING_LINK_BASE
from .events import log_pairing_event
from .matching import Participant, PairingResult
from .notifications import EVENT_COMPLETED, EVENT_CREATED, EVENT_REMINDER, enqueue_notification_event
from .state_machine import COMPLETED, FLAKED, OPEN_STATUSES, PARTIALLY_SUBMITTED, PENDING, transition_status

logger = logging.getLogger(__name__)


class PairingNotFound(LookupError):
    pass


class NotPairingMember(PermissionError):
    pass


class PairingClosed(ValueError):
    pass


def local_day(now: datetime, tz: str) -> date:
    return now.astimezone(ZoneInfo(tz)).date()


def expiry_for(day: date, hour: int, tz: str) -> datetime:
    local = datetime.combine(day, time(hour=hour), tzinfo=ZoneInfo(tz))
    return local.astimezone(timezone.utc)


def as_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_meeting_link(pairing_id: str) -> str:
    return f"{MEETING_LINK_BASE}{pairing_id}"


def generate_chat_id(pairing_id: str) -> str:
    return f"chat_{pairing_id}"


def _display(p: Participant) -> str:
    return p.display_name or p.username or p.id


def build_pairing_record(
    user1_id: str,
    user2_id: str,
    *,
    pairing_date: date,
    now: datetime,
    expires_at: datetime,
    source: str = "daily",
) -> dict[str, Any]:
    pairing_id = str(uuid.uuid4())
    return {
        "id": pairing_id,
        "pairing_date": pairing_date,
        "user1_id": user1_id,
        "user2_id": user2_id,
        "status": PENDING,
        "source": source,
        "created_at": now,
        "expires_at": expires_at,
        "likes_count": 0,
        "comments_count": 0,
        "is_private": False,
        "chat_id": generate_chat_id(pairing_id),
        "virtual_meeting_link": generate_meeting_link(pairing_id),
    }


def insert_pairing(db, record: dict[str, Any]) -> None:
    db.execute(
        text(
            """
            INSERT INTO pairing
            (id, pairing_date, user1_id, user2_id, status, source, created_at, expires_at,
             likes_count, comments_count, is_private, chat_id, virtual_meeting_link)
            VALUES
            (:id, :pairing_date, :user1_id, :user2_id, :status, :source, :created_at, :expires_at,
             :likes_count, :comments_count, :is_private, :chat_id, :virtual_meeting_link)
            """
        ),
        record,
    )


def create_pairing_documents(
    db,
    result: PairingResult,
    *,
    pairing_date: date,
    now: datetime,
    expires_at: datetime,
) -> dict[str, Any]:
    """Stage pairing rows, waitlist flags and created events for one run.

    Nothing is committed here; the caller commits once so a run is applied
    as a whole or not at all.
    """
    # Yesterday's waitlist no longer counts as waitlisted today; the
    # priority flag survives until the participant is paired.
    db.execute(
        text("UPDATE participant SET waitlisted_today = :no WHERE waitlisted_today = :yes"),
        {"no": False, "yes": True},
    )

    pairing_ids: list[str] = []
    for user1, user2 in result.pairs:
        record = build_pairing_record(user1.id, user2.id, pairing_date=pairing_date, now=now, expires_at=expires_at)
        insert_pairing(db, record)
        pairing_ids.append(record["id"])

        for me, partner in ((user1, user2), (user2, user1)):
            db.execute(
                text(
                    """
                    UPDATE participant
                    SET waitlisted_today = :no, priority_next_pairing = :no
                    WHERE id = :id
                    """
                ),
                {"id": me.id, "no": False},
            )
            log_pairing_event(db, me.id, pairing_date, "pairing_created", {"pairing_id": record["id"], "partner_id": partner.id})
            enqueue_notification_event(
                db,
                event_type=EVENT_CREATED,
                pairing_id=record["id"],
                participant_ids=[me.id],
                payload={"partner_name": _display(partner)},
                now=now,
            )

    for participant in result.waitlist:
        db.execute(
            text(
                """
                UPDATE participant
                SET waitlisted_today = :yes, priority_next_pairing = :yes, waitlisted_at = :now
                WHERE id = :id
                """
            ),
            {"id": participant.id, "yes": True, "now": now},
        )
        log_pairing_event(db, participant.id, pairing_date, "waitlisted", {"reason": "no_eligible_partner"})

    return {"pairing_ids": pairing_ids, "waitlisted_ids": [p.id for p in result.waitlist]}


def count_daily_pairings(db, day: date) -> int:
    row = db.execute(
        text("SELECT COUNT(1) AS c FROM pairing WHERE pairing_date = :day AND source = 'daily'"),
        {"day": day},
    ).mappings().first()
    return int((row or {}).get("c") or 0)


def delete_pending_daily_pairings(db, day: date) -> dict[str, int]:
    outbox = db.execute(
        text(
            """
            DELETE FROM notification_outbox
            WHERE status = 'pending'
              AND pairing_id IN (
                SELECT id FROM pairing
                WHERE pairing_date = :day AND source = 'daily' AND status = 'pending'
              )
            """
        ),
        {"day": day},
    )
    pairings = db.execute(
        text("DELETE FROM pairing WHERE pairing_date = :day AND source = 'daily' AND status = 'pending'"),
        {"day": day},
    )
    return {"pairing": int(pairings.rowcount or 0), "notification_outbox": int(outbox.rowcount or 0)}


def fetch_pairing(db, pairing_id: str) -> dict[str, Any] | None:
    row = db.execute(text("SELECT * FROM pairing WHERE id = :id"), {"id": pairing_id}).mappings().first()
    return dict(row) if row else None


def fetch_day_pairings(db, day: date) -> list[dict[str, Any]]:
    rows = db.execute(
        text("SELECT * FROM pairing WHERE pairing_date = :day ORDER BY created_at, id"),
        {"day": day},
    ).mappings().all()
    return [dict(r) for r in rows]


def fetch_participant_pairing_on(db, participant_id: str, day: date) -> dict[str, Any] | None:
    row = db.execute(
        text(
            """
            SELECT *
            FROM pairing
            WHERE pairing_date = :day
              AND (user1_id = :participant_id OR user2_id = :participant_id)
            ORDER BY created_at DESC
            """
        ),
        {"day": day, "participant_id": participant_id},
    ).mappings().first()
    return dict(row) if row else None


def participant_names(db, ids: Iterable[str]) -> dict[str, str]:
    names: dict[str, str] = {}
    for pid in ids:
        row = db.execute(
            text("SELECT id, username, display_name FROM participant WHERE id = :id"),
            {"id": pid},
        ).mappings().first()
        if row:
            names[pid] = str(row.get("display_name") or row.get("username") or pid)
    return names


def record_submission(db, pairing_id: str, participant_id: str, photo_url: str, now: datetime) -> dict[str, Any]:
    pairing = fetch_pairing(db, pairing_id)
    if not pairing:
        raise PairingNotFound(pairing_id)

    if participant_id == pairing["user1_id"]:
        side = "user1"
    elif participant_id == pairing["user2_id"]:
        side = "user2"
    else:
        raise NotPairingMember(participant_id)

    if pairing["status"] not in OPEN_STATUSES:
        raise PairingClosed(f"Pairing is {pairing['status']}")
    expires_at = as_datetime(pairing["expires_at"])
    if expires_at is not None and now >= expires_at:
        raise PairingClosed("Pairing has expired")

    pairing[f"{side}_photo_url"] = photo_url
    pairing[f"{side}_submitted_at"] = pairing.get(f"{side}_submitted_at") or now
    new_status = transition_status(
        pairing["status"],
        "submit",
        user1_submitted=bool(pairing.get("user1_submitted_at")),
        user2_submitted=bool(pairing.get("user2_submitted_at")),
        now=now,
        expires_at=expires_at,
    )
    db.execute(
        text(
            f"""
            UPDATE pairing
            SET {side}_photo_url = :photo_url,
                {side}_submitted_at = :submitted_at,
                status = :status
            WHERE id = :id
            """
        ),
        {"id": pairing_id, "photo_url": photo_url, "submitted_at": pairing[f"{side}_submitted_at"], "status": new_status},
    )
    pairing["status"] = new_status
    if new_status == COMPLETED:
        complete_pairing(db, pairing, now)
    return pairing


def complete_pairing(db, pairing: dict[str, Any], now: datetime) -> None:
    """Finalise a pairing both sides submitted for and clear both streaks."""
    members = [str(pairing["user1_id"]), str(pairing["user2_id"])]
    db.execute(
        text("UPDATE pairing SET status = :status, completed_at = :now WHERE id = :id"),
        {"id": pairing["id"], "status": COMPLETED, "now": now},
    )
    pairing["completed_at"] = now
    for pid in members:
        db.execute(text("UPDATE participant SET flake_streak = 0 WHERE id = :id"), {"id": pid})

    names = participant_names(db, members)
    for me, partner in ((members[0], members[1]), (members[1], members[0])):
        log_pairing_event(db, me, pairing["pairing_date"], "pairing_completed", {"pairing_id": pairing["id"]})
        enqueue_notification_event(
            db,
            event_type=EVENT_COMPLETED,
            pairing_id=str(pairing["id"]),
            participant_ids=[me],
            payload={"partner_name": names.get(partner, partner)},
            now=now,
        )


def determine_flakers(pairing: dict[str, Any]) -> set[str]:
    user1 = pairing.get("user1_id")
    user2 = pairing.get("user2_id")
    user1_done = bool(pairing.get("user1_submitted_at"))
    user2_done = bool(pairing.get("user2_submitted_at"))

    flakers: set[str] = set()
    if user1 and not user1_done:
        flakers.add(str(user1))
    if user2 and not user2_done:
        flakers.add(str(user2))
    return flakers


def plan_flake_sweep(pairings: Iterable[dict[str, Any]], now: datetime | None = None) -> tuple[list[str], Counter]:
    """Pick the pairings a sweep flakes and count flakes per participant.

    With ``now`` given, pairings whose own ``expires_at`` is still ahead are
    left open; fallback pairings run past the daily cutoff.
    """
    to_flake: list[str] = []
    flake_counts: Counter = Counter()
    for pairing in pairings:
        status = pairing.get("status")
        if transition_status(status, "flake") == status:
            continue
        expires_at = as_datetime(pairing.get("expires_at"))
        if now is not None and expires_at is not None and expires_at > now:
            continue
        to_flake.append(str(pairing["id"]))
        for uid in determine_flakers(pairing):
            flake_counts[uid] += 1
    return to_flake, flake_counts


def next_streak(streak: int, max_streak: int) -> tuple[int, int]:
    new_streak = int(streak or 0) + 1
    return new_streak, max(new_streak, int(max_streak or 0))


def sweep_flaked_pairings(db, day: date, now: datetime, *, force: bool = False) -> dict[str, Any]:
    """Flake every open pairing of ``day`` and charge the participants who
    did not submit.

    Each distinct flaker gains one streak step per sweep, however many of
    their pairings flaked, while ``flake_count`` grows by the number of
    pairings. Pairings already flaked are left alone, so a repeated sweep
    changes nothing. Unless ``force`` is set, pairings not yet past their
    own expiry are skipped.
    """
    rows = db.execute(
        text(
            """
            SELECT id, pairing_date, user1_id, user2_id, status, expires_at, user1_submitted_at, user2_submitted_at
            FROM pairing
            WHERE pairing_date = :day
              AND status <> :completed
            """
        ),
        {"day": day, "completed": COMPLETED},
    ).mappings().all()

    to_flake, flake_counts = plan_flake_sweep((dict(r) for r in rows), now=None if force else now)
    if not to_flake:
        logger.info("No open pairings to flake for %s", day)
        return {"day": str(day), "scanned": len(rows), "flaked_pairings": 0, "participants_updated": 0}

    for pairing_id in to_flake:
        db.execute(
            text(
                """
                UPDATE pairing
                SET status = :flaked, flaked_at = :now
                WHERE id = :id
                  AND status IN (:pending, :partial)
                """
            ),
            {"id": pairing_id, "flaked": FLAKED, "now": now, "pending": PENDING, "partial": PARTIALLY_SUBMITTED},
        )

    updated = 0
    for participant_id, count in sorted(flake_counts.items()):
        row = db.execute(
            text("SELECT flake_count, flake_streak, max_flake_streak FROM participant WHERE id = :id"),
            {"id": participant_id},
        ).mappings().first()
        if not row:
            logger.warning("Flaking participant %s not found; skipping streak update", participant_id)
            continue
        streak, max_streak = next_streak(row.get("flake_streak"), row.get("max_flake_streak"))
        db.execute(
            text(
                """
                UPDATE participant
                SET flake_count = :flake_count,
                    flake_streak = :flake_streak,
                    max_flake_streak = :max_flake_streak
                WHERE id = :id
                """
            ),
            {
                "id": participant_id,
                "flake_count": int(row.get("flake_count") or 0) + count,
                "flake_streak": streak,
                "max_flake_streak": max_streak,
            },
        )
        log_pairing_event(db, participant_id, day, "flaked", {"pairings": count, "flake_streak": streak})
        updated += 1

    logger.info("Processed %s expired pairings, updated %s participant flake counts", len(to_flake), updated)
    return {"day": str(day), "scanned": len(rows), "flaked_pairings": len(to_flake), "participants_updated": updated}


def enqueue_reminders(db, day: date, now: datetime, *, final: bool = False) -> int:
    rows = db.execute(
        text(
            """
            SELECT id, user1_id, user2_id, user1_submitted_at, user2_submitted_at
            FROM pairing
            WHERE pairing_date = :day
              AND status IN (:pending, :partial)
            """
        ),
        {"day": day, "pending": PENDING, "partial": PARTIALLY_SUBMITTED},
    ).mappings().all()

    created = 0
    for row in rows:
        members = [str(row["user1_id"]), str(row["user2_id"])]
        names = participant_names(db, members)
        for side, me, partner in (("user1", members[0], members[1]), ("user2", members[1], members[0])):
            if row.get(f"{side}_submitted_at"):
                continue
            created += enqueue_notification_event(
                db,
                event_type=EVENT_REMINDER,
                pairing_id=str(row["id"]),
                participant_ids=[me],
                payload={"partner_name": names.get(partner, partner), "final": final},
                now=now,
            )
    return created
