from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import text

from .matching import Participant


def id_list(value: Any) -> list[str]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def participant_from_row(row: Any) -> Participant:
    return Participant(
        id=str(row["id"]),
        username=str(row.get("username") or ""),
        display_name=row.get("display_name"),
        connections=id_list(row.get("connections")),
        blocked_ids=id_list(row.get("blocked_ids")),
        flake_streak=int(row.get("flake_streak") or 0),
        max_flake_streak=int(row.get("max_flake_streak") or 0),
        priority_next_pairing=bool(row.get("priority_next_pairing")),
        waitlisted_today=bool(row.get("waitlisted_today")),
    )


def fetch_eligible_participants(
    db,
    now: datetime,
    *,
    active_within_days: int,
    max_flake_streak: int,
) -> list[Participant]:
    cutoff = now - timedelta(days=active_within_days)
    rows = db.execute(
        text(
            """
            SELECT id, username, display_name, connections, blocked_ids,
                   flake_streak, max_flake_streak, priority_next_pairing, waitlisted_today
            FROM participant
            WHERE is_active = :active
              AND last_active IS NOT NULL
              AND last_active >= :cutoff
              AND flake_streak < :max_flake_streak
            ORDER BY username
            """
        ),
        {"active": True, "cutoff": cutoff, "max_flake_streak": max_flake_streak},
    ).mappings().all()
    return [participant_from_row(r) for r in rows]


def fetch_eligibility_debug_counts(db, now: datetime, *, active_within_days: int, max_flake_streak: int) -> dict[str, int]:
    cutoff = now - timedelta(days=active_within_days)
    row = db.execute(
        text(
            """
            SELECT
              COUNT(1) AS total_participants,
              SUM(CASE WHEN is_active = :active THEN 1 ELSE 0 END) AS active,
              SUM(CASE WHEN last_active IS NOT NULL AND last_active >= :cutoff THEN 1 ELSE 0 END) AS recently_seen,
              SUM(CASE WHEN flake_streak >= :max_flake_streak THEN 1 ELSE 0 END) AS suspended_for_flakes
            FROM participant
            """
        ),
        {"active": True, "cutoff": cutoff, "max_flake_streak": max_flake_streak},
    ).mappings().first() or {}
    return {
        "total_participants": int(row.get("total_participants") or 0),
        "active": int(row.get("active") or 0),
        "recently_seen": int(row.get("recently_seen") or 0),
        "suspended_for_flakes": int(row.get("suspended_for_flakes") or 0),
    }
