from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Iterable

from sqlalchemy import text


def _pair_ids(row: Any) -> tuple[str, str] | None:
    if isinstance(row, dict):
        ids = [row.get("user1_id"), row.get("user2_id")]
    else:
        ids = list(row)
    if len(ids) < 2 or not ids[0] or not ids[1]:
        return None
    return str(ids[0]), str(ids[1])


def build_history_index(rows: Iterable[Any]) -> dict[str, set[str]]:
    """Fold raw (a, b[, date]) history rows into a symmetric adjacency map.

    Rows may repeat across dates and may arrive in either orientation; both
    collapse into the same entry. Self-pairs and rows missing an id are
    ignored.
    """
    index: dict[str, set[str]] = {}
    for row in rows:
        ids = _pair_ids(row)
        if not ids or ids[0] == ids[1]:
            continue
        a, b = ids
        index.setdefault(a, set()).add(b)
        index.setdefault(b, set()).add(a)
    return index


def fetch_pairing_history(db, today: date, days: int) -> list[tuple[str, str, date]]:
    since = today - timedelta(days=days)
    rows = db.execute(
        text(
            """
            SELECT user1_id, user2_id, pairing_date
            FROM pairing
            WHERE pairing_date > :since
            ORDER BY pairing_date
            """
        ),
        {"since": since},
    ).mappings().all()
    return [(str(r["user1_id"]), str(r["user2_id"]), r["pairing_date"]) for r in rows]
