from datetime import date, timedelta

from sqlalchemy import text

from conftest import NOW, TODAY, add_participant
from dailymeetup.services.eligibility import fetch_eligibility_debug_counts, fetch_eligible_participants, id_list
from dailymeetup.services.history import build_history_index, fetch_pairing_history
from dailymeetup.services.lifecycle import build_pairing_record, insert_pairing


def test_history_index_is_symmetric_and_skips_bad_rows():
    index = build_history_index(
        [
            ("a", "b", date(2026, 3, 1)),
            ("b", "a", date(2026, 3, 2)),
            ("c", "c", date(2026, 3, 2)),
            ("d", None, date(2026, 3, 2)),
            {"user1_id": "e", "user2_id": "f"},
            {"user1_id": "g", "user2_id": "a"},
        ]
    )
    assert index["a"] == {"b", "g"}
    assert index["b"] == {"a"}
    assert index["f"] == {"e"}
    assert "c" not in index
    assert "d" not in index


def test_id_list_accepts_json_text_and_lists():
    assert id_list('["a", "b"]') == ["a", "b"]
    assert id_list(["a", None, "b"]) == ["a", "b"]
    assert id_list("not json") == []
    assert id_list(None) == []


def _pair(db, a: str, b: str, day: date) -> None:
    insert_pairing(db, build_pairing_record(a, b, pairing_date=day, now=NOW, expires_at=NOW))


def test_fetch_pairing_history_uses_lookback_window(db):
    _pair(db, "a", "b", TODAY - timedelta(days=2))
    _pair(db, "a", "c", TODAY - timedelta(days=7))
    _pair(db, "d", "e", TODAY)
    db.commit()

    rows = fetch_pairing_history(db, TODAY, 7)
    pairs = {frozenset((a, b)) for a, b, _ in rows}
    assert pairs == {frozenset(("a", "b")), frozenset(("d", "e"))}


def test_eligibility_filters_inactive_stale_and_suspended(db):
    add_participant(db, "ok", connections=["stale"], blocked_ids=["inactive"])
    add_participant(db, "inactive", is_active=False)
    add_participant(db, "stale", last_active=NOW - timedelta(days=4))
    add_participant(db, "suspended", flake_streak=5)
    add_participant(db, "edge", flake_streak=4, priority_next_pairing=True)
    db.commit()

    eligible = fetch_eligible_participants(db, NOW, active_within_days=3, max_flake_streak=5)
    assert [p.id for p in eligible] == ["edge", "ok"]
    ok = eligible[1]
    assert ok.connections == ["stale"]
    assert ok.blocked_ids == ["inactive"]
    assert eligible[0].priority_next_pairing is True

    counts = fetch_eligibility_debug_counts(db, NOW, active_within_days=3, max_flake_streak=5)
    assert counts == {"total_participants": 5, "active": 4, "recently_seen": 4, "suspended_for_flakes": 1}


def test_never_seen_participant_is_not_eligible(db):
    add_participant(db, "ghost")
    db.execute(text("UPDATE participant SET last_active = NULL WHERE id = 'ghost'"))
    db.commit()
    assert fetch_eligible_participants(db, NOW, active_within_days=3, max_flake_streak=5) == []
