from datetime import date

from dailymeetup.services.events import log_pairing_event


class FakeDB:
    def __init__(self):
        self.calls = []

    def execute(self, stmt, params):
        self.calls.append((str(stmt), params))


def test_log_pairing_event_inserts_expected_payload_shape():
    db = FakeDB()
    log_pairing_event(
        db=db,
        participant_id="participant-123",
        pairing_date=date(2026, 3, 10),
        event_type="flaked",
        payload={"pairings": 1, "flake_streak": 2},
    )
    assert len(db.calls) == 1
    sql, params = db.calls[0]
    assert "INSERT INTO pairing_event" in sql
    assert params["event_type"] == "flaked"
    assert params["participant_id"] == "participant-123"
    assert params["payload"] == '{"pairings": 1, "flake_streak": 2}'


def test_log_pairing_event_defaults_to_empty_payload():
    db = FakeDB()
    log_pairing_event(db, "p", None, "waitlisted")
    assert db.calls[0][1]["payload"] == "{}"
